"""Rutas de pagos: verificación del checkout y webhook de Razorpay"""
from fastapi import APIRouter, Depends, Request, Header
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
import logging

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.payments.models.payment import VerifyPaymentRequest, WebhookResponse
from services.payments.services.payment_gateway import PaymentGateway, get_payment_gateway
from services.payments.services.payment_service import PaymentService
from services.registration.models.registration import RegisterResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/verify", response_model=RegisterResponse)
@limiter.limit(RATE_LIMITS["registration"])
async def verify_payment(
    request: Request,  # Necesario para rate limiter
    verify_request: VerifyPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """
    Verificar el pago reportado por el checkout

    Solo una firma válida emite el ticket. Repetir la verificación
    retorna el mismo ticket con already_verified=true.
    """
    service = PaymentService(gateway)
    result = await service.verify_payment(
        db,
        payment_id=verify_request.payment_id,
        order_ref=verify_request.order_ref,
        signature=verify_request.signature
    )
    return RegisterResponse.from_result(result)


@router.post("/webhook", response_model=WebhookResponse)
@limiter.limit(RATE_LIMITS["webhook"])
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """
    Webhook de Razorpay (order.paid / payment.captured)

    La firma se calcula sobre el cuerpo crudo, por eso no se parsea con Pydantic.
    """
    body = await request.body()
    service = PaymentService(gateway)
    return await service.handle_webhook(db, body, x_razorpay_signature)
