"""Rutas de registro a eventos"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict
from uuid import UUID

from app.core.config import settings
from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.payments.services.payment_gateway import PaymentGateway, get_payment_gateway
from services.registration.models.registration import (
    RegisterRequest,
    RegisterResponse,
    RegistrationResponse,
    IntentRequest,
    IntentResponse,
    ReplayIntentRequest
)
from services.registration.services.registration_service import RegistrationService


router = APIRouter()


@router.post("", response_model=RegisterResponse)
@limiter.limit(RATE_LIMITS["registration"])
async def register(
    request: Request,  # Necesario para rate limiter
    register_request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """
    Registrarse en un evento

    - Pase gratis: retorna el ticket.
    - Pase con precio: retorna la orden de pago para abrir el checkout.
    - Ya registrado: retorna lo existente con already_registered=true.
    """
    service = RegistrationService(gateway)
    result = await service.register(
        db,
        event_id=register_request.event_id,
        attendee_id=current_user["user_id"],
        pass_id=register_request.pass_id,
        survey=register_request.survey,
        gender=register_request.gender,
        message=register_request.message
    )
    return RegisterResponse.from_result(result, key_id=settings.RAZORPAY_KEY_ID)


@router.post("/intents", response_model=IntentResponse)
@limiter.limit(RATE_LIMITS["registration"])
async def create_intent(
    request: Request,  # Necesario para rate limiter
    intent_request: IntentRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """
    Guardar intención de registro antes del login (sin autenticación)

    El cliente guarda intent_id y lo reproduce después de autenticarse.
    """
    service = RegistrationService(gateway)
    await service.event_service.get_event(db, intent_request.event_id)
    return await service.create_intent(intent_request.event_id, intent_request.pass_id)


@router.post("/intents/{intent_id}/replay", response_model=RegisterResponse)
@limiter.limit(RATE_LIMITS["registration"])
async def replay_intent(
    request: Request,  # Necesario para rate limiter
    intent_id: str,
    replay_request: ReplayIntentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """Registrar al usuario autenticado con una intención guardada (una sola vez)"""
    service = RegistrationService(gateway)
    result = await service.replay_intent(
        db,
        intent_id=intent_id,
        attendee_id=current_user["user_id"],
        survey=replay_request.survey,
        gender=replay_request.gender
    )
    return RegisterResponse.from_result(result, key_id=settings.RAZORPAY_KEY_ID)


@router.post("/{registration_id}/cancel", response_model=RegistrationResponse)
@limiter.limit(RATE_LIMITS["registration"])
async def cancel_registration(
    request: Request,  # Necesario para rate limiter
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """Cancelar un registro pendiente de pago (libera el cupo)"""
    service = RegistrationService(gateway)
    registration = await service.cancel(db, registration_id, current_user["user_id"])
    return RegistrationResponse.model_validate(registration)
