"""Modelos Pydantic para órdenes y verificación de pagos"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class PaymentOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    registration_id: UUID
    amount: Decimal
    currency: str
    order_ref: str
    status: str
    created_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    key_id: Optional[str] = None  # Public key para abrir el checkout en el cliente


class VerifyPaymentRequest(BaseModel):
    """Callback del checkout de Razorpay"""
    payment_id: str = Field(..., min_length=1)
    order_ref: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class WebhookResponse(BaseModel):
    status: str
