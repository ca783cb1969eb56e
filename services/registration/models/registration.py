"""Modelos Pydantic para registros"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from services.payments.models.payment import PaymentOrderResponse
from services.ticket_issuer.models.ticket import TicketResponse


class RegisterRequest(BaseModel):
    event_id: UUID
    pass_id: Optional[UUID] = None
    survey: Optional[Dict[str, Any]] = Field(None, description="Respuestas libres de la encuesta")
    gender: Optional[str] = Field(None, description="Requerido en eventos solo mujeres")
    message: Optional[str] = Field(None, max_length=500)


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: UUID
    attendee_id: UUID
    pass_id: Optional[UUID] = None
    status: str
    price_paid: Decimal
    survey: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class RegisterResponse(BaseModel):
    """
    Resultado de register / verify

    already_registered=true significa que el asistente ya tenía registro:
    el cliente debe mostrar su ticket (o retomar el pago) en vez de un error.
    """
    registration: RegistrationResponse
    ticket: Optional[TicketResponse] = None
    payment_order: Optional[PaymentOrderResponse] = None
    already_registered: bool = False
    already_verified: bool = False

    @classmethod
    def from_result(cls, result: Dict[str, Any], key_id: Optional[str] = None) -> "RegisterResponse":
        """Construir la respuesta desde el dict de RegistrationService / PaymentService"""
        order = result.get("payment_order")
        payment_order = None
        if order is not None:
            payment_order = PaymentOrderResponse.model_validate(order)
            payment_order.key_id = key_id

        ticket = result.get("ticket")
        return cls(
            registration=RegistrationResponse.model_validate(result["registration"]),
            ticket=TicketResponse.model_validate(ticket) if ticket is not None else None,
            payment_order=payment_order,
            already_registered=result.get("already_registered", False),
            already_verified=result.get("already_verified", False),
        )


class IntentRequest(BaseModel):
    event_id: UUID
    pass_id: Optional[UUID] = None


class IntentResponse(BaseModel):
    intent_id: str
    event_id: UUID
    pass_id: Optional[UUID] = None
    expires_at: datetime


class ReplayIntentRequest(BaseModel):
    survey: Optional[Dict[str, Any]] = None
    gender: Optional[str] = None
