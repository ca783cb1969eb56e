"""Errores de dominio del motor de tickets.

Cada error conoce su status HTTP y un código estable para que los clientes
(escáner, app de asistentes) distingan los casos sin parsear mensajes.
Los casos idempotentes ("ya registrado", "ya hizo check-in") NO son errores:
se devuelven como respuestas exitosas con un flag.
"""
from fastapi import Request, status
from starlette.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class TicketingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "ticketing_error"
    severity = "error"
    default_message = "Error procesando la solicitud"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(TicketingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Recurso no encontrado"


class EventNotFound(NotFound):
    code = "event_not_found"
    default_message = "Evento no encontrado"


class PassNotFound(NotFound):
    code = "pass_not_found"
    default_message = "Pase no encontrado para este evento"


class RegistrationNotFound(NotFound):
    code = "registration_not_found"
    default_message = "Registro no encontrado"


class TicketNotFound(NotFound):
    code = "ticket_not_found"
    default_message = "Ticket no encontrado"


class PaymentOrderNotFound(NotFound):
    code = "payment_order_not_found"
    default_message = "Orden de pago no encontrada"


class IntentNotFound(NotFound):
    code = "intent_not_found"
    default_message = "La intención de registro expiró o ya fue usada"


class InvalidCode(TicketingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "invalid_code"
    default_message = "Código inválido o ticket inexistente"


class WrongEvent(TicketingError):
    status_code = status.HTTP_409_CONFLICT
    code = "wrong_event"
    default_message = "Evento incorrecto: selecciona el evento correcto"


class PolicyViolation(TicketingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "policy_violation"
    default_message = "No cumples los requisitos para registrarte en este evento"


class CapacityExceeded(PolicyViolation):
    status_code = status.HTTP_409_CONFLICT
    code = "capacity_exceeded"
    default_message = "No quedan cupos disponibles para este pase"


class PaymentUnverified(TicketingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_unverified"
    default_message = "Pago no confirmado, intenta nuevamente"


class PaymentGatewayError(TicketingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_gateway_error"
    default_message = "No se pudo contactar a la pasarela de pago"


class Forbidden(TicketingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "No tienes permisos para esta acción"


def ticketing_error_handler(request: Request, exc: TicketingError) -> JSONResponse:
    """Handler de FastAPI: convierte errores de dominio en JSON"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} en {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} en {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "detail": exc.message,
            "severity": exc.severity,
        }
    )
