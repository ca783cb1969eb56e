"""
Rate limiting usando slowapi + Redis.
Compartido entre instancias para que varios dispositivos de escaneo
y asistentes no saturen la API.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_STORAGE_URI = settings.RATE_LIMIT_STORAGE_URI or settings.REDIS_URL


def get_real_client_ip(request: Request) -> str:
    """
    Obtener IP real del cliente considerando proxies/load balancers.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # La primera IP es la del cliente
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """
    Identificador para rate limiting: IP + hash del token si está autenticado.
    Cada dispositivo de escaneo tiene su propio token, así que no comparten cupo.
    """
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_hash = hashlib.sha256(auth_header.encode()).hexdigest()[:12]
        return f"{ip}:{token_hash}"

    return ip


limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    headers_enabled=False,  # Deshabilitado para compatibilidad con response_model de FastAPI
)
logger.info(f"Rate limiter inicializado: {RATE_LIMIT_STORAGE_URI.split('@')[-1]}")


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Handler personalizado para rate limit exceeded.
    Retorna JSON con información útil para el cliente.
    """
    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Demasiadas solicitudes. Por favor espera antes de intentar nuevamente.",
            "severity": "error",
        },
        headers={"Retry-After": "60"}
    )


# Límites por tipo de operación
RATE_LIMITS = {
    # Registro: protege contra doble click masivo / bots
    "registration": "20/minute",

    # Webhooks: vienen de la pasarela de pago
    "webhook": "100/minute",

    # Escaneo: una cámara puede emitir el mismo código varias veces por segundo
    "scan": "240/minute",

    # Check-in manual y lecturas de staff
    "staff": "120/minute",

    "default": "60/minute",
}
