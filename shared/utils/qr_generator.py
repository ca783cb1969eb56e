"""Utilidades para generar códigos de escaneo (QR) y números de ticket"""
import hashlib
import hmac
import secrets
from typing import Optional

from app.core.config import settings


def generate_scan_code(ticket_id: str, secret: Optional[str] = None) -> str:
    """
    Generar el código de escaneo único de un ticket

    HMAC-SHA256 sobre el ticket_id más un nonce aleatorio: no se deriva del
    número de ticket ni del registration_id.

    Args:
        ticket_id: UUID del ticket como string
        secret: Secret key para HMAC (default: settings.QR_SECRET)

    Returns:
        String hexadecimal de 64 caracteres
    """
    if secret is None:
        secret = settings.QR_SECRET

    nonce = secrets.token_hex(16)
    message = f"ticket:{ticket_id}:{nonce}"
    return hmac.new(
        secret.encode('utf-8'),
        message.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def normalize_scan_code(raw: str) -> str:
    """Limpiar el texto decodificado por la cámara (espacios, mayúsculas)"""
    return (raw or "").strip().lower()


def format_ticket_number(event_id: str, sequence: int) -> str:
    """
    Número de ticket legible: prefijo del evento + secuencia.

    Ej: evento 3f2a... secuencia 7 -> "3F2A-00007"
    """
    prefix = str(event_id).replace('-', '')[:4].upper()
    return f"{prefix}-{sequence:05d}"
