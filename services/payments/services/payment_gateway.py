"""Integración con la pasarela de pago (Razorpay) - Async con httpx"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
import hashlib
import hmac
import logging

import httpx

from app.core.config import settings
from shared.exceptions import PaymentGatewayError
from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class PaymentGateway:
    """
    Contrato consumido de la pasarela de pago

    create_order abre una orden para un registro con precio; verify es la
    única frontera de confianza: un "pago exitoso" reportado por el cliente
    sin firma válida nunca alcanza para emitir un ticket.
    """

    async def create_order(self, registration_id: str, amount: Decimal, currency: str) -> Dict:
        """Retorna dict con al menos: id (order_ref), amount, currency"""
        raise NotImplementedError

    def verify(self, payment_id: str, order_ref: str, signature: str) -> bool:
        raise NotImplementedError

    def verify_webhook(self, body: bytes, signature: Optional[str]) -> bool:
        raise NotImplementedError


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def to_minor_units(amount: Decimal) -> int:
    """Razorpay recibe montos en la unidad menor (paise)"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RazorpayGateway(PaymentGateway):
    """Servicio para manejar pagos con Razorpay"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_url: Optional[str] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        self.api_url = (api_url or settings.RAZORPAY_API_URL).rstrip('/')
        self.timeout = settings.PAYMENT_TIMEOUT_SECONDS
        self.breaker = CircuitBreaker(
            "razorpay",
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exceptions=(httpx.TransportError, httpx.HTTPStatusError),
        )

        if not self.key_id or not self.key_secret:
            logger.warning("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET no configurados: no se podrán crear órdenes")

    async def _post_order(self, payload: Dict) -> Dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.api_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
            )
            response.raise_for_status()
            return response.json()

    async def create_order(self, registration_id: str, amount: Decimal, currency: str) -> Dict:
        """
        Crear orden en Razorpay (ASYNC)

        Args:
            registration_id: se envía como receipt y en notes
            amount: monto en unidades mayores (ej. 100.00 INR)
            currency: código ISO (INR)

        Returns:
            dict con id, amount (minor units), currency, receipt
        """
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Pasarela de pago no configurada")

        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": registration_id[:40],
            "notes": {"registration_id": registration_id},
        }

        async def attempt():
            return await self.breaker.call(self._post_order, payload)

        try:
            data = await retry_with_backoff(
                attempt,
                max_retries=2,
                initial_delay=0.5,
                exceptions=(httpx.TransportError,)
            )
        except CircuitOpenError as e:
            raise PaymentGatewayError(str(e))
        except httpx.HTTPStatusError as e:
            logger.error(f"Razorpay rechazó la orden ({e.response.status_code}): {e.response.text[:200]}")
            raise PaymentGatewayError(f"La pasarela rechazó la orden ({e.response.status_code})")
        except httpx.TransportError as e:
            logger.error(f"Error de red creando orden en Razorpay: {e}")
            raise PaymentGatewayError()

        if not data.get("id"):
            raise PaymentGatewayError("Respuesta de la pasarela sin id de orden")

        logger.info(f"Orden Razorpay {data['id']} creada para registro {registration_id}")
        return data

    def verify(self, payment_id: str, order_ref: str, signature: str) -> bool:
        """
        Verificar la firma del checkout: HMAC-SHA256(key_secret, "order_id|payment_id")
        """
        if not self.key_secret or not signature:
            return False
        expected = _hmac_sha256(self.key_secret, f"{order_ref}|{payment_id}".encode('utf-8'))
        return hmac.compare_digest(expected, signature)

    def verify_webhook(self, body: bytes, signature: Optional[str]) -> bool:
        """
        Verificar webhook: HMAC-SHA256(webhook_secret, body) contra X-Razorpay-Signature

        Sin secret configurado no se confía en ningún webhook.
        """
        if not self.webhook_secret:
            logger.warning("RAZORPAY_WEBHOOK_SECRET no configurado, webhook rechazado")
            return False
        if not signature:
            return False
        expected = _hmac_sha256(self.webhook_secret, body)
        return hmac.compare_digest(expected, signature)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Dependency: instancia compartida (mantiene el estado del circuit breaker)"""
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway()
    return _gateway
