"""Utilidades compartidas por los tests"""
import asyncio
import hashlib
import hmac
import uuid

from app.core.config import settings
from shared.auth.jwt_handler import create_access_token
from services.payments.services.payment_gateway import RazorpayGateway, to_minor_units


class FakeGateway(RazorpayGateway):
    """Razorpay sin red: create_order responde localmente, la verificación es la real"""

    def __init__(self):
        super().__init__(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            api_url="https://razorpay.invalid/v1",
        )
        self.orders = []

    async def create_order(self, registration_id, amount, currency):
        order = {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": registration_id,
        }
        self.orders.append(order)
        return order


class SlowGateway(FakeGateway):
    """Pasarela con latencia: la orden tarda en crearse"""

    def __init__(self, delay: float = 0.2):
        super().__init__()
        self.delay = delay

    async def create_order(self, registration_id, amount, currency):
        await asyncio.sleep(self.delay)
        return await super().create_order(registration_id, amount, currency)


def sign_payment(order_ref: str, payment_id: str) -> str:
    message = f"{order_ref}|{payment_id}".encode("utf-8")
    return hmac.new(settings.RAZORPAY_KEY_SECRET.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_webhook(body: bytes) -> str:
    return hmac.new(settings.RAZORPAY_WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()


def auth_headers(user_id) -> dict:
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}
