"""Ciclo de vida de órdenes de pago y confirmación de registros pagados"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timezone
from typing import Dict, Optional
import asyncio
import json
import logging
import time

from app.core.config import settings
from shared.database.models import (
    PaymentOrder, Registration,
    ORDER_CREATED, ORDER_VERIFIED, ORDER_FAILED,
    REGISTRATION_PENDING_PAYMENT, REGISTRATION_CONFIRMED,
)
from shared.exceptions import PaymentOrderNotFound, PaymentUnverified
from services.payments.services.payment_gateway import PaymentGateway, get_payment_gateway
from services.ticket_issuer.services.ticket_issuer import TicketIssuer

logger = logging.getLogger(__name__)

# Eventos de webhook que confirman un pago
PAID_WEBHOOK_EVENTS = ("order.paid", "payment.captured")

ORDER_POLL_INTERVAL_SECONDS = 0.05


class PaymentService:
    """Servicio para abrir órdenes y procesar verificaciones de pago"""

    def __init__(self, gateway: Optional[PaymentGateway] = None):
        self.gateway = gateway or get_payment_gateway()
        self.ticket_issuer = TicketIssuer()

    @staticmethod
    async def get_open_order(db: AsyncSession, registration_id) -> Optional[PaymentOrder]:
        """Orden en estado created del registro (puede no tener order_ref todavía)"""
        stmt = (
            select(PaymentOrder)
            .where(
                and_(
                    PaymentOrder.registration_id == registration_id,
                    PaymentOrder.status == ORDER_CREATED,
                )
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def reserve_order(db: AsyncSession, registration: Registration) -> PaymentOrder:
        """
        Reservar la fila de la orden dentro de la transacción actual (sin commit)

        El índice único parcial sobre órdenes created hace que dos solicitudes
        concurrentes no puedan reservar dos órdenes para el mismo registro.
        """
        order = PaymentOrder(
            registration_id=registration.id,
            amount=registration.price_paid,
            currency=settings.PAYMENT_CURRENCY,
            status=ORDER_CREATED,
        )
        db.add(order)
        await db.flush()
        return order

    async def open_order(self, db: AsyncSession, order: PaymentOrder) -> Optional[PaymentOrder]:
        """
        Crear en la pasarela la orden reservada y guardar su order_ref

        Se llama después del commit de la reserva: la llamada de red ocurre fuera
        de cualquier transacción. Si la pasarela falla, la reserva se marca failed
        y un nuevo intento de registro reserva otra.

        Returns:
            la orden con order_ref, la que la reemplazó, o None si el registro
            ya no tiene orden abierta (cancelado mientras tanto)
        """
        order_id = order.id
        registration_id = order.registration_id
        amount = order.amount
        currency = order.currency

        try:
            order_data = await self.gateway.create_order(
                registration_id=str(registration_id),
                amount=amount,
                currency=currency,
            )
        except Exception:
            await self._release_order(db, order_id)
            raise

        result = await db.execute(
            update(PaymentOrder)
            .where(
                and_(
                    PaymentOrder.id == order_id,
                    PaymentOrder.status == ORDER_CREATED,
                    PaymentOrder.order_ref.is_(None),
                )
            )
            .values(order_ref=order_data["id"], currency=order_data.get("currency", currency))
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        if result.rowcount == 0:
            logger.warning(
                f"Orden {order_data['id']} de la pasarela descartada: la reserva {order_id} "
                f"del registro {registration_id} ya no está abierta"
            )
            return await self.wait_for_order(db, registration_id)

        await db.refresh(order)
        logger.info(f"Orden de pago {order.order_ref} abierta para registro {registration_id} ({amount} {currency})")
        return order

    async def wait_for_order(self, db: AsyncSession, registration_id) -> Optional[PaymentOrder]:
        """
        Orden abierta del registro, esperando a que otra solicitud termine de crearla

        Una reserva que no recibe su order_ref en PAYMENT_ORDER_WAIT_SECONDS se
        marca failed (la solicitud que la creó se cayó) y se retorna None para
        que el llamador reserve una nueva.
        """
        deadline = time.monotonic() + settings.PAYMENT_ORDER_WAIT_SECONDS
        while True:
            order = await self.get_open_order(db, registration_id)
            await db.commit()
            if order is None or order.order_ref is not None:
                return order

            if time.monotonic() >= deadline:
                if await self._release_order(db, order.id):
                    logger.warning(f"Reserva de orden {order.id} sin respuesta de la pasarela, liberada")
                    return None
                continue

            await asyncio.sleep(ORDER_POLL_INTERVAL_SECONDS)

    @staticmethod
    async def fail_open_orders(db: AsyncSession, registration_id):
        """Marcar failed las órdenes abiertas del registro (sin commit)"""
        await db.execute(
            update(PaymentOrder)
            .where(
                and_(
                    PaymentOrder.registration_id == registration_id,
                    PaymentOrder.status == ORDER_CREATED,
                )
            )
            .values(status=ORDER_FAILED)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def _release_order(db: AsyncSession, order_id) -> bool:
        """Marcar failed una reserva que nunca recibió order_ref"""
        result = await db.execute(
            update(PaymentOrder)
            .where(
                and_(
                    PaymentOrder.id == order_id,
                    PaymentOrder.status == ORDER_CREATED,
                    PaymentOrder.order_ref.is_(None),
                )
            )
            .values(status=ORDER_FAILED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def verify_payment(
        self,
        db: AsyncSession,
        payment_id: str,
        order_ref: str,
        signature: str
    ) -> Dict:
        """
        Verificar el callback del checkout y emitir el ticket

        Idempotente: verificar dos veces la misma orden retorna el mismo ticket.
        Si la firma no es válida no se modifica nada.
        """
        if not self.gateway.verify(payment_id, order_ref, signature):
            logger.warning(f"Firma de pago inválida para orden {order_ref}")
            raise PaymentUnverified()

        return await self._confirm_order(db, order_ref, payment_id)

    async def handle_webhook(self, db: AsyncSession, body: bytes, signature: Optional[str]) -> Dict:
        """
        Procesar webhook de la pasarela

        Solo order.paid / payment.captured confirman; el resto se ignora
        (un pago fallido puede reintentarse sobre la misma orden).
        """
        if not self.gateway.verify_webhook(body, signature):
            logger.warning("Webhook con firma inválida rechazado")
            raise PaymentUnverified("Firma de webhook inválida")

        try:
            data = json.loads(body)
        except ValueError:
            logger.warning("Webhook con cuerpo no JSON")
            return {"status": "ignored"}

        event_type = data.get("event")
        if event_type not in PAID_WEBHOOK_EVENTS:
            logger.info(f"Webhook {event_type} ignorado")
            return {"status": "ignored"}

        payment = (data.get("payload", {}).get("payment") or {}).get("entity") or {}
        order_ref = payment.get("order_id")
        payment_id = payment.get("id")
        if not order_ref:
            logger.warning(f"Webhook {event_type} sin order_id")
            return {"status": "ignored"}

        try:
            await self._confirm_order(db, order_ref, payment_id)
        except PaymentOrderNotFound:
            logger.warning(f"Webhook para orden desconocida {order_ref}")
            return {"status": "ignored"}

        return {"status": "ok"}

    async def _confirm_order(self, db: AsyncSession, order_ref: str, payment_id: Optional[str]) -> Dict:
        """Transición created -> verified y emisión del ticket en una sola transacción"""
        result = await db.execute(select(PaymentOrder.registration_id).where(PaymentOrder.order_ref == order_ref))
        registration_id = result.scalar_one_or_none()
        if registration_id is None:
            await db.rollback()
            raise PaymentOrderNotFound()

        # Bloquear el registro primero: serializa verificaciones y cancelaciones concurrentes
        stmt_registration = (
            select(Registration)
            .where(Registration.id == registration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        registration = (await db.execute(stmt_registration)).scalar_one()

        stmt_order = (
            select(PaymentOrder)
            .where(PaymentOrder.order_ref == order_ref)
            .execution_options(populate_existing=True)
        )
        order = (await db.execute(stmt_order)).scalar_one()

        already_verified = order.status == ORDER_VERIFIED

        if order.status == ORDER_FAILED or registration.status not in (
            REGISTRATION_PENDING_PAYMENT, REGISTRATION_CONFIRMED
        ):
            registration_status = registration.status
            await db.rollback()
            logger.warning(f"Pago para orden cerrada {order_ref} (registro {registration_status})")
            raise PaymentUnverified("La orden de pago ya no está abierta")

        if not already_verified and registration.status == REGISTRATION_CONFIRMED:
            # El registro ya se pagó con otra orden: este cobro se devuelve
            order.status = ORDER_FAILED
            order.payment_id = payment_id
            await db.commit()
            logger.error(
                f"Pago duplicado {payment_id} en orden {order_ref} para registro ya confirmado "
                f"{registration_id}: requiere reembolso"
            )
            raise PaymentUnverified("El registro ya fue pagado con otra orden")

        if not already_verified:
            order.status = ORDER_VERIFIED
            order.payment_id = payment_id
            order.verified_at = datetime.now(timezone.utc)
            registration.status = REGISTRATION_CONFIRMED
            registration.price_paid = order.amount

        try:
            ticket = await self.ticket_issuer.mint(db, registration)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            ticket = await self.ticket_issuer.get_by_registration(db, registration_id)
            if ticket is None:
                raise
            # El rollback expira las instancias; recargarlas antes de retornarlas
            await db.refresh(registration)
            await db.refresh(order)
            already_verified = True

        if already_verified:
            logger.info(f"Orden {order_ref} ya verificada, retornando ticket existente")
        else:
            logger.info(f"Orden {order_ref} verificada, registro {registration_id} confirmado")

        return {
            "registration": registration,
            "ticket": ticket,
            "payment_order": order,
            "already_verified": already_verified,
        }
