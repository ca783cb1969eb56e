"""Servicio de registro a eventos (gratis o con pago)"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional, List
from uuid import UUID
import secrets
import logging

from app.core.config import settings
from shared.database.models import (
    Event, Pass, Registration, User,
    REGISTRATION_PENDING_PAYMENT, REGISTRATION_CONFIRMED, REGISTRATION_CANCELLED,
)
from shared.exceptions import (
    PassNotFound, PolicyViolation, CapacityExceeded, RegistrationNotFound,
    Forbidden, IntentNotFound, PaymentGatewayError,
)
from shared.cache.redis_client import set_json, pop_json
from services.event_management.services.event_service import EventService
from services.payments.services.payment_gateway import PaymentGateway
from services.payments.services.payment_service import PaymentService
from services.ticket_issuer.services.ticket_issuer import TicketIssuer

logger = logging.getLogger(__name__)

# Géneros que no pueden registrarse en eventos solo mujeres
WOMEN_ONLY_EXCLUDED_GENDERS = ("male", "man", "m")

# Estados que un registro repetido retoma en vez de crear uno nuevo
ACTIVE_STATUSES = (REGISTRATION_CONFIRMED, REGISTRATION_PENDING_PAYMENT)


class RegistrationService:
    """Servicio para registrar asistentes y emitir su ticket"""

    def __init__(self, gateway: Optional[PaymentGateway] = None):
        self.event_service = EventService()
        self.payment_service = PaymentService(gateway)
        self.ticket_issuer = TicketIssuer()

    async def register(
        self,
        db: AsyncSession,
        event_id: UUID,
        attendee_id: UUID,
        pass_id: Optional[UUID] = None,
        survey: Optional[Dict] = None,
        gender: Optional[str] = None,
        message: Optional[str] = None
    ) -> Dict:
        """
        Registrar a un asistente en un evento

        - Pase gratis: registro confirmado y ticket emitido en la misma transacción.
        - Pase con precio: registro pending_payment + orden en la pasarela.
        - Registro repetido: retorna el ticket (u orden pendiente) existente
          con already_registered=True en vez de fallar.

        Returns:
            dict con registration, ticket, payment_order, already_registered
        """
        event = await self.event_service.get_event(db, event_id)

        existing = await self._get_registration(db, event_id, attendee_id)
        if existing and existing.status in ACTIVE_STATUSES:
            resumed = await self._resume(db, existing)
            if resumed is not None:
                return resumed

        # Validaciones antes de escribir cualquier estado
        await self._check_policy(db, event, attendee_id, gender)
        passes = await self.event_service.list_passes(db, event_id)
        ticket_pass = self._resolve_pass(passes, pass_id)
        price = Decimal(ticket_pass.price) if ticket_pass else Decimal("0")
        is_free = price <= 0

        if existing is not None:
            # Registro cancelado/fallido que se reutiliza: bloquear la fila y
            # revisar de nuevo por si otra solicitud ya lo reactivó
            existing = (await db.execute(
                select(Registration)
                .where(Registration.id == existing.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )).scalar_one()
            if existing.status in ACTIVE_STATUSES:
                resumed = await self._resume(db, existing)
                if resumed is not None:
                    return resumed
                return await self.register(
                    db, event_id, attendee_id,
                    pass_id=pass_id, survey=survey, gender=gender, message=message
                )

        try:
            await self._reserve_capacity(db, ticket_pass)

            registration = existing
            if registration is None:
                registration = Registration(event_id=event_id, attendee_id=attendee_id)
                db.add(registration)
            else:
                # Órdenes que quedaron abiertas en el intento anterior ya no se pueden pagar
                await self.payment_service.fail_open_orders(db, registration.id)

            registration.pass_id = ticket_pass.id if ticket_pass else None
            registration.status = REGISTRATION_CONFIRMED if is_free else REGISTRATION_PENDING_PAYMENT
            registration.price_paid = price
            registration.survey = survey
            registration.message = message
            await db.flush()

            ticket = None
            order = None
            if is_free:
                ticket = await self.ticket_issuer.mint(db, registration)
            else:
                # La fila de la orden se reserva con el registro; la pasarela se llama después
                order = await self.payment_service.reserve_order(db, registration)

            await db.commit()
        except IntegrityError:
            # Otra solicitud del mismo asistente ganó la carrera (doble click)
            await db.rollback()
            logger.info(f"Registro concurrente detectado para asistente {attendee_id} en evento {event_id}")
            winner = await self._get_registration(db, event_id, attendee_id)
            if winner is None:
                raise
            resumed = await self._resume(db, winner)
            if resumed is not None:
                return resumed
            # Un cancel concurrente dejó la fila reutilizable
            return await self.register(
                db, event_id, attendee_id,
                pass_id=pass_id, survey=survey, gender=gender, message=message
            )
        except CapacityExceeded:
            await db.rollback()
            logger.info(f"Pase {pass_id} sin cupo (evento {event_id})")
            raise

        if is_free:
            logger.info(f"Registro {registration.id} confirmado (gratis), ticket {ticket.ticket_number}")
            return self._result(registration, ticket=ticket)

        logger.info(f"Registro {registration.id} pendiente de pago ({price})")
        order = await self.payment_service.open_order(db, order)
        if order is None:
            await db.refresh(registration)
        return self._result(registration, payment_order=order)

    async def cancel(self, db: AsyncSession, registration_id: UUID, attendee_id: UUID) -> Registration:
        """
        Cancelar un registro pendiente de pago (el asistente abandonó el checkout)

        Libera el cupo del pase y marca las órdenes abiertas como fallidas.
        Cancelar un registro ya cancelado no hace nada.
        """
        stmt = (
            select(Registration)
            .where(Registration.id == registration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        registration = (await db.execute(stmt)).scalar_one_or_none()
        if not registration:
            await db.rollback()
            raise RegistrationNotFound()

        if registration.attendee_id != attendee_id:
            await db.rollback()
            raise Forbidden("Solo puedes cancelar tus propios registros")

        if registration.status == REGISTRATION_CANCELLED:
            await db.commit()
            return registration

        if registration.status != REGISTRATION_PENDING_PAYMENT:
            await db.rollback()
            raise PolicyViolation("Solo se pueden cancelar registros pendientes de pago")

        registration.status = REGISTRATION_CANCELLED
        await self.payment_service.fail_open_orders(db, registration.id)
        if registration.pass_id:
            await db.execute(
                update(Pass)
                .where(and_(Pass.id == registration.pass_id, Pass.reserved_count > 0))
                .values(reserved_count=Pass.reserved_count - 1)
                .execution_options(synchronize_session=False)
            )
        await db.commit()

        logger.info(f"Registro {registration.id} cancelado por el asistente")
        return registration

    async def create_intent(self, event_id: UUID, pass_id: Optional[UUID] = None) -> Dict:
        """
        Guardar la intención de registro antes del login

        Se guarda en Redis con expiración y se reproduce una sola vez
        cuando el usuario ya está autenticado.
        """
        intent_id = secrets.token_urlsafe(16)
        ttl = settings.REGISTRATION_INTENT_TTL_SECONDS
        await set_json(
            f"registration:intent:{intent_id}",
            {"event_id": str(event_id), "pass_id": str(pass_id) if pass_id else None},
            ttl=ttl
        )
        return {
            "intent_id": intent_id,
            "event_id": event_id,
            "pass_id": pass_id,
            "expires_at": datetime.now(timezone.utc) + timedelta(seconds=ttl),
        }

    async def replay_intent(
        self,
        db: AsyncSession,
        intent_id: str,
        attendee_id: UUID,
        survey: Optional[Dict] = None,
        gender: Optional[str] = None
    ) -> Dict:
        """Consumir la intención (una sola vez) y registrar al usuario autenticado"""
        intent = await pop_json(f"registration:intent:{intent_id}")
        if not intent:
            raise IntentNotFound()

        logger.info(f"Reproduciendo intención {intent_id} para asistente {attendee_id}")
        return await self.register(
            db,
            event_id=UUID(intent["event_id"]),
            attendee_id=attendee_id,
            pass_id=UUID(intent["pass_id"]) if intent.get("pass_id") else None,
            survey=survey,
            gender=gender,
        )

    @staticmethod
    async def _get_registration(db: AsyncSession, event_id: UUID, attendee_id: UUID) -> Optional[Registration]:
        stmt = (
            select(Registration)
            .where(and_(Registration.event_id == event_id, Registration.attendee_id == attendee_id))
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _resume(self, db: AsyncSession, registration: Registration) -> Optional[Dict]:
        """
        Retornar el estado existente de un registro repetido

        None si el registro ya no está activo (cancelado o fallido): el llamador
        lo reutiliza como un registro nuevo.
        """
        if registration.status == REGISTRATION_CONFIRMED:
            ticket = await self.ticket_issuer.get_by_registration(db, registration.id)
            if ticket is None:
                ticket = await self.ticket_issuer.issue(db, registration.id)
            else:
                await db.commit()
            logger.info(f"Registro {registration.id} ya confirmado, retornando ticket {ticket.ticket_number}")
            return self._result(registration, ticket=ticket, already_registered=True)

        if registration.status != REGISTRATION_PENDING_PAYMENT:
            await db.commit()
            return None

        # Si otra solicitud está creando la orden en la pasarela, esperar esa misma orden
        order = await self.payment_service.wait_for_order(db, registration.id)
        if order is None:
            return await self._reopen_order(db, registration.id)
        return self._result(registration, payment_order=order, already_registered=True)

    async def _reopen_order(self, db: AsyncSession, registration_id: UUID) -> Optional[Dict]:
        """Reservar una orden nueva para un registro pendiente cuya orden anterior falló"""
        registration = (await db.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one()
        if registration.status != REGISTRATION_PENDING_PAYMENT:
            return await self._resume(db, registration)

        try:
            order = await self.payment_service.reserve_order(db, registration)
            await db.commit()
        except IntegrityError:
            # Otra solicitud reservó la orden primero
            await db.rollback()
            await db.refresh(registration)
            order = await self.payment_service.wait_for_order(db, registration_id)
            if order is None:
                raise PaymentGatewayError("La orden de pago aún no está disponible, intenta nuevamente")
            return self._result(registration, payment_order=order, already_registered=True)

        logger.info(f"Reabriendo orden de pago para registro {registration_id}")
        order = await self.payment_service.open_order(db, order)
        return self._result(registration, payment_order=order, already_registered=True)

    async def _check_policy(
        self,
        db: AsyncSession,
        event: Event,
        attendee_id: UUID,
        gender: Optional[str]
    ):
        """Evento solo mujeres: el género debe informarse y no puede ser masculino"""
        if not event.is_women_only:
            return

        if not gender:
            result = await db.execute(select(User.gender).where(User.id == attendee_id))
            gender = result.scalar_one_or_none()

        normalized = (gender or "").strip().lower()
        if not normalized:
            raise PolicyViolation("Este evento es solo para mujeres: debes indicar tu género")
        if normalized in WOMEN_ONLY_EXCLUDED_GENDERS:
            logger.info(f"Registro rechazado en evento solo mujeres {event.id} para {attendee_id}")
            raise PolicyViolation("Este evento es solo para mujeres")

    @staticmethod
    def _resolve_pass(passes: List[Pass], pass_id: Optional[UUID]) -> Optional[Pass]:
        """El pase debe pertenecer al evento; si el evento no tiene pases, no se acepta ninguno"""
        if not passes:
            if pass_id is not None:
                raise PassNotFound()
            return None

        if pass_id is None:
            raise PassNotFound("Debes seleccionar un pase")

        for ticket_pass in passes:
            if ticket_pass.id == pass_id:
                return ticket_pass
        raise PassNotFound()

    @staticmethod
    async def _reserve_capacity(db: AsyncSession, ticket_pass: Optional[Pass]):
        """
        Reservar un cupo con UPDATE condicional

        La verificación y la reserva son la misma sentencia: dos registros
        concurrentes no pueden sobrevender el último cupo.
        """
        if ticket_pass is None:
            return

        result = await db.execute(
            update(Pass)
            .where(
                and_(
                    Pass.id == ticket_pass.id,
                    or_(Pass.capacity.is_(None), Pass.reserved_count < Pass.capacity),
                )
            )
            .values(reserved_count=Pass.reserved_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise CapacityExceeded()

    @staticmethod
    def _result(
        registration: Registration,
        ticket=None,
        payment_order=None,
        already_registered: bool = False
    ) -> Dict:
        return {
            "registration": registration,
            "ticket": ticket,
            "payment_order": payment_order,
            "already_registered": already_registered,
        }
