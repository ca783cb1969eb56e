"""Emisión de tickets: exactamente un ticket por registro confirmado"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from typing import List, Optional
from uuid import UUID
import uuid
import logging

from shared.database.models import (
    Event, Registration, PaymentOrder, Ticket,
    REGISTRATION_CONFIRMED, REGISTRATION_PENDING_PAYMENT, ORDER_VERIFIED
)
from shared.exceptions import RegistrationNotFound, PaymentUnverified, TicketNotFound, Forbidden
from shared.utils.qr_generator import generate_scan_code, format_ticket_number

logger = logging.getLogger(__name__)


class TicketIssuer:
    """
    Servicio para emitir tickets

    La emisión es idempotente por registration_id (columna UNIQUE en tickets):
    webhooks de pago duplicados y registros gratuitos repetidos terminan
    siempre en el mismo ticket.
    """

    @staticmethod
    async def get_by_registration(db: AsyncSession, registration_id: UUID) -> Optional[Ticket]:
        stmt = select(Ticket).where(Ticket.registration_id == registration_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _next_ticket_number(self, db: AsyncSession, event_id: UUID) -> str:
        """Incrementar la secuencia del evento de forma atómica y formatear el número"""
        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(ticket_sequence=Event.ticket_sequence + 1)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(select(Event.ticket_sequence).where(Event.id == event_id))
        return format_ticket_number(str(event_id), result.scalar_one())

    async def mint(self, db: AsyncSession, registration: Registration) -> Ticket:
        """
        Crear el ticket dentro de la transacción actual (sin commit)

        Si ya existe un ticket para el registro, lo retorna. Una carrera entre
        dos transacciones termina en IntegrityError para la perdedora; el
        llamador debe hacer rollback y releer con get_by_registration.
        """
        existing = await self.get_by_registration(db, registration.id)
        if existing:
            return existing

        if registration.status != REGISTRATION_CONFIRMED:
            raise PaymentUnverified("El registro no está confirmado")

        ticket_id = uuid.uuid4()
        ticket = Ticket(
            id=ticket_id,
            registration_id=registration.id,
            event_id=registration.event_id,
            attendee_id=registration.attendee_id,
            pass_id=registration.pass_id,
            ticket_number=await self._next_ticket_number(db, registration.event_id),
            scan_code=generate_scan_code(str(ticket_id)),
            checked_in=False,
            checked_in_at=None,
            checked_in_via=None,
        )
        db.add(ticket)
        await db.flush()

        logger.info(
            f"Ticket {ticket.ticket_number} emitido para registro {registration.id} "
            f"(evento {registration.event_id})"
        )
        return ticket

    async def issue(self, db: AsyncSession, registration_id: UUID) -> Ticket:
        """
        Emitir (o recuperar) el ticket de un registro

        Precondición: registro confirmado, o con una orden de pago verificada.
        """
        stmt = (
            select(Registration)
            .where(Registration.id == registration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        registration = result.scalar_one_or_none()
        if not registration:
            await db.rollback()
            raise RegistrationNotFound()

        if registration.status == REGISTRATION_PENDING_PAYMENT:
            stmt_order = select(PaymentOrder.id).where(
                and_(
                    PaymentOrder.registration_id == registration.id,
                    PaymentOrder.status == ORDER_VERIFIED,
                )
            )
            verified = (await db.execute(stmt_order)).first()
            if verified is None:
                await db.rollback()
                raise PaymentUnverified()
            registration.status = REGISTRATION_CONFIRMED

        try:
            ticket = await self.mint(db, registration)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Ticket para registro {registration_id} ya emitido por otra transacción")
            ticket = await self.get_by_registration(db, registration_id)
            if ticket is None:
                raise
            await db.refresh(registration)
        except PaymentUnverified:
            await db.rollback()
            raise

        return ticket

    @staticmethod
    async def list_for_attendee(db: AsyncSession, attendee_id: UUID) -> List[Ticket]:
        """Todos los tickets de un asistente (Mis Tickets)"""
        stmt = (
            select(Ticket)
            .where(Ticket.attendee_id == attendee_id)
            .options(selectinload(Ticket.event))
            .order_by(Ticket.issued_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_for_attendee(
        db: AsyncSession,
        event_id: UUID,
        attendee_id: UUID,
        requesting_user_id: UUID
    ) -> Ticket:
        """
        Ticket de un asistente para un evento, incluyendo el código de escaneo

        Solo el propio asistente puede ver su código.
        """
        if requesting_user_id != attendee_id:
            raise Forbidden("Solo puedes ver tus propios tickets")

        stmt = (
            select(Ticket)
            .where(and_(Ticket.event_id == event_id, Ticket.attendee_id == attendee_id))
            .options(selectinload(Ticket.event), selectinload(Ticket.registration))
        )
        result = await db.execute(stmt)
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise TicketNotFound()
        return ticket
