"""Coordinador de check-in: escaneo QR y check-in/check-out manual"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func, case
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from uuid import UUID
import logging

from shared.database.models import (
    Ticket, User, Event, CheckInLog, CHECKIN_VIA_QR, CHECKIN_VIA_MANUAL
)
from shared.exceptions import InvalidCode, WrongEvent, TicketNotFound
from shared.utils.qr_generator import normalize_scan_code
from services.event_management.services.event_service import EventService

logger = logging.getLogger(__name__)

ACTION_CHECKIN = "checkin"
ACTION_CHECKOUT = "checkout"


class CheckInService:
    """
    Única vía de escritura del estado de check-in de los tickets

    Cada transición es un UPDATE condicional sobre la fila del ticket
    (compare-and-swap): de N escaneos concurrentes del mismo código solo uno
    afecta la fila y recibe el "primer check-in"; el resto observa
    already_checked_in=True sin modificar nada. El conteo del evento se lee
    en la misma transacción, después de la transición.
    """

    def __init__(self):
        self.event_service = EventService()

    async def scan(
        self,
        db: AsyncSession,
        scan_code: str,
        operator_id: UUID,
        event_id: Optional[UUID] = None
    ) -> Dict:
        """
        Check-in por QR

        Args:
            scan_code: texto decodificado por la cámara
            operator_id: usuario que escanea (organizador u operador)
            event_id: evento seleccionado en el escáner (opcional)

        Returns:
            dict con el estado del ticket, already_checked_in y los conteos del evento
        """
        code = normalize_scan_code(scan_code)
        ticket = None
        if code:
            result = await db.execute(
                select(Ticket)
                .where(Ticket.scan_code == code)
                .execution_options(populate_existing=True)
            )
            ticket = result.scalar_one_or_none()

        if ticket is None:
            await db.rollback()
            logger.warning(f"Código inválido escaneado por {operator_id}")
            raise InvalidCode()

        if event_id is not None and ticket.event_id != event_id:
            await self.event_service.require_event_staff(db, event_id, operator_id)
            ticket_id, ticket_event_id = ticket.id, ticket.event_id
            await db.rollback()
            logger.warning(
                f"Ticket {ticket_id} del evento {ticket_event_id} escaneado en evento {event_id} por {operator_id}"
            )
            raise WrongEvent()

        event = await self.event_service.require_event_staff(db, ticket.event_id, operator_id)
        changed = await self._transition(db, ticket, operator_id, ACTION_CHECKIN, CHECKIN_VIA_QR)
        return await self._finish(db, event, ticket, ACTION_CHECKIN, changed)

    async def manual_set(
        self,
        db: AsyncSession,
        operator_id: UUID,
        action: str,
        ticket_id: Optional[UUID] = None,
        registration_id: Optional[UUID] = None
    ) -> Dict:
        """
        Check-in / check-out manual (solo staff del evento)

        Pedir el estado que ya tiene el ticket no es un error: retorna el
        estado actual con changed=False.
        """
        if action not in (ACTION_CHECKIN, ACTION_CHECKOUT):
            raise ValueError(f"Acción inválida: {action}")

        stmt = select(Ticket).execution_options(populate_existing=True)
        if ticket_id is not None:
            stmt = stmt.where(Ticket.id == ticket_id)
        elif registration_id is not None:
            stmt = stmt.where(Ticket.registration_id == registration_id)
        else:
            raise ValueError("Se requiere ticket_id o registration_id")

        ticket = (await db.execute(stmt)).scalar_one_or_none()
        if ticket is None:
            await db.rollback()
            raise TicketNotFound()

        event = await self.event_service.require_event_staff(db, ticket.event_id, operator_id)
        changed = await self._transition(db, ticket, operator_id, action, CHECKIN_VIA_MANUAL)
        return await self._finish(db, event, ticket, action, changed)

    async def _transition(
        self,
        db: AsyncSession,
        ticket: Ticket,
        operator_id: UUID,
        action: str,
        via: str
    ) -> bool:
        """UPDATE condicional; True solo si esta llamada cambió el estado"""
        now = datetime.now(timezone.utc)

        if action == ACTION_CHECKIN:
            stmt = (
                update(Ticket)
                .where(and_(Ticket.id == ticket.id, Ticket.checked_in.is_(False)))
                .values(
                    checked_in=True,
                    checked_in_at=now,
                    checked_in_via=via,
                    checked_in_by=operator_id,
                    checked_out_at=None,
                )
            )
        else:
            stmt = (
                update(Ticket)
                .where(and_(Ticket.id == ticket.id, Ticket.checked_in.is_(True)))
                .values(
                    checked_in=False,
                    checked_in_at=None,
                    checked_in_via=None,
                    checked_in_by=None,
                    checked_out_at=now,
                )
            )

        result = await db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            return False

        db.add(CheckInLog(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            operator_id=operator_id,
            action=action,
            via=via,
        ))
        logger.info(f"Ticket {ticket.ticket_number}: {action} vía {via} por {operator_id}")
        return True

    @staticmethod
    async def event_counts(db: AsyncSession, event_id: UUID) -> Tuple[int, int]:
        """(checked_in, total) de tickets emitidos del evento en una sola consulta"""
        stmt = select(
            func.count(Ticket.id),
            func.sum(case((Ticket.checked_in.is_(True), 1), else_=0)),
        ).where(Ticket.event_id == event_id)
        total, checked_in = (await db.execute(stmt)).one()
        return int(checked_in or 0), int(total or 0)

    async def _finish(
        self,
        db: AsyncSession,
        event: Event,
        ticket: Ticket,
        action: str,
        changed: bool
    ) -> Dict:
        """Leer estado y conteos dentro de la transacción, luego commit"""
        checked_in_count, total = await self.event_counts(db, event.id)
        await db.refresh(ticket)
        attendee = await db.get(User, ticket.attendee_id)
        await db.commit()

        already_checked_in = action == ACTION_CHECKIN and not changed
        if action == ACTION_CHECKIN:
            message = "Ya había hecho check-in" if already_checked_in else "Check-in exitoso"
        else:
            message = "Check-out registrado" if changed else "El asistente no tenía check-in"

        return {
            "action": action,
            "changed": changed,
            "already_checked_in": already_checked_in,
            "severity": "info" if not changed else "success",
            "message": message,
            "ticket_id": ticket.id,
            "registration_id": ticket.registration_id,
            "ticket_number": ticket.ticket_number,
            "checked_in": ticket.checked_in,
            "checked_in_at": ticket.checked_in_at,
            "checked_in_via": ticket.checked_in_via,
            "checked_out_at": ticket.checked_out_at,
            "checked_in_count": checked_in_count,
            "total": total,
            "event": {
                "id": event.id,
                "title": event.title,
                "starts_at": event.starts_at,
                "location_text": event.location_text,
            },
            "attendee": {
                "user_id": ticket.attendee_id,
                "name": attendee.name if attendee else None,
                "profile_image": attendee.profile_image if attendee else None,
            },
        }
