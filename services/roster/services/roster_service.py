"""Roster de asistentes y estadísticas de check-in por evento"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Dict, List, Optional
from uuid import UUID
import logging

from shared.database.models import Ticket, Registration, User, Pass
from services.event_management.services.event_service import EventService
from services.ticket_validation.services.checkin_service import CheckInService

logger = logging.getLogger(__name__)


def filter_roster(
    entries: List[Dict],
    search: Optional[str] = None,
    checked_in: Optional[bool] = None
) -> List[Dict]:
    """Búsqueda por nombre o número de ticket (sin distinguir mayúsculas) y filtro de check-in"""
    term = (search or "").strip().lower()
    filtered = []
    for entry in entries:
        if checked_in is not None and entry["checked_in"] != checked_in:
            continue
        if term:
            name = (entry.get("name") or "").lower()
            number = (entry.get("ticket_number") or "").lower()
            if term not in name and term not in number:
                continue
        filtered.append(entry)
    return filtered


class RosterService:
    """
    Vista de solo lectura sobre Registration + Ticket + estado de check-in

    Solo cuenta tickets emitidos: un registro pending_payment no tiene
    ticket y no aparece ni en la lista ni en total.
    """

    def __init__(self):
        self.event_service = EventService()

    async def list(
        self,
        db: AsyncSession,
        event_id: UUID,
        requesting_user_id: UUID,
        search: Optional[str] = None,
        checked_in: Optional[bool] = None
    ) -> List[Dict]:
        await self.event_service.require_event_staff(db, event_id, requesting_user_id)

        stmt = (
            select(Ticket, Registration, User, Pass)
            .join(Registration, Ticket.registration_id == Registration.id)
            .join(User, Ticket.attendee_id == User.id)
            .outerjoin(Pass, Ticket.pass_id == Pass.id)
            .where(Ticket.event_id == event_id)
            .order_by(Ticket.issued_at, Ticket.ticket_number)
        )
        result = await db.execute(stmt)

        entries = [
            {
                "ticket_id": ticket.id,
                "registration_id": registration.id,
                "ticket_number": ticket.ticket_number,
                "attendee_id": user.id,
                "name": user.name,
                "phone_number": user.phone_number,
                "gender": user.gender,
                "profile_image": user.profile_image,
                "pass_id": ticket.pass_id,
                "pass_name": ticket_pass.name if ticket_pass else None,
                "price_paid": registration.price_paid,
                "status": registration.status,
                "survey": registration.survey,
                "message": registration.message,
                "registered_at": registration.created_at,
                "checked_in": ticket.checked_in,
                "checked_in_at": ticket.checked_in_at,
                "checked_in_via": ticket.checked_in_via,
                "checked_out_at": ticket.checked_out_at,
            }
            for ticket, registration, user, ticket_pass in result.all()
        ]
        return filter_roster(entries, search=search, checked_in=checked_in)

    async def stats(self, db: AsyncSession, event_id: UUID) -> Dict:
        """{total, checked_in, pending} en una sola consulta: checked_in + pending == total"""
        await self.event_service.get_event(db, event_id)
        checked_in, total = await CheckInService.event_counts(db, event_id)
        return {
            "event_id": event_id,
            "total": total,
            "checked_in": checked_in,
            "pending": total - checked_in,
        }
