"""Servicio de lectura de eventos y catálogo de pases"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from typing import List, Dict
from uuid import UUID
import logging

from shared.database.models import (
    Event, EventOperator, Pass, Ticket, User, Registration, REGISTRATION_CONFIRMED
)
from shared.exceptions import EventNotFound, Forbidden

logger = logging.getLogger(__name__)


class EventService:
    """Servicio para consultar eventos (solo lectura para el motor de tickets)"""

    @staticmethod
    async def get_event(db: AsyncSession, event_id: UUID) -> Event:
        """Obtener evento o lanzar EventNotFound"""
        result = await db.execute(select(Event).where(Event.id == event_id))
        event = result.scalar_one_or_none()
        if not event:
            raise EventNotFound()
        return event

    @staticmethod
    async def list_passes(db: AsyncSession, event_id: UUID) -> List[Pass]:
        """Pases del evento ordenados por precio"""
        stmt = (
            select(Pass)
            .where(Pass.event_id == event_id)
            .order_by(Pass.price, Pass.name)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def is_event_staff(db: AsyncSession, event: Event, user_id: UUID) -> bool:
        """El organizador o un operador delegado pueden escanear y ver la lista"""
        if event.organizer_id == user_id:
            return True

        stmt = select(EventOperator.id).where(
            and_(EventOperator.event_id == event.id, EventOperator.user_id == user_id)
        )
        result = await db.execute(stmt)
        return result.first() is not None

    async def require_event_staff(self, db: AsyncSession, event_id: UUID, user_id: UUID) -> Event:
        """Obtener evento verificando que el usuario sea staff; si no, Forbidden"""
        event = await self.get_event(db, event_id)
        if not await self.is_event_staff(db, event, user_id):
            logger.warning(f"Usuario {user_id} sin permisos de staff en evento {event_id}")
            raise Forbidden("Solo el organizador o sus operadores pueden acceder")
        return event

    async def get_guest_list(self, db: AsyncSession, event_id: UUID) -> Dict:
        """
        Lista pública de asistentes confirmados ("quiénes van")

        Solo disponible si el organizador habilitó la visibilidad.
        is_returning indica que el asistente tiene ticket en otro evento
        del mismo organizador.
        """
        event = await self.get_event(db, event_id)
        if not event.guest_list_visible:
            raise Forbidden("La lista de invitados de este evento es privada")

        other_ticket = (
            select(Ticket.id)
            .join(Event, Ticket.event_id == Event.id)
            .where(
                and_(
                    Ticket.attendee_id == User.id,
                    Event.organizer_id == event.organizer_id,
                    Event.id != event.id,
                )
            )
            .correlate(User)
        )

        stmt = (
            select(User, other_ticket.exists().label("is_returning"))
            .join(Registration, Registration.attendee_id == User.id)
            .where(
                and_(
                    Registration.event_id == event.id,
                    Registration.status == REGISTRATION_CONFIRMED,
                )
            )
            .order_by(Registration.created_at)
        )
        result = await db.execute(stmt)

        guests = [
            {
                "user_id": user.id,
                "name": user.name or "Invitado",
                "profile_image": user.profile_image,
                "is_returning": bool(is_returning),
            }
            for user, is_returning in result.all()
        ]
        return {"guests": guests, "total": len(guests)}
