"""Rutas de tickets del asistente (Mis Tickets)"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List
from uuid import UUID

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.exceptions import Forbidden
from services.event_management.models.event import EventSummary
from services.ticket_issuer.models.ticket import AttendeeTicketResponse
from services.ticket_issuer.services.ticket_issuer import TicketIssuer


router = APIRouter()


def _to_response(ticket) -> AttendeeTicketResponse:
    response = AttendeeTicketResponse.model_validate(ticket)
    response.event = EventSummary.model_validate(ticket.event)
    return response


@router.get("/user/{user_id}", response_model=List[AttendeeTicketResponse])
async def get_user_tickets(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Todos los tickets del usuario autenticado"""
    if current_user["user_id"] != user_id:
        raise Forbidden("Solo puedes ver tus propios tickets")

    tickets = await TicketIssuer.list_for_attendee(db, user_id)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{event_id}/{user_id}", response_model=AttendeeTicketResponse)
async def get_event_ticket(
    event_id: UUID,
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Ticket de un evento con su código QR (solo el dueño)"""
    ticket = await TicketIssuer.get_for_attendee(
        db,
        event_id=event_id,
        attendee_id=user_id,
        requesting_user_id=current_user["user_id"]
    )
    return _to_response(ticket)
