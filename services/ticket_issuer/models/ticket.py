"""Modelos Pydantic para tickets emitidos"""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from uuid import UUID
from datetime import datetime

from services.event_management.models.event import EventSummary


class TicketResponse(BaseModel):
    """Ticket visto por su dueño (incluye el código de escaneo)"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    registration_id: UUID
    event_id: UUID
    attendee_id: UUID
    pass_id: Optional[UUID] = None
    ticket_number: str
    scan_code: str
    issued_at: Optional[datetime] = None
    checked_in: bool = False
    checked_in_at: Optional[datetime] = None
    checked_in_via: Optional[str] = None
    checked_out_at: Optional[datetime] = None


class AttendeeTicketResponse(TicketResponse):
    """Ticket + resumen del evento (Mis Tickets)"""
    event: Optional[EventSummary] = None
