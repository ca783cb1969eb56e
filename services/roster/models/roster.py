"""Modelos Pydantic del roster"""
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class RosterEntry(BaseModel):
    ticket_id: UUID
    registration_id: UUID
    ticket_number: str
    attendee_id: UUID
    name: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Optional[str] = None
    profile_image: Optional[str] = None
    pass_id: Optional[UUID] = None
    pass_name: Optional[str] = None
    price_paid: Decimal
    status: str
    survey: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    registered_at: Optional[datetime] = None
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    checked_in_via: Optional[str] = None
    checked_out_at: Optional[datetime] = None


class RosterResponse(BaseModel):
    entries: List[RosterEntry]
    total: int


class RosterStatsResponse(BaseModel):
    event_id: UUID
    total: int
    checked_in: int
    pending: int
