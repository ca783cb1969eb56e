"""Modelos Pydantic para eventos y pases"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class PassResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: UUID
    name: str
    description: Optional[str] = None
    price: Decimal
    capacity: Optional[int] = None
    reserved_count: int = 0


class EventSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    starts_at: Optional[datetime] = None
    location_text: Optional[str] = None


class EventResponse(EventSummary):
    organizer_id: UUID
    is_women_only: bool
    guest_list_visible: bool
    passes: List[PassResponse] = []


class GuestResponse(BaseModel):
    user_id: UUID
    name: str
    profile_image: Optional[str] = None
    is_returning: bool = False


class GuestListResponse(BaseModel):
    guests: List[GuestResponse]
    total: int
