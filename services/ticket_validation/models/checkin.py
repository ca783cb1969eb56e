"""Modelos Pydantic para escaneo y check-in"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, Literal
from uuid import UUID
from datetime import datetime


class ScanRequest(BaseModel):
    scan_code: str = Field(..., min_length=1, description="Texto decodificado del QR")
    event_id: Optional[UUID] = Field(None, description="Evento seleccionado en el escáner")


class ManualCheckInRequest(BaseModel):
    action: Literal["checkin", "checkout"]
    ticket_id: Optional[UUID] = None
    registration_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.ticket_id is None and self.registration_id is None:
            raise ValueError("Se requiere ticket_id o registration_id")
        return self


class ScanEventInfo(BaseModel):
    id: UUID
    title: str
    starts_at: Optional[datetime] = None
    location_text: Optional[str] = None


class ScanAttendeeInfo(BaseModel):
    user_id: UUID
    name: Optional[str] = None
    profile_image: Optional[str] = None


class CheckInStateResponse(BaseModel):
    action: str
    changed: bool
    already_checked_in: bool
    severity: str
    message: str
    ticket_id: UUID
    registration_id: UUID
    ticket_number: str
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    checked_in_via: Optional[str] = None
    checked_out_at: Optional[datetime] = None
    checked_in_count: int
    total: int
    event: ScanEventInfo
    attendee: ScanAttendeeInfo
