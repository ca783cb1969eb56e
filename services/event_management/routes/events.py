"""Rutas de eventos: catálogo de pases y lista pública de invitados"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID

from shared.database.connection import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.event_management.models.event import (
    EventResponse,
    PassResponse,
    GuestListResponse
)
from services.event_management.services.event_service import EventService


router = APIRouter()


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Obtener evento con sus pases"""
    service = EventService()
    event = await service.get_event(db, event_id)
    passes = await service.list_passes(db, event_id)

    return EventResponse(
        id=event.id,
        title=event.title,
        starts_at=event.starts_at,
        location_text=event.location_text,
        organizer_id=event.organizer_id,
        is_women_only=event.is_women_only,
        guest_list_visible=event.guest_list_visible,
        passes=[PassResponse.model_validate(p) for p in passes]
    )


@router.get("/{event_id}/passes", response_model=List[PassResponse])
async def list_passes(
    event_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Catálogo de pases del evento"""
    service = EventService()
    await service.get_event(db, event_id)
    passes = await service.list_passes(db, event_id)
    return [PassResponse.model_validate(p) for p in passes]


@router.get("/{event_id}/guest-list", response_model=GuestListResponse)
@limiter.limit(RATE_LIMITS["default"])
async def get_guest_list(
    request: Request,  # Necesario para rate limiter
    event_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """
    Lista pública de invitados ("quiénes van")

    No requiere autenticación; responde 403 si el evento la tiene privada.
    """
    service = EventService()
    return await service.get_guest_list(db, event_id)
