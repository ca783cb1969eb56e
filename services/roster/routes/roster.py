"""Rutas del roster (lista de asistentes y estadísticas) para staff"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
from uuid import UUID

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.roster.models.roster import RosterResponse, RosterStatsResponse
from services.roster.services.roster_service import RosterService


router = APIRouter()


@router.get("/{event_id}", response_model=RosterResponse)
@limiter.limit(RATE_LIMITS["staff"])
async def get_roster(
    request: Request,  # Necesario para rate limiter
    event_id: UUID,
    search: Optional[str] = Query(None, description="Nombre o número de ticket"),
    checked_in: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Lista de asistentes con ticket del evento

    Solo el organizador o sus operadores.
    """
    service = RosterService()
    entries = await service.list(
        db,
        event_id=event_id,
        requesting_user_id=current_user["user_id"],
        search=search,
        checked_in=checked_in
    )
    return {"entries": entries, "total": len(entries)}


@router.get("/{event_id}/stats", response_model=RosterStatsResponse)
@limiter.limit(RATE_LIMITS["staff"])
async def get_roster_stats(
    request: Request,  # Necesario para rate limiter
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Conteo total / con check-in / pendientes"""
    service = RosterService()
    await service.event_service.require_event_staff(db, event_id, current_user["user_id"])
    return await service.stats(db, event_id)
