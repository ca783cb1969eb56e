"""Rutas de check-in: escaneo QR y check-in manual"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.checkin import (
    ScanRequest,
    ManualCheckInRequest,
    CheckInStateResponse
)
from services.ticket_validation.services.checkin_service import CheckInService


router = APIRouter()


@router.post("/scan", response_model=CheckInStateResponse)
@limiter.limit(RATE_LIMITS["scan"])
async def scan_ticket(
    request: Request,  # Necesario para rate limiter
    scan_request: ScanRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Check-in por QR

    Escanear dos veces el mismo código no es un error: la segunda respuesta
    trae already_checked_in=true y severity=info.
    """
    service = CheckInService()
    result = await service.scan(
        db=db,
        scan_code=scan_request.scan_code,
        operator_id=current_user["user_id"],
        event_id=scan_request.event_id
    )
    return CheckInStateResponse(**result)


@router.post("/checkin", response_model=CheckInStateResponse)
@limiter.limit(RATE_LIMITS["staff"])
async def manual_checkin(
    request: Request,  # Necesario para rate limiter
    checkin_request: ManualCheckInRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Check-in / check-out manual desde el roster"""
    service = CheckInService()
    result = await service.manual_set(
        db=db,
        operator_id=current_user["user_id"],
        action=checkin_request.action,
        ticket_id=checkin_request.ticket_id,
        registration_id=checkin_request.registration_id
    )
    return CheckInStateResponse(**result)
