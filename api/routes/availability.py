"""Availability route handler."""

import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import get_orchestrator
from booking.orchestrator import BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/businesses/{business_id}/branches/{branch_id}/availability")
async def list_available_slots(
    business_id: UUID,
    branch_id: UUID,
    service_id: UUID,
    target_date: date = Query(alias="date"),
    professional_id: UUID | None = None,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Free slots for a service on a branch day.

    Without professional_id, every active professional of the branch working
    that weekday is listed. Each entry carries its working hours, slots and
    occupancy; the top-level occupancy aggregates them.
    """
    result = await orchestrator.get_available_slots(
        business_id=business_id,
        branch_id=branch_id,
        target_date=target_date,
        service_id=service_id,
        professional_id=professional_id,
    )
    return JSONResponse(status_code=200, content={"success": True, **result.to_dict()})
