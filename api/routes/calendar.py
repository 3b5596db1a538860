"""Calendar maintenance routes: break times, working hours, main branch."""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse

from api.dependencies import get_orchestrator
from booking.orchestrator import BookingOrchestrator
from booking.schemas import BreakTimeCreateRequest, BreakTimeUpdateRequest, WorkingHoursRequest
from database.models import BreakTime, WorkingHours

logger = logging.getLogger(__name__)

router = APIRouter()


def _break_time_dict(break_time: BreakTime) -> dict[str, Any]:
    return {
        "id": str(break_time.id),
        "branch_id": str(break_time.branch_id),
        "day_of_week": break_time.day_of_week,
        "start_time": break_time.start_time.strftime("%H:%M"),
        "end_time": break_time.end_time.strftime("%H:%M"),
        "name": break_time.name,
        "is_active": break_time.is_active,
    }


def _working_hours_dict(hours: WorkingHours) -> dict[str, Any]:
    return {
        "id": str(hours.id),
        "professional_id": str(hours.professional_id),
        "day_of_week": hours.day_of_week,
        "start_time": hours.start_time.strftime("%H:%M"),
        "end_time": hours.end_time.strftime("%H:%M"),
    }


@router.get("/businesses/{business_id}/branches/{branch_id}/break-times")
async def list_break_times(
    business_id: UUID,
    branch_id: UUID,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    break_times = await orchestrator.list_break_times(business_id, branch_id)
    return JSONResponse(
        status_code=200,
        content={"success": True, "break_times": [_break_time_dict(b) for b in break_times]},
    )


@router.post("/businesses/{business_id}/branches/{branch_id}/break-times")
async def create_break_time(
    business_id: UUID,
    branch_id: UUID,
    request: BreakTimeCreateRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    break_time = await orchestrator.create_break_time(business_id, branch_id, request)
    return JSONResponse(
        status_code=201, content={"success": True, "break_time": _break_time_dict(break_time)}
    )


@router.patch("/businesses/{business_id}/break-times/{break_time_id}")
async def update_break_time(
    business_id: UUID,
    break_time_id: UUID,
    request: BreakTimeUpdateRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    break_time = await orchestrator.update_break_time(business_id, break_time_id, request)
    return JSONResponse(
        status_code=200, content={"success": True, "break_time": _break_time_dict(break_time)}
    )


@router.put("/businesses/{business_id}/professionals/{professional_id}/working-hours/{day_of_week}")
async def replace_working_hours(
    business_id: UUID,
    professional_id: UUID,
    request: WorkingHoursRequest,
    day_of_week: int = Path(ge=0, le=6),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    hours = await orchestrator.replace_working_hours(
        business_id, professional_id, day_of_week, request.start_time, request.end_time
    )
    return JSONResponse(
        status_code=200, content={"success": True, "working_hours": _working_hours_dict(hours)}
    )


@router.post("/businesses/{business_id}/branches/{branch_id}/main")
async def set_main_branch(
    business_id: UUID,
    branch_id: UUID,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    branch = await orchestrator.set_main_branch(business_id, branch_id)
    return JSONResponse(
        status_code=200,
        content={"success": True, "branch": {"id": str(branch.id), "name": branch.name, "is_main": True}},
    )
