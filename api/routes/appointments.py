"""Appointment route handlers."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_orchestrator
from booking.orchestrator import BookingOrchestrator
from booking.schemas import (
    CancelAppointmentRequest,
    CreateAppointmentRequest,
    EvaluateAppointmentRequest,
    UpdateAppointmentRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/businesses/{business_id}/appointments")
async def create_appointment(
    business_id: UUID,
    request: CreateAppointmentRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    result = await orchestrator.create_appointment(business_id, request)
    return JSONResponse(status_code=201, content=result.to_dict())


@router.patch("/businesses/{business_id}/appointments/{appointment_id}")
async def update_appointment(
    business_id: UUID,
    appointment_id: UUID,
    request: UpdateAppointmentRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    result = await orchestrator.update_appointment(business_id, appointment_id, request)
    return JSONResponse(status_code=200, content=result.to_dict())


@router.post("/businesses/{business_id}/appointments/{appointment_id}/cancel")
async def cancel_appointment(
    business_id: UUID,
    appointment_id: UUID,
    request: CancelAppointmentRequest | None = None,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    reason = request.reason if request else None
    result = await orchestrator.cancel_appointment(business_id, appointment_id, reason)
    return JSONResponse(status_code=200, content=result.to_dict())


@router.post("/businesses/{business_id}/appointments/{appointment_id}/evaluation")
async def evaluate_appointment(
    business_id: UUID,
    appointment_id: UUID,
    request: EvaluateAppointmentRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    result = await orchestrator.evaluate_appointment(business_id, appointment_id, request.attended)
    return JSONResponse(status_code=200, content=result.to_dict())
