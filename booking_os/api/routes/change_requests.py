"""Change request endpoints: client manage links and business decisions."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.api.dependencies import get_change_request_service, get_current_business
from booking_os.api.errors import outcome_error, parse_uuid
from booking_os.api.schemas import (
    AppointmentResponse,
    ChangeRequestResponse,
    appointment_response,
    change_request_response,
)
from booking_os.core.database import get_db
from booking_os.core.models import Business
from booking_os.core.repository import ChangeRequestRepository
from booking_os.scheduling.change_requests import ChangeRequestService
from booking_os.scheduling.models import (
    ChangeRequest,
    ChangeRequestStatus,
    ChangeRequestType,
    Decision,
    TimeRange,
)
from booking_os.scheduling.service import slot_key_to_utc

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ChangeSettingsResponse(BaseModel):
    enabled: bool
    allow_reschedule: bool
    allow_cancel: bool
    min_hours_before: int
    require_master_approval: bool


class ManageResponse(BaseModel):
    appointment: AppointmentResponse
    time_zone: str
    settings: ChangeSettingsResponse
    latest_request: ChangeRequestResponse | None = None


class ChangeRequestCreate(BaseModel):
    token: str
    type: ChangeRequestType
    slot: str | None = None
    requested_start_time: datetime | None = None
    duration_minutes: int | None = None
    client_note: str | None = None


class DecisionIn(BaseModel):
    decision: Decision
    decision_note: str | None = None


class ChangeRequestResult(BaseModel):
    request: ChangeRequestResponse | None = None
    appointment: AppointmentResponse | None = None


def _requested_range(body: ChangeRequestCreate, time_zone: str, current_minutes: int) -> Optional[TimeRange]:
    if body.type != ChangeRequestType.RESCHEDULE:
        return None
    if body.slot:
        start = slot_key_to_utc(body.slot, time_zone)
        if start is None:
            raise HTTPException(status_code=400, detail=f"Invalid slot: {body.slot}")
    elif body.requested_start_time is not None:
        start = body.requested_start_time
        start = start.replace(tzinfo=timezone.utc) if start.tzinfo is None else start.astimezone(timezone.utc)
    else:
        return None
    return TimeRange.from_duration(start, body.duration_minutes or current_minutes)


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------

@router.get("/booking/manage/{token}", response_model=ManageResponse)
async def get_manage_view(
    token: str,
    service: ChangeRequestService = Depends(get_change_request_service),
) -> ManageResponse:
    view = await service.manage_view(token)
    if not view.ok:
        raise outcome_error(view.error, view.message)
    return ManageResponse(
        appointment=appointment_response(view.appointment),
        time_zone=view.time_zone,
        settings=ChangeSettingsResponse(**view.settings.model_dump()),
        latest_request=change_request_response(view.request),
    )


@router.post("/booking/change-requests", response_model=ChangeRequestResult, status_code=201)
async def submit_change_request(
    body: ChangeRequestCreate,
    service: ChangeRequestService = Depends(get_change_request_service),
) -> ChangeRequestResult:
    """Submit a reschedule or cancel request through a manage token."""
    view = await service.manage_view(body.token)
    if not view.ok:
        raise outcome_error(view.error, view.message)

    requested = _requested_range(body, view.time_zone, view.appointment.time_range.duration_minutes)
    outcome = await service.submit_by_token(body.token, body.type, requested, body.client_note)
    if not outcome.ok:
        raise outcome_error(outcome.error, outcome.message)
    return ChangeRequestResult(
        request=change_request_response(outcome.request),
        appointment=appointment_response(outcome.appointment) if outcome.appointment else None,
    )


# ---------------------------------------------------------------------------
# Business side
# ---------------------------------------------------------------------------

@router.get("/change-requests", response_model=list[ChangeRequestResponse])
async def list_change_requests(
    status: ChangeRequestStatus | None = Query(ChangeRequestStatus.PENDING),
    limit: int = Query(100, ge=1, le=500),
    business: Business = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
) -> list[ChangeRequestResponse]:
    rows = await ChangeRequestRepository(db).list_by_business(
        business.id, status=status.value if status else None, limit=limit
    )
    return [change_request_response(ChangeRequest.model_validate(r)) for r in rows]


@router.patch("/change-requests/{request_id}", response_model=ChangeRequestResult)
async def decide_change_request(
    request_id: str,
    body: DecisionIn,
    business: Business = Depends(get_current_business),
    service: ChangeRequestService = Depends(get_change_request_service),
) -> ChangeRequestResult:
    """Approve or reject a pending request. 409 if it was already decided."""
    rid = parse_uuid(request_id, "request_id")
    outcome = await service.decide(rid, body.decision, body.decision_note, business_id=business.id)
    if not outcome.ok:
        raise outcome_error(outcome.error, outcome.message)
    return ChangeRequestResult(
        request=change_request_response(outcome.request),
        appointment=appointment_response(outcome.appointment) if outcome.appointment else None,
    )
