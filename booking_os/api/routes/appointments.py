"""Appointment endpoints: public booking plus business-side management."""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.api.dependencies import get_booking_committer, get_current_business, get_settings_provider
from booking_os.api.errors import outcome_error, parse_uuid
from booking_os.api.schemas import AppointmentResponse, appointment_response
from booking_os.config import get_settings
from booking_os.core.auth import create_manage_token
from booking_os.core.database import get_db
from booking_os.core.models import Business
from booking_os.core.repository import AppointmentEventRepository, AppointmentRepository
from booking_os.scheduling.booking import BookingCommitter
from booking_os.scheduling.models import Appointment, AppointmentDraft, AppointmentStatus, TimeRange
from booking_os.scheduling.providers import DbBusinessSettingsProvider
from booking_os.scheduling.service import slot_key_to_utc

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class BookingCreate(BaseModel):
    business_id: str
    specialist_id: str
    start_time: datetime | None = None
    slot: str | None = Field(default=None, description="Local slot key, YYYY-MM-DDTHH:mm")
    duration_minutes: int = 30
    client_id: str | None = None
    client_name: str | None = None
    client_phone: str | None = None
    notes: str | None = None


class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    manage_token: str


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class TimeUpdate(BaseModel):
    start_time: datetime | None = None
    slot: str | None = None
    duration_minutes: int | None = None


class HistoryEntry(BaseModel):
    type: str
    data: dict[str, Any] | None = None
    created_at: datetime


class AppointmentDetailResponse(AppointmentResponse):
    history: list[HistoryEntry] = []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check_duration(minutes: int) -> None:
    settings = get_settings()
    if not settings.min_duration_minutes <= minutes <= settings.max_duration_minutes:
        raise HTTPException(
            status_code=400,
            detail=f"duration_minutes must be between {settings.min_duration_minutes} "
            f"and {settings.max_duration_minutes}",
        )


async def _resolve_start(
    start_time: Optional[datetime],
    slot: Optional[str],
    business_id,
    provider: DbBusinessSettingsProvider,
) -> datetime:
    if slot:
        instant = slot_key_to_utc(slot, await provider.get_time_zone(business_id))
        if instant is None:
            raise HTTPException(status_code=400, detail=f"Invalid slot: {slot}")
        return instant
    if start_time is None:
        raise HTTPException(status_code=400, detail="start_time or slot is required")
    if start_time.tzinfo is None:
        return start_time.replace(tzinfo=timezone.utc)
    return start_time.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Public booking
# ---------------------------------------------------------------------------

@router.post("/appointments", response_model=BookingResponse, status_code=201)
async def book_appointment(
    body: BookingCreate,
    committer: BookingCommitter = Depends(get_booking_committer),
    provider: DbBusinessSettingsProvider = Depends(get_settings_provider),
) -> BookingResponse:
    """Book a slot. Responds 409 when the slot was taken in the meantime."""
    bid = parse_uuid(body.business_id, "business_id")
    sid = parse_uuid(body.specialist_id, "specialist_id")
    _check_duration(body.duration_minutes)
    start = await _resolve_start(body.start_time, body.slot, bid, provider)

    outcome = await committer.commit_booking(
        TimeRange.from_duration(start, body.duration_minutes),
        AppointmentDraft(
            business_id=bid,
            specialist_id=sid,
            client_id=body.client_id,
            client_name=body.client_name,
            client_phone=body.client_phone,
            notes=body.notes,
        ),
    )
    if not outcome.ok:
        raise outcome_error(outcome.error, outcome.message)

    appt = outcome.appointment
    return BookingResponse(
        appointment=appointment_response(appt),
        manage_token=create_manage_token(appt.id, appt.business_id),
    )


# ---------------------------------------------------------------------------
# Business management
# ---------------------------------------------------------------------------

@router.get("/appointments", response_model=list[AppointmentResponse])
async def list_appointments(
    specialist_id: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    status: AppointmentStatus | None = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    business: Business = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
) -> list[AppointmentResponse]:
    sid = parse_uuid(specialist_id, "specialist_id") if specialist_id else None
    rows = await AppointmentRepository(db).list_by_business(
        business.id,
        specialist_id=sid,
        start=date_from,
        end=date_to,
        status=status.value if status else None,
        limit=limit,
    )
    return [appointment_response(Appointment.model_validate(r)) for r in rows]


@router.get("/appointments/{appointment_id}", response_model=AppointmentDetailResponse)
async def get_appointment(
    appointment_id: str,
    business: Business = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
) -> AppointmentDetailResponse:
    aid = parse_uuid(appointment_id, "appointment_id")
    row = await AppointmentRepository(db).get_for_business(business.id, aid)
    if row is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    events = await AppointmentEventRepository(db).list_by_appointment(row.id)
    base = appointment_response(Appointment.model_validate(row))
    return AppointmentDetailResponse(
        **base.model_dump(),
        history=[HistoryEntry(type=e.type, data=e.data, created_at=e.created_at) for e in events],
    )


@router.post("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_status(
    appointment_id: str,
    body: StatusUpdate,
    business: Business = Depends(get_current_business),
    committer: BookingCommitter = Depends(get_booking_committer),
) -> AppointmentResponse:
    aid = parse_uuid(appointment_id, "appointment_id")
    outcome = await committer.change_status(business.id, aid, body.status)
    if not outcome.ok:
        raise outcome_error(outcome.error, outcome.message)
    return appointment_response(outcome.appointment)


@router.put("/appointments/{appointment_id}/time", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: str,
    body: TimeUpdate,
    business: Business = Depends(get_current_business),
    committer: BookingCommitter = Depends(get_booking_committer),
    provider: DbBusinessSettingsProvider = Depends(get_settings_provider),
    db: AsyncSession = Depends(get_db),
) -> AppointmentResponse:
    """Move an appointment. Duration defaults to the current one."""
    aid = parse_uuid(appointment_id, "appointment_id")
    current = await AppointmentRepository(db).get_for_business(business.id, aid)
    if current is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    duration = body.duration_minutes or Appointment.model_validate(current).time_range.duration_minutes
    _check_duration(duration)
    start = await _resolve_start(body.start_time, body.slot, business.id, provider)

    outcome = await committer.reschedule(business.id, aid, TimeRange.from_duration(start, duration))
    if not outcome.ok:
        raise outcome_error(outcome.error, outcome.message)
    return appointment_response(outcome.appointment)
