"""Specialist schedule management (business side)."""

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator

from booking_os.api.dependencies import get_current_business, get_schedule_service
from booking_os.api.errors import parse_uuid
from booking_os.core.models import Business
from booking_os.scheduling.models import BlockedPeriod, SpecialistSchedule, TimeRange, Weekday, WorkingHours
from booking_os.scheduling.schedule import (
    ScheduleValidationError,
    dump_blocked_periods,
    dump_date_overrides,
    dump_weekly_hours,
    weekday_from_key,
)
from booking_os.scheduling.service import ScheduleService

router = APIRouter(prefix="/specialists")


class ScheduleResponse(BaseModel):
    specialist_id: str
    weekly_hours: dict[str, dict]
    date_overrides: dict[str, dict]
    blocked_periods: list[dict]


class WeeklyHoursUpdate(BaseModel):
    weekly_hours: dict[str, WorkingHours]


class BlockedPeriodIn(BaseModel):
    start: datetime
    end: datetime
    reason: str | None = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _schedule_response(specialist_id: str, schedule: SpecialistSchedule | None) -> ScheduleResponse:
    if schedule is None:
        raise HTTPException(status_code=404, detail="Specialist not found")
    return ScheduleResponse(
        specialist_id=specialist_id,
        weekly_hours=dump_weekly_hours(schedule),
        date_overrides=dump_date_overrides(schedule),
        blocked_periods=dump_blocked_periods(schedule),
    )


@router.get("/{specialist_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    specialist_id: str,
    business: Business = Depends(get_current_business),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    sid = parse_uuid(specialist_id, "specialist_id")
    return _schedule_response(specialist_id, await service.get_schedule(business.id, sid))


@router.put("/{specialist_id}/schedule", response_model=ScheduleResponse)
async def put_weekly_hours(
    specialist_id: str,
    body: WeeklyHoursUpdate,
    business: Business = Depends(get_current_business),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    """Replace the weekly hours. Days left out are days off."""
    sid = parse_uuid(specialist_id, "specialist_id")
    weekly: dict[Weekday, WorkingHours] = {}
    for key, hours in body.weekly_hours.items():
        weekday = weekday_from_key(key)
        if weekday is None:
            raise HTTPException(status_code=400, detail=f"Unknown day: {key}")
        weekly[weekday] = hours
    return _schedule_response(specialist_id, await service.set_weekly_hours(business.id, sid, weekly))


@router.put("/{specialist_id}/schedule/overrides/{day}", response_model=ScheduleResponse)
async def put_override(
    specialist_id: str,
    day: date,
    hours: WorkingHours,
    business: Business = Depends(get_current_business),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    sid = parse_uuid(specialist_id, "specialist_id")
    return _schedule_response(specialist_id, await service.set_override(business.id, sid, day, hours))


@router.delete("/{specialist_id}/schedule/overrides/{day}", response_model=ScheduleResponse)
async def delete_override(
    specialist_id: str,
    day: date,
    business: Business = Depends(get_current_business),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    sid = parse_uuid(specialist_id, "specialist_id")
    return _schedule_response(specialist_id, await service.clear_override(business.id, sid, day))


@router.post("/{specialist_id}/schedule/blocked-periods", response_model=ScheduleResponse)
async def add_blocked_period(
    specialist_id: str,
    body: BlockedPeriodIn,
    business: Business = Depends(get_current_business),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    sid = parse_uuid(specialist_id, "specialist_id")
    try:
        schedule = await service.block(
            business.id, sid, BlockedPeriod(start=body.start, end=body.end, reason=body.reason)
        )
    except ScheduleValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _schedule_response(specialist_id, schedule)


@router.delete("/{specialist_id}/schedule/blocked-periods", response_model=ScheduleResponse)
async def release_blocked_period(
    specialist_id: str,
    body: BlockedPeriodIn,
    business: Business = Depends(get_current_business),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleResponse:
    """Free ``[start, end)`` from any blocked periods, splitting them if needed."""
    sid = parse_uuid(specialist_id, "specialist_id")
    try:
        schedule = await service.release(business.id, sid, TimeRange(start=body.start, end=body.end))
    except ScheduleValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _schedule_response(specialist_id, schedule)
