"""Public availability endpoint."""

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from booking_os.api.dependencies import get_availability_service
from booking_os.api.errors import parse_uuid
from booking_os.scheduling.service import AvailabilityService, utc_to_slot_key

router = APIRouter()


class SlotResponse(BaseModel):
    start_time: datetime
    key: str


class AvailabilityResponse(BaseModel):
    specialist_id: str
    date: date
    duration_minutes: int
    time_zone: str
    slots: list[SlotResponse] = []
    reason: str | None = Field(
        default=None,
        description=(
            "Why no slots were returned: SCHEDULE_NOT_CONFIGURED, DAY_OFF or ALL_OCCUPIED. "
            "OUTSIDE_BOOKING_WINDOW is an extension of that set for past dates and dates "
            "beyond the business's maxDaysAhead."
        ),
    )
    warnings: list[str] = []


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    business_id: str = Query(...),
    specialist_id: str = Query(...),
    day: date = Query(..., alias="date"),
    duration_minutes: int = Query(30),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Bookable slot starts for one specialist on one local date."""
    bid = parse_uuid(business_id, "business_id")
    sid = parse_uuid(specialist_id, "specialist_id")
    try:
        result = await service.compute_available_slots(bid, sid, day, duration_minutes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AvailabilityResponse(
        specialist_id=str(result.specialist_id),
        date=result.date,
        duration_minutes=result.duration_minutes,
        time_zone=result.time_zone,
        slots=[SlotResponse(start_time=s, key=utc_to_slot_key(s, result.time_zone)) for s in result.slots],
        reason=result.reason.value if result.reason else None,
        warnings=result.warnings,
    )
