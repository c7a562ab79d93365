"""Pydantic models for the scheduling engine."""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum, IntEnum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    DONE = "Done"
    CANCELLED = "Cancelled"


# Statuses that hold a specialist's time; Cancelled frees the slot.
OCCUPYING_STATUSES = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.DONE}
)

# Statuses from which a client may still ask for a change.
CHANGEABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


class ChangeRequestType(str, Enum):
    RESCHEDULE = "RESCHEDULE"
    CANCEL = "CANCEL"


class ChangeRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class AvailabilityReason(str, Enum):
    """Why an availability query produced no slots."""

    SCHEDULE_NOT_CONFIGURED = "SCHEDULE_NOT_CONFIGURED"
    DAY_OFF = "DAY_OFF"
    ALL_OCCUPIED = "ALL_OCCUPIED"
    # Extension: the date is in the past or past maxDaysAhead.
    OUTSIDE_BOOKING_WINDOW = "OUTSIDE_BOOKING_WINDOW"


class BookingErrorCode(str, Enum):
    """Expected, non-exceptional failures of the write paths."""

    SLOT_TAKEN = "SLOT_TAKEN"
    INVALID_RANGE = "INVALID_RANGE"
    SPECIALIST_UNAVAILABLE = "SPECIALIST_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    APPOINTMENT_NOT_ACTIVE = "APPOINTMENT_NOT_ACTIVE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DISABLED = "DISABLED"
    TOO_LATE = "TOO_LATE"
    PENDING_REQUEST_EXISTS = "PENDING_REQUEST_EXISTS"
    ALREADY_DECIDED = "ALREADY_DECIDED"
    SLOT_NO_LONGER_AVAILABLE = "SLOT_NO_LONGER_AVAILABLE"


class Weekday(IntEnum):
    """Day of week, matching ``date.weekday()`` (0=Mon..6=Sun)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


# ---------------------------------------------------------------------------
# Time ranges
# ---------------------------------------------------------------------------


class TimeRange(BaseModel):
    """A half-open absolute interval ``[start, end)``.

    Not validated on construction: stored records may be malformed and the
    engine has to be able to represent (and then skip) them.
    """

    start: datetime
    end: datetime

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> "TimeRange":
        return cls(start=start, end=start + timedelta(minutes=minutes))

    @property
    def is_valid(self) -> bool:
        return self.end > self.start

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class BlockedPeriod(TimeRange):
    """An absolute range in which the specialist is unavailable (e.g. vacation)."""

    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


class WorkingHours(BaseModel):
    """Enabled flag plus a wall-clock window for one day."""

    enabled: bool = True
    start: time = time(9, 0)
    end: time = time(18, 0)

    @model_validator(mode="after")
    def _check_window(self) -> "WorkingHours":
        if self.enabled and self.start >= self.end:
            raise ValueError("start must be before end for an enabled day")
        return self


DEFAULT_WEEKLY_HOURS: dict[Weekday, WorkingHours] = {
    day: WorkingHours(enabled=day < Weekday.SATURDAY) for day in Weekday
}


class SpecialistSchedule(BaseModel):
    """Recurring weekly hours, per-date overrides and blocked periods."""

    weekly_hours: dict[Weekday, WorkingHours] = Field(default_factory=dict)
    date_overrides: dict[date, WorkingHours] = Field(default_factory=dict)
    blocked_periods: list[BlockedPeriod] = Field(default_factory=list)

    @classmethod
    def default(cls) -> "SpecialistSchedule":
        return cls(weekly_hours=dict(DEFAULT_WEEKLY_HOURS))

    @property
    def is_configured(self) -> bool:
        return bool(self.weekly_hours or self.date_overrides)


class BookingSlotsOptions(BaseModel):
    """Per-business slot grid options."""

    slot_step_minutes: Literal[15, 30, 60] = 30
    buffer_minutes: int = Field(default=0, ge=0, le=30)
    min_advance_booking_minutes: int = Field(default=0, ge=0, le=10080)
    max_days_ahead: int = Field(default=60, ge=1, le=365)


class ClientChangeSettings(BaseModel):
    """Which change requests clients may submit, and how early."""

    enabled: bool = True
    allow_reschedule: bool = True
    allow_cancel: bool = True
    min_hours_before: int = Field(default=3, ge=0)
    require_master_approval: bool = True

    def allows(self, request_type: ChangeRequestType) -> bool:
        if not self.enabled:
            return False
        if request_type == ChangeRequestType.RESCHEDULE:
            return self.allow_reschedule
        return self.allow_cancel


# ---------------------------------------------------------------------------
# Appointments and change requests
# ---------------------------------------------------------------------------


class Appointment(BaseModel):
    """A booked appointment."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    business_id: uuid.UUID
    specialist_id: uuid.UUID
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start_time, end=self.end_time)

    @property
    def occupies_time(self) -> bool:
        return self.status in OCCUPYING_STATUSES


class AppointmentDraft(BaseModel):
    """Everything about a new appointment except its time range."""

    business_id: uuid.UUID
    specialist_id: uuid.UUID
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.PENDING

    @model_validator(mode="after")
    def _check_initial_status(self) -> "AppointmentDraft":
        if self.status not in CHANGEABLE_STATUSES:
            raise ValueError("new appointments start as Pending or Confirmed")
        return self


class ChangeRequest(BaseModel):
    """A client-submitted reschedule/cancel request awaiting a business decision."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    business_id: uuid.UUID
    appointment_id: uuid.UUID
    specialist_id: uuid.UUID
    type: ChangeRequestType
    status: ChangeRequestStatus = ChangeRequestStatus.PENDING
    requested_start_time: Optional[datetime] = None
    requested_end_time: Optional[datetime] = None
    client_note: Optional[str] = None
    decision_note: Optional[str] = None
    decided_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    decided_at: Optional[datetime] = None

    @property
    def requested_range(self) -> Optional[TimeRange]:
        if self.requested_start_time is None or self.requested_end_time is None:
            return None
        return TimeRange(start=self.requested_start_time, end=self.requested_end_time)

    @property
    def is_decided(self) -> bool:
        return self.status != ChangeRequestStatus.PENDING


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class AvailabilityResult(BaseModel):
    """Bookable slot starts for one specialist, date and duration."""

    specialist_id: uuid.UUID
    date: date
    duration_minutes: int
    time_zone: str
    slots: list[datetime] = []
    reason: Optional[AvailabilityReason] = None
    warnings: list[str] = []


class BookingOutcome(BaseModel):
    """Result of a booking commit or appointment mutation."""

    appointment: Optional[Appointment] = None
    error: Optional[BookingErrorCode] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChangeRequestOutcome(BaseModel):
    """Result of submitting or deciding a change request."""

    request: Optional[ChangeRequest] = None
    appointment: Optional[Appointment] = None
    error: Optional[BookingErrorCode] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
