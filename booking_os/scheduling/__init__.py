"""Scheduling engine for BookingOS."""

from booking_os.scheduling.availability import AvailabilityCalculator
from booking_os.scheduling.conflicts import find_conflict, has_conflict, overlaps
from booking_os.scheduling.models import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AvailabilityReason,
    AvailabilityResult,
    BlockedPeriod,
    BookingErrorCode,
    BookingOutcome,
    ChangeRequest,
    ChangeRequestOutcome,
    ChangeRequestStatus,
    ChangeRequestType,
    Decision,
    SpecialistSchedule,
    TimeRange,
    WorkingHours,
)

__all__ = [
    "Appointment",
    "AppointmentDraft",
    "AppointmentStatus",
    "AvailabilityCalculator",
    "AvailabilityReason",
    "AvailabilityResult",
    "BlockedPeriod",
    "BookingErrorCode",
    "BookingOutcome",
    "ChangeRequest",
    "ChangeRequestOutcome",
    "ChangeRequestStatus",
    "ChangeRequestType",
    "Decision",
    "SpecialistSchedule",
    "TimeRange",
    "WorkingHours",
    "find_conflict",
    "has_conflict",
    "overlaps",
]
