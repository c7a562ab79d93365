"""Availability calculator: turns a schedule plus bookings into slot starts."""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from booking_os.scheduling.conflicts import has_conflict, malformed_appointments, overlaps, padded
from booking_os.scheduling.models import (
    Appointment,
    AvailabilityReason,
    AvailabilityResult,
    BookingSlotsOptions,
    SpecialistSchedule,
    TimeRange,
    WorkingHours,
)
from booking_os.scheduling.schedule import resolve_working_hours

logger = logging.getLogger(__name__)


class AvailabilityCalculator:
    """Computes bookable slot starts for a single specialist and date.

    Pure and side-effect free: callers load the schedule and the day's
    appointments and pass them in, so reads never need a lock.
    """

    def __init__(self, default_options: Optional[BookingSlotsOptions] = None) -> None:
        self.default_options = default_options or BookingSlotsOptions()

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_candidates(
        day: date,
        hours: WorkingHours,
        duration_minutes: int,
        tz: ZoneInfo,
        step_minutes: int,
    ) -> list[datetime]:
        """Grid starts from ``hours.start`` up to ``hours.end - duration`` inclusive.

        The grid is laid out in the business's wall-clock time and each start
        is returned as a UTC instant. Wall-clock times skipped by a DST
        transition are dropped.
        """
        current = datetime.combine(day, hours.start)
        end = datetime.combine(day, hours.end)
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=step_minutes)

        starts: list[datetime] = []
        while current + duration <= end:
            instant = current.replace(tzinfo=tz).astimezone(timezone.utc)
            if instant.astimezone(tz).replace(tzinfo=None) == current:
                starts.append(instant)
            current += step
        return starts

    # ------------------------------------------------------------------
    # Slot computation
    # ------------------------------------------------------------------

    def compute(
        self,
        specialist_id: uuid.UUID,
        day: date,
        duration_minutes: int,
        schedule: SpecialistSchedule,
        appointments: Iterable[Appointment],
        time_zone: str,
        now: Optional[datetime] = None,
        options: Optional[BookingSlotsOptions] = None,
    ) -> AvailabilityResult:
        """Return the ordered bookable starts, or an empty list plus a reason."""
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

        options = options or self.default_options
        tz = ZoneInfo(time_zone)
        now = now or datetime.now(timezone.utc)
        appointments = list(appointments)

        result = AvailabilityResult(
            specialist_id=specialist_id,
            date=day,
            duration_minutes=duration_minutes,
            time_zone=time_zone,
        )

        if not schedule.is_configured:
            result.reason = AvailabilityReason.SCHEDULE_NOT_CONFIGURED
            return result

        hours = resolve_working_hours(schedule, day)
        if hours is None or not hours.enabled:
            result.reason = AvailabilityReason.DAY_OFF
            return result

        today = now.astimezone(tz).date()
        if day < today or day > today + timedelta(days=options.max_days_ahead):
            result.reason = AvailabilityReason.OUTSIDE_BOOKING_WINDOW
            return result

        earliest = now + timedelta(minutes=options.min_advance_booking_minutes)
        candidates = [
            start
            for start in self.generate_candidates(
                day, hours, duration_minutes, tz, options.slot_step_minutes
            )
            if start > earliest
        ]
        if not candidates:
            return result

        malformed = malformed_appointments(appointments)
        for appt in malformed:
            result.warnings.append(f"Skipped appointment {appt.id} with malformed time range")
            logger.warning("Appointment %s has end <= start; ignored for availability", appt.id)
        bad_ids = {a.id for a in malformed}
        bookings = [a for a in appointments if a.id not in bad_ids]

        buffer = options.buffer_minutes
        for start in candidates:
            tentative = TimeRange.from_duration(start, duration_minutes)
            if any(overlaps(padded(tentative, buffer), blocked) for blocked in schedule.blocked_periods):
                continue
            if has_conflict(bookings, specialist_id, tentative, buffer_minutes=buffer):
                continue
            result.slots.append(start)

        result.slots.sort()
        if not result.slots:
            result.reason = AvailabilityReason.ALL_OCCUPIED
        return result
