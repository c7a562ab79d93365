"""Database-backed entry points for availability reads and schedule edits."""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.core.models import Specialist
from booking_os.core.repository import AppointmentRepository, SpecialistRepository
from booking_os.scheduling.availability import AvailabilityCalculator
from booking_os.scheduling.booking import specialist_write_window
from booking_os.scheduling.locks import SpecialistLocks, get_specialist_locks
from booking_os.scheduling.models import (
    Appointment,
    AvailabilityReason,
    AvailabilityResult,
    BlockedPeriod,
    SpecialistSchedule,
    TimeRange,
    Weekday,
    WorkingHours,
)
from booking_os.scheduling.providers import BusinessSettingsProvider
from booking_os.scheduling.schedule import (
    add_blocked_period,
    clear_date_override,
    parse_schedule,
    release_blocked_range,
    set_date_override,
)

logger = logging.getLogger(__name__)


def local_day_bounds(day: date, time_zone: str) -> TimeRange:
    """UTC instants of local midnight on *day* and on the following day."""
    tz = ZoneInfo(time_zone)
    start = datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    return TimeRange(start=start, end=end)


SLOT_KEY_FORMAT = "%Y-%m-%dT%H:%M"


def slot_key_to_utc(key: str, time_zone: str) -> Optional[datetime]:
    """Parse a local ``YYYY-MM-DDTHH:mm`` slot key into a UTC instant.

    Returns None for malformed keys and for wall-clock times that do not
    exist in *time_zone*.
    """
    try:
        local = datetime.strptime(key, SLOT_KEY_FORMAT)
    except (TypeError, ValueError):
        return None
    tz = ZoneInfo(time_zone)
    instant = local.replace(tzinfo=tz).astimezone(timezone.utc)
    if instant.astimezone(tz).replace(tzinfo=None) != local:
        return None
    return instant


def utc_to_slot_key(instant: datetime, time_zone: str) -> str:
    return instant.astimezone(ZoneInfo(time_zone)).strftime(SLOT_KEY_FORMAT)


class AvailabilityService:
    """Loads what the calculator needs for one specialist and day."""

    def __init__(
        self,
        session: AsyncSession,
        settings: BusinessSettingsProvider,
        calculator: Optional[AvailabilityCalculator] = None,
        min_duration_minutes: int = 15,
        max_duration_minutes: int = 480,
    ):
        self.session = session
        self.settings = settings
        self.calculator = calculator or AvailabilityCalculator()
        self.min_duration_minutes = min_duration_minutes
        self.max_duration_minutes = max_duration_minutes

    def check_duration(self, duration_minutes: int) -> None:
        if not self.min_duration_minutes <= duration_minutes <= self.max_duration_minutes:
            raise ValueError(
                f"duration must be between {self.min_duration_minutes} and {self.max_duration_minutes} minutes"
            )

    async def compute_available_slots(
        self,
        business_id: uuid.UUID,
        specialist_id: uuid.UUID,
        day: date,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> AvailabilityResult:
        self.check_duration(duration_minutes)
        time_zone = await self.settings.get_time_zone(business_id)

        specialist = await SpecialistRepository(self.session).get_for_business(business_id, specialist_id)
        if specialist is None or not specialist.active:
            return AvailabilityResult(
                specialist_id=specialist_id,
                date=day,
                duration_minutes=duration_minutes,
                time_zone=time_zone,
                reason=AvailabilityReason.SCHEDULE_NOT_CONFIGURED,
            )

        schedule, warnings = parse_schedule(
            specialist.weekly_hours, specialist.date_overrides, specialist.blocked_periods
        )
        options = await self.settings.get_booking_options(business_id)

        window = local_day_bounds(day, time_zone)
        pad = timedelta(minutes=options.buffer_minutes)
        rows = await AppointmentRepository(self.session).list_overlapping(
            specialist_id, window.start - pad, window.end + pad
        )
        appointments = [Appointment.model_validate(row) for row in rows]

        result = self.calculator.compute(
            specialist_id,
            day,
            duration_minutes,
            schedule,
            appointments,
            time_zone,
            now=now,
            options=options,
        )
        result.warnings = warnings + result.warnings
        return result


class ScheduleService:
    """Reads and edits a specialist's stored schedule.

    Edits run in the specialist's write window and re-read the schedule
    there, so concurrent edits apply one after another.
    """

    def __init__(self, session: AsyncSession, locks: Optional[SpecialistLocks] = None):
        self.session = session
        self.locks = locks or get_specialist_locks()
        self.specialists = SpecialistRepository(session)

    @staticmethod
    def _parse(specialist: Specialist) -> SpecialistSchedule:
        schedule, _ = parse_schedule(specialist.weekly_hours, specialist.date_overrides, specialist.blocked_periods)
        return schedule

    async def get_schedule(self, business_id: uuid.UUID, specialist_id: uuid.UUID) -> Optional[SpecialistSchedule]:
        specialist = await self.specialists.get_for_business(business_id, specialist_id)
        return self._parse(specialist) if specialist else None

    async def _update(
        self,
        business_id: uuid.UUID,
        specialist_id: uuid.UUID,
        change: Callable[[SpecialistSchedule], SpecialistSchedule],
    ) -> Optional[SpecialistSchedule]:
        async with specialist_write_window(self.session, self.locks, specialist_id) as specialist:
            if specialist is None or specialist.business_id != business_id:
                return None
            schedule = change(self._parse(specialist))
            await self.specialists.save_schedule(specialist, schedule)
            await self.session.commit()
        logger.info(f"Schedule updated for specialist {specialist_id}")
        return schedule

    async def set_weekly_hours(
        self,
        business_id: uuid.UUID,
        specialist_id: uuid.UUID,
        weekly_hours: dict[Weekday, WorkingHours],
    ) -> Optional[SpecialistSchedule]:
        return await self._update(
            business_id,
            specialist_id,
            lambda schedule: schedule.model_copy(update={"weekly_hours": dict(weekly_hours)}),
        )

    async def set_override(
        self, business_id: uuid.UUID, specialist_id: uuid.UUID, day: date, hours: WorkingHours
    ) -> Optional[SpecialistSchedule]:
        return await self._update(
            business_id, specialist_id, lambda schedule: set_date_override(schedule, day, hours)
        )

    async def clear_override(
        self, business_id: uuid.UUID, specialist_id: uuid.UUID, day: date
    ) -> Optional[SpecialistSchedule]:
        return await self._update(business_id, specialist_id, lambda schedule: clear_date_override(schedule, day))

    async def block(
        self, business_id: uuid.UUID, specialist_id: uuid.UUID, period: BlockedPeriod
    ) -> Optional[SpecialistSchedule]:
        """Add a blocked period, merging it with any it overlaps or touches."""
        return await self._update(business_id, specialist_id, lambda schedule: add_blocked_period(schedule, period))

    async def release(
        self, business_id: uuid.UUID, specialist_id: uuid.UUID, released: TimeRange
    ) -> Optional[SpecialistSchedule]:
        return await self._update(
            business_id, specialist_id, lambda schedule: release_blocked_range(schedule, released)
        )
