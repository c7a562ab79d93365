"""Specialist schedule store: override resolution, blocked-period upkeep and
the (de)serialization used at the storage boundary.

Stored documents use the same shape the dashboards write::

    weekly_hours   = {"monday": {"enabled": true, "start": "09:00", "end": "18:00"}, ...}
    date_overrides = {"2026-03-04": {"enabled": false}, ...}
    blocked        = [{"start": "2026-03-10T00:00:00+00:00", "end": "...", "reason": "vacation"}]

Everything inside the engine works on ``SpecialistSchedule``; raw documents
never leave this module.
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from booking_os.scheduling.conflicts import overlaps
from booking_os.scheduling.models import (
    BlockedPeriod,
    SpecialistSchedule,
    TimeRange,
    Weekday,
    WorkingHours,
)

logger = logging.getLogger(__name__)

DAY_NAMES: tuple[str, ...] = tuple(day.name.lower() for day in Weekday)


class ScheduleValidationError(ValueError):
    """Raised when a schedule write is malformed or inconsistent."""


# ---------------------------------------------------------------------------
# Override resolution
# ---------------------------------------------------------------------------


def resolve_working_hours(schedule: SpecialistSchedule, day: date) -> Optional[WorkingHours]:
    """Return the effective working hours for *day*.

    A date override fully replaces the weekday default, including switching a
    working weekday off or an off weekday on. ``None`` means nothing is
    configured for that day.
    """
    override = schedule.date_overrides.get(day)
    if override is not None:
        return override
    return schedule.weekly_hours.get(Weekday(day.weekday()))


# ---------------------------------------------------------------------------
# Blocked periods
# ---------------------------------------------------------------------------


def merge_blocked_periods(periods: list[BlockedPeriod]) -> list[BlockedPeriod]:
    """Sort and merge overlapping or touching periods into a disjoint list."""
    for period in periods:
        if not period.is_valid:
            raise ScheduleValidationError(
                f"Blocked period must end after it starts: {period.start} - {period.end}"
            )

    merged: list[BlockedPeriod] = []
    for period in sorted(periods, key=lambda p: (p.start, p.end)):
        if merged and period.start <= merged[-1].end:
            last = merged[-1]
            reasons = [r for r in (last.reason, period.reason) if r]
            merged[-1] = BlockedPeriod(
                start=last.start,
                end=max(last.end, period.end),
                reason="; ".join(dict.fromkeys(reasons)) or None,
            )
        else:
            merged.append(period)
    return merged


def add_blocked_period(schedule: SpecialistSchedule, period: BlockedPeriod) -> SpecialistSchedule:
    return schedule.model_copy(
        update={"blocked_periods": merge_blocked_periods([*schedule.blocked_periods, period])}
    )


def release_blocked_range(schedule: SpecialistSchedule, released: TimeRange) -> SpecialistSchedule:
    """Carve *released* out of every blocked period it touches."""
    if not released.is_valid:
        raise ScheduleValidationError("Released range must end after it starts")

    remaining: list[BlockedPeriod] = []
    for period in schedule.blocked_periods:
        if not overlaps(period, released):
            remaining.append(period)
            continue
        if period.start < released.start:
            remaining.append(BlockedPeriod(start=period.start, end=released.start, reason=period.reason))
        if released.end < period.end:
            remaining.append(BlockedPeriod(start=released.end, end=period.end, reason=period.reason))
    return schedule.model_copy(update={"blocked_periods": remaining})


def set_date_override(
    schedule: SpecialistSchedule, day: date, hours: WorkingHours
) -> SpecialistSchedule:
    overrides = dict(schedule.date_overrides)
    overrides[day] = hours
    return schedule.model_copy(update={"date_overrides": overrides})


def clear_date_override(schedule: SpecialistSchedule, day: date) -> SpecialistSchedule:
    overrides = {d: h for d, h in schedule.date_overrides.items() if d != day}
    return schedule.model_copy(update={"date_overrides": overrides})


# ---------------------------------------------------------------------------
# Storage boundary
# ---------------------------------------------------------------------------


def _load_document(raw: Any, expected: type) -> Any:
    """Accept either a decoded JSON document or its encoded string form."""
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return None
    return raw if isinstance(raw, expected) else None


def weekday_from_key(key: Any) -> Optional[Weekday]:
    if isinstance(key, int) or (isinstance(key, str) and key.isdigit()):
        index = int(key)
        return Weekday(index) if 0 <= index <= 6 else None
    if isinstance(key, str) and key.strip().lower() in DAY_NAMES:
        return Weekday(DAY_NAMES.index(key.strip().lower()))
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_schedule(
    weekly_raw: Any,
    overrides_raw: Any,
    blocked_raw: Any,
) -> tuple[SpecialistSchedule, list[str]]:
    """Build a typed schedule from stored documents.

    Malformed entries are skipped rather than failing the whole schedule; a
    human-readable warning is returned for each one.
    """
    warnings: list[str] = []

    weekly: dict[Weekday, WorkingHours] = {}
    for key, value in (_load_document(weekly_raw, dict) or {}).items():
        weekday = weekday_from_key(key)
        if weekday is None:
            warnings.append(f"Ignored weekly hours for unknown day {key!r}")
            continue
        try:
            weekly[weekday] = WorkingHours.model_validate(value)
        except ValidationError:
            warnings.append(f"Ignored malformed weekly hours for {weekday.name.lower()}")

    overrides: dict[date, WorkingHours] = {}
    for key, value in (_load_document(overrides_raw, dict) or {}).items():
        try:
            day = date.fromisoformat(str(key))
            overrides[day] = WorkingHours.model_validate(value)
        except (ValueError, ValidationError):
            warnings.append(f"Ignored malformed date override {key!r}")

    blocked: list[BlockedPeriod] = []
    for entry in _load_document(blocked_raw, list) or []:
        try:
            period = BlockedPeriod.model_validate(entry)
        except ValidationError:
            warnings.append("Ignored malformed blocked period")
            continue
        period = BlockedPeriod(start=_as_utc(period.start), end=_as_utc(period.end), reason=period.reason)
        if not period.is_valid:
            warnings.append(f"Ignored blocked period ending before it starts ({period.start.isoformat()})")
            continue
        blocked.append(period)

    for message in warnings:
        logger.warning("Schedule data: %s", message)

    return (
        SpecialistSchedule(
            weekly_hours=weekly,
            date_overrides=overrides,
            blocked_periods=merge_blocked_periods(blocked),
        ),
        warnings,
    )


def _dump_hours(hours: WorkingHours) -> dict:
    return {
        "enabled": hours.enabled,
        "start": hours.start.strftime("%H:%M"),
        "end": hours.end.strftime("%H:%M"),
    }


def dump_weekly_hours(schedule: SpecialistSchedule) -> dict:
    return {
        DAY_NAMES[day]: _dump_hours(hours)
        for day, hours in sorted(schedule.weekly_hours.items())
    }


def dump_date_overrides(schedule: SpecialistSchedule) -> dict:
    return {
        day.isoformat(): _dump_hours(hours)
        for day, hours in sorted(schedule.date_overrides.items())
    }


def dump_blocked_periods(schedule: SpecialistSchedule) -> list[dict]:
    return [
        {
            "start": _as_utc(p.start).isoformat(),
            "end": _as_utc(p.end).isoformat(),
            "reason": p.reason,
        }
        for p in schedule.blocked_periods
    ]
