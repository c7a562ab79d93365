"""Tests for the availability calculator."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_os.scheduling.availability import AvailabilityCalculator
from booking_os.scheduling.models import (
    AppointmentStatus,
    AvailabilityReason,
    BlockedPeriod,
    BookingSlotsOptions,
    SpecialistSchedule,
    WorkingHours,
)
from booking_os.scheduling.schedule import add_blocked_period, set_date_override
from tests.conftest import KYIV, SPECIALIST_ID, make_appointment

WEDNESDAY = date(2026, 3, 4)  # Kyiv is UTC+2 until the end of March
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _kyiv(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant of a Kyiv wall-clock time in winter (UTC+2)."""
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc) - timedelta(hours=2)


@pytest.fixture
def calc():
    return AvailabilityCalculator()


def _compute(calc, schedule=None, appointments=(), day=WEDNESDAY, duration=30, now=NOW, options=None):
    return calc.compute(
        SPECIALIST_ID,
        day,
        duration,
        schedule if schedule is not None else SpecialistSchedule.default(),
        list(appointments),
        KYIV,
        now=now,
        options=options,
    )


class TestSlotGrid:
    def test_full_working_day(self, calc):
        result = _compute(calc)
        assert len(result.slots) == 18
        assert result.slots[0] == _kyiv(WEDNESDAY, 9, 0)
        assert result.slots[-1] == _kyiv(WEDNESDAY, 17, 30)
        assert result.reason is None
        assert result.time_zone == KYIV

    def test_slots_sorted_and_stepped(self, calc):
        slots = _compute(calc).slots
        assert slots == sorted(slots)
        assert all(b - a == timedelta(minutes=30) for a, b in zip(slots, slots[1:]))

    def test_long_duration_must_fit(self, calc):
        result = _compute(calc, duration=120)
        assert result.slots[-1] == _kyiv(WEDNESDAY, 16, 0)

    def test_custom_step(self, calc):
        result = _compute(calc, options=BookingSlotsOptions(slot_step_minutes=60))
        assert len(result.slots) == 9

    def test_non_positive_duration_rejected(self, calc):
        with pytest.raises(ValueError):
            _compute(calc, duration=0)


class TestReasons:
    def test_schedule_not_configured(self, calc):
        result = _compute(calc, schedule=SpecialistSchedule())
        assert result.slots == []
        assert result.reason == AvailabilityReason.SCHEDULE_NOT_CONFIGURED

    def test_weekend_is_day_off(self, calc):
        result = _compute(calc, day=date(2026, 3, 7))
        assert result.reason == AvailabilityReason.DAY_OFF

    def test_override_disables_day(self, calc):
        schedule = set_date_override(SpecialistSchedule.default(), WEDNESDAY, WorkingHours(enabled=False))
        result = _compute(calc, schedule=schedule)
        assert result.slots == []
        assert result.reason == AvailabilityReason.DAY_OFF

    def test_override_replaces_weekday_hours(self, calc):
        schedule = set_date_override(
            SpecialistSchedule.default(), WEDNESDAY, WorkingHours(start=time(12, 0), end=time(14, 0))
        )
        result = _compute(calc, schedule=schedule)
        assert result.slots == [_kyiv(WEDNESDAY, h, m) for h, m in [(12, 0), (12, 30), (13, 0), (13, 30)]]

    def test_override_opens_weekend(self, calc):
        saturday = date(2026, 3, 7)
        schedule = set_date_override(
            SpecialistSchedule.default(), saturday, WorkingHours(start=time(10, 0), end=time(11, 0))
        )
        assert len(_compute(calc, schedule=schedule, day=saturday).slots) == 2

    def test_all_occupied(self, calc):
        schedule = add_blocked_period(
            SpecialistSchedule.default(),
            BlockedPeriod(start=_kyiv(WEDNESDAY, 0), end=_kyiv(WEDNESDAY, 23), reason="sick"),
        )
        result = _compute(calc, schedule=schedule)
        assert result.slots == []
        assert result.reason == AvailabilityReason.ALL_OCCUPIED

    def test_past_date_outside_window(self, calc):
        result = _compute(calc, day=date(2026, 2, 25))
        assert result.reason == AvailabilityReason.OUTSIDE_BOOKING_WINDOW

    def test_far_future_outside_window(self, calc):
        result = _compute(calc, day=date(2026, 6, 3), options=BookingSlotsOptions(max_days_ahead=30))
        assert result.reason == AvailabilityReason.OUTSIDE_BOOKING_WINDOW


class TestExistingBookings:
    def test_confirmed_appointment_excludes_its_slot(self, calc):
        appt = make_appointment(_kyiv(WEDNESDAY, 10, 0), status=AppointmentStatus.CONFIRMED)
        slots = _compute(calc, appointments=[appt]).slots
        assert _kyiv(WEDNESDAY, 10, 0) not in slots
        assert _kyiv(WEDNESDAY, 9, 30) in slots
        assert _kyiv(WEDNESDAY, 10, 30) in slots
        assert len(slots) == 17

    def test_cancelled_appointment_ignored(self, calc):
        appt = make_appointment(_kyiv(WEDNESDAY, 10, 0), status=AppointmentStatus.CANCELLED)
        assert len(_compute(calc, appointments=[appt]).slots) == 18

    def test_long_appointment_blocks_overlapping_starts(self, calc):
        appt = make_appointment(_kyiv(WEDNESDAY, 10, 0), minutes=90)
        slots = _compute(calc, appointments=[appt], duration=60).slots
        assert _kyiv(WEDNESDAY, 9, 0) in slots
        for blocked in [(9, 30), (10, 0), (10, 30), (11, 0)]:
            assert _kyiv(WEDNESDAY, *blocked) not in slots
        assert _kyiv(WEDNESDAY, 11, 30) in slots

    def test_buffer_keeps_gap_on_both_sides(self, calc):
        appt = make_appointment(_kyiv(WEDNESDAY, 10, 30))
        slots = _compute(calc, appointments=[appt], options=BookingSlotsOptions(buffer_minutes=15)).slots
        assert _kyiv(WEDNESDAY, 10, 0) not in slots
        assert _kyiv(WEDNESDAY, 9, 30) in slots
        # the existing appointment is padded too
        assert _kyiv(WEDNESDAY, 11, 0) not in slots
        assert _kyiv(WEDNESDAY, 11, 30) in slots

    def test_malformed_appointment_reported_not_applied(self, calc):
        broken = make_appointment(_kyiv(WEDNESDAY, 10, 0))
        broken.end_time = broken.start_time
        result = _compute(calc, appointments=[broken])
        assert len(result.slots) == 18
        assert len(result.warnings) == 1


class TestBlockedPeriods:
    def test_blocked_period_subtracts_slots(self, calc):
        schedule = add_blocked_period(
            SpecialistSchedule.default(),
            BlockedPeriod(start=_kyiv(WEDNESDAY, 12, 15), end=_kyiv(WEDNESDAY, 13, 0), reason="lunch"),
        )
        slots = _compute(calc, schedule=schedule).slots
        assert _kyiv(WEDNESDAY, 12, 0) not in slots
        assert _kyiv(WEDNESDAY, 12, 30) not in slots
        assert _kyiv(WEDNESDAY, 11, 30) in slots
        assert _kyiv(WEDNESDAY, 13, 0) in slots

    def test_blocked_period_applies_over_override(self, calc):
        schedule = set_date_override(
            SpecialistSchedule.default(), WEDNESDAY, WorkingHours(start=time(8, 0), end=time(10, 0))
        )
        schedule = add_blocked_period(
            schedule, BlockedPeriod(start=_kyiv(WEDNESDAY, 8, 0), end=_kyiv(WEDNESDAY, 9, 0))
        )
        slots = _compute(calc, schedule=schedule).slots
        assert slots == [_kyiv(WEDNESDAY, 9, 0), _kyiv(WEDNESDAY, 9, 30)]


class TestToday:
    def test_today_excludes_past_and_current_starts(self, calc):
        now = _kyiv(WEDNESDAY, 11, 10)
        slots = _compute(calc, now=now).slots
        assert slots[0] == _kyiv(WEDNESDAY, 11, 30)
        assert all(s > now for s in slots)

    def test_start_equal_to_now_excluded(self, calc):
        now = _kyiv(WEDNESDAY, 11, 0)
        assert _kyiv(WEDNESDAY, 11, 0) not in _compute(calc, now=now).slots

    def test_min_advance_booking(self, calc):
        now = _kyiv(WEDNESDAY, 11, 10)
        options = BookingSlotsOptions(min_advance_booking_minutes=60)
        assert _compute(calc, now=now, options=options).slots[0] == _kyiv(WEDNESDAY, 12, 30)

    def test_after_hours_today_is_empty_without_reason(self, calc):
        result = _compute(calc, now=_kyiv(WEDNESDAY, 18, 30))
        assert result.slots == []
        assert result.reason is None


class TestDaylightSaving:
    def test_skipped_wall_clock_times_dropped(self, calc):
        # Kyiv springs forward from 03:00 to 04:00 on 2026-03-29.
        sunday = date(2026, 3, 29)
        schedule = set_date_override(
            SpecialistSchedule.default(), sunday, WorkingHours(start=time(2, 0), end=time(6, 0))
        )
        result = _compute(calc, schedule=schedule, day=sunday, now=datetime(2026, 3, 20, tzinfo=timezone.utc))
        assert result.slots == [
            datetime(2026, 3, 29, 0, 0, tzinfo=timezone.utc),   # 02:00 +02
            datetime(2026, 3, 29, 0, 30, tzinfo=timezone.utc),  # 02:30 +02
            datetime(2026, 3, 29, 1, 0, tzinfo=timezone.utc),   # 04:00 +03
            datetime(2026, 3, 29, 1, 30, tzinfo=timezone.utc),
            datetime(2026, 3, 29, 2, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 29, 2, 30, tzinfo=timezone.utc),
        ]

    def test_summer_offset_applied(self, calc):
        summer = date(2026, 7, 1)
        result = _compute(calc, day=summer, now=datetime(2026, 6, 20, tzinfo=timezone.utc))
        assert result.slots[0] == datetime(2026, 7, 1, 6, 0, tzinfo=timezone.utc)
