"""Tests for CLI commands."""

import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from typer.testing import CliRunner

from booking_os.cli.commands import _run, app
from booking_os.config import get_settings
from booking_os.core.auth import decode_manage_token
from booking_os.core.database import _get_engine, get_session_factory
from booking_os.core.repository import AppointmentRepository

runner = CliRunner()

UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")


def _clear_caches():
    get_settings.cache_clear()
    _get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    """Point the CLI at a throwaway SQLite file with tables created."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("EVENT_LOG_DIR", str(tmp_path / "events"))
    _clear_caches()
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    yield
    _clear_caches()


def _create_business(*args: str) -> str:
    result = runner.invoke(app, ["create-business", "Studio", *args])
    assert result.exit_code == 0, result.output
    return UUID_RE.search(result.output).group(0)


def _create_specialist(business_id: str) -> str:
    result = runner.invoke(app, ["create-specialist", business_id, "Olena"])
    assert result.exit_code == 0, result.output
    return UUID_RE.search(result.output).group(0)


def _next_wednesday() -> date:
    day = date.today() + timedelta(days=2)
    while day.weekday() != 2:
        day += timedelta(days=1)
    return day


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "BookingOS v" in result.output


class TestSetupCommands:
    def test_init_db(self, cli_db):
        result = runner.invoke(app, ["init-db"])
        assert result.exit_code == 0
        assert "Database tables ready" in result.output

    def test_create_business_and_specialist(self, cli_db):
        business_id = _create_business("--slug", "studio", "--tz", "Europe/Kyiv")
        assert _create_specialist(business_id)

    def test_create_business_with_settings_file(self, cli_db, tmp_path):
        settings_file = tmp_path / "settings.json"
        settings_file.write_text('{"bookingSlots": {"slotStepMinutes": 60}}')
        business_id = _create_business("--tz", "Europe/Kyiv", "--settings", str(settings_file))
        specialist_id = _create_specialist(business_id)

        result = runner.invoke(
            app, ["slots", business_id, specialist_id, "--date", _next_wednesday().isoformat()]
        )
        assert result.exit_code == 0
        assert "T09:00" in result.output
        assert "T09:30" not in result.output

    def test_specialist_for_unknown_business(self, cli_db):
        result = runner.invoke(app, ["create-specialist", "00000000-0000-0000-0000-000000000001", "Olena"])
        assert result.exit_code == 1
        assert "Business not found" in result.output

    def test_invalid_business_id(self, cli_db):
        result = runner.invoke(app, ["create-specialist", "not-a-uuid", "Olena"])
        assert result.exit_code == 1


class TestSlotsCommand:
    def test_lists_slots(self, cli_db):
        business_id = _create_business("--tz", "Europe/Kyiv")
        specialist_id = _create_specialist(business_id)
        day = _next_wednesday().isoformat()

        result = runner.invoke(app, ["slots", business_id, specialist_id, "--date", day, "--duration", "60"])
        assert result.exit_code == 0
        assert f"{day}T09:00" in result.output
        assert f"{day}T17:00" in result.output
        assert f"{day}T17:30" not in result.output

    def test_day_off(self, cli_db):
        business_id = _create_business("--tz", "Europe/Kyiv")
        specialist_id = _create_specialist(business_id)
        sunday = _next_wednesday() + timedelta(days=4)

        result = runner.invoke(app, ["slots", business_id, specialist_id, "--date", sunday.isoformat()])
        assert result.exit_code == 0
        assert "DAY_OFF" in result.output

    def test_bad_duration(self, cli_db):
        business_id = _create_business()
        specialist_id = _create_specialist(business_id)
        result = runner.invoke(app, ["slots", business_id, specialist_id, "--duration", "5"])
        assert result.exit_code == 1

    def test_bad_date(self, cli_db):
        business_id = _create_business()
        specialist_id = _create_specialist(business_id)
        result = runner.invoke(app, ["slots", business_id, specialist_id, "--date", "04.03.2026"])
        assert result.exit_code == 1
        assert "Invalid date" in result.output


class TestManageLink:
    def test_issues_token(self, cli_db):
        business_id = _create_business("--tz", "Europe/Kyiv")
        specialist_id = _create_specialist(business_id)
        start = datetime.combine(_next_wednesday(), time(10, 0), tzinfo=ZoneInfo("Europe/Kyiv"))
        start = start.astimezone(timezone.utc)

        async def book(session):
            appt = await AppointmentRepository(session).create(
                business_id=uuid.UUID(business_id),
                specialist_id=uuid.UUID(specialist_id),
                start_time=start,
                end_time=start + timedelta(minutes=30),
                status="Pending",
            )
            return appt.id

        appointment_id = _run(book)

        result = runner.invoke(app, ["manage-link", str(appointment_id), "--days", "7"])
        assert result.exit_code == 0
        claims = decode_manage_token(result.output.strip())
        assert claims is not None
        assert claims["sub"] == str(appointment_id)
        assert claims["bid"] == business_id

    def test_unknown_appointment(self, cli_db):
        result = runner.invoke(app, ["manage-link", "00000000-0000-0000-0000-000000000002"])
        assert result.exit_code == 1
        assert "Appointment not found" in result.output
