"""Tests for the domain event logger."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from booking_os.observability import (
    AppointmentBooked,
    ChangeRequestSubmitted,
    EventLogger,
    EventType,
)

START = datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_log_dir(tmp_path):
    """Create temporary log directory."""
    log_dir = tmp_path / "events"
    log_dir.mkdir()
    return log_dir


@pytest.fixture
def event_logger(temp_log_dir):
    return EventLogger(log_dir=temp_log_dir, enabled=True)


def _booked(**kwargs) -> AppointmentBooked:
    return AppointmentBooked(
        business_id=uuid.uuid4(),
        appointment_id=uuid.uuid4(),
        specialist_id=uuid.uuid4(),
        start_time=START,
        end_time=START + timedelta(minutes=30),
        status="Pending",
        **kwargs,
    )


def _submitted() -> ChangeRequestSubmitted:
    return ChangeRequestSubmitted(
        business_id=uuid.uuid4(),
        appointment_id=uuid.uuid4(),
        request_id=uuid.uuid4(),
        request_type="CANCEL",
    )


class TestEventLogger:
    """Tests for EventLogger."""

    def test_init_creates_log_directory(self, tmp_path):
        log_dir = tmp_path / "new_events"
        EventLogger(log_dir=log_dir)
        assert log_dir.exists()

    def test_publish_writes_jsonl(self, event_logger, temp_log_dir):
        event = _booked(client_id="client-1")
        event_logger.publish(event)

        log_file = temp_log_dir / "appointments.jsonl"
        lines = log_file.read_text().strip().split("\n")
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["event_type"] == "appointment_booked"
        assert data["appointment_id"] == str(event.appointment_id)
        assert data["client_id"] == "client-1"

    def test_change_request_events_use_own_file(self, event_logger, temp_log_dir):
        event_logger.publish(_submitted())
        assert (temp_log_dir / "change_requests.jsonl").exists()
        assert not (temp_log_dir / "appointments.jsonl").exists()

    def test_disabled_logger_writes_nothing(self, temp_log_dir):
        received = []
        disabled = EventLogger(log_dir=temp_log_dir, enabled=False)
        disabled.subscribe(received.append)
        disabled.publish(_booked())

        assert not (temp_log_dir / "appointments.jsonl").exists()
        assert received == []

    def test_subscribers_receive_events(self, event_logger):
        received = []
        event_logger.subscribe(received.append)
        event = _booked()
        event_logger.publish(event)
        assert received == [event]

    def test_failing_subscriber_does_not_block_others(self, event_logger, caplog):
        received = []

        def broken(event):
            raise RuntimeError("sms gateway down")

        event_logger.subscribe(broken)
        event_logger.subscribe(received.append)
        event_logger.publish(_booked())

        assert len(received) == 1
        assert "sms gateway down" in caplog.text

    def test_get_recent_events(self, event_logger, temp_log_dir):
        for _ in range(5):
            event_logger.publish(_booked())
        with open(temp_log_dir / "appointments.jsonl", "a") as f:
            f.write("not json\n")

        recent = event_logger.get_recent_events("appointments", limit=3)
        assert len(recent) == 3
        assert all(e["event_type"] == EventType.APPOINTMENT_BOOKED.value for e in recent)

    def test_get_recent_events_unknown_log(self, event_logger):
        assert event_logger.get_recent_events("billing") == []
        assert event_logger.get_recent_events("change_requests") == []
