"""Domain events for notification subscribers."""

from booking_os.observability.events import (
    AppointmentBooked,
    AppointmentCancelled,
    AppointmentRescheduled,
    AppointmentStatusChanged,
    ChangeRequestDecided,
    ChangeRequestSubmitted,
    DomainEvent,
    EventType,
)
from booking_os.observability.logger import EventLogger, get_event_logger

__all__ = [
    "AppointmentBooked",
    "AppointmentCancelled",
    "AppointmentRescheduled",
    "AppointmentStatusChanged",
    "ChangeRequestDecided",
    "ChangeRequestSubmitted",
    "DomainEvent",
    "EventLogger",
    "EventType",
    "get_event_logger",
]
