"""Structured domain events emitted after successful scheduling writes."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of domain events."""

    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_STATUS_CHANGED = "appointment_status_changed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    CHANGE_REQUEST_SUBMITTED = "change_request_submitted"
    CHANGE_REQUEST_DECIDED = "change_request_decided"


class DomainEvent(BaseModel):
    """Base class for all domain events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    business_id: uuid.UUID
    appointment_id: uuid.UUID
    specialist_id: Optional[uuid.UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AppointmentBooked(DomainEvent):
    event_type: EventType = EventType.APPOINTMENT_BOOKED
    start_time: datetime
    end_time: datetime
    status: str
    client_id: Optional[str] = None


class AppointmentStatusChanged(DomainEvent):
    event_type: EventType = EventType.APPOINTMENT_STATUS_CHANGED
    old_status: str
    new_status: str


class AppointmentCancelled(DomainEvent):
    event_type: EventType = EventType.APPOINTMENT_CANCELLED
    previous_status: str
    change_request_id: Optional[uuid.UUID] = None


class AppointmentRescheduled(DomainEvent):
    event_type: EventType = EventType.APPOINTMENT_RESCHEDULED
    old_start_time: datetime
    old_end_time: datetime
    new_start_time: datetime
    new_end_time: datetime
    change_request_id: Optional[uuid.UUID] = None


class ChangeRequestSubmitted(DomainEvent):
    event_type: EventType = EventType.CHANGE_REQUEST_SUBMITTED
    request_id: uuid.UUID
    request_type: str


class ChangeRequestDecided(DomainEvent):
    event_type: EventType = EventType.CHANGE_REQUEST_DECIDED
    request_id: uuid.UUID
    request_type: str
    status: str
    decision_note: Optional[str] = None
    decided_by: Optional[str] = None
