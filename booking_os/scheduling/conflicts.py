"""Overlap testing shared by slot filtering and booking admission.

Both the availability calculator and the booking committer go through
``find_conflict`` so the two can never disagree about whether a range is free.
"""

import logging
import uuid
from datetime import timedelta
from typing import Iterable, Optional, Protocol

from booking_os.scheduling.models import Appointment, TimeRange

logger = logging.getLogger(__name__)


class _Range(Protocol):
    @property
    def start(self): ...

    @property
    def end(self): ...


def overlaps(a: _Range, b: _Range) -> bool:
    """Half-open ranges ``[s1, e1)`` and ``[s2, e2)`` overlap iff s1 < e2 and s2 < e1."""
    return a.start < b.end and b.start < a.end


def malformed_appointments(appointments: Iterable[Appointment]) -> list[Appointment]:
    """Appointments whose stored range ends at or before it starts."""
    return [a for a in appointments if a.end_time <= a.start_time]


def padded(time_range: TimeRange, buffer_minutes: int) -> TimeRange:
    """*time_range* with its end pushed out by *buffer_minutes*."""
    if not buffer_minutes:
        return time_range
    return TimeRange(start=time_range.start, end=time_range.end + timedelta(minutes=buffer_minutes))


def find_conflict(
    appointments: Iterable[Appointment],
    specialist_id: uuid.UUID,
    candidate: TimeRange,
    exclude_appointment_id: Optional[uuid.UUID] = None,
    buffer_minutes: int = 0,
) -> Optional[Appointment]:
    """Return the first appointment that blocks *candidate*, if any.

    Only appointments of *specialist_id* that still occupy time are
    considered; cancelled ones free their slot. When checking a reschedule,
    pass the moving appointment's id as *exclude_appointment_id*.
    Malformed records are skipped.

    *buffer_minutes* pads the end of both the candidate and every existing
    appointment, so two bookings are always at least that far apart.
    """
    wanted = padded(candidate, buffer_minutes)
    for appt in appointments:
        if appt.specialist_id != specialist_id or not appt.occupies_time:
            continue
        if exclude_appointment_id is not None and appt.id == exclude_appointment_id:
            continue
        if appt.end_time <= appt.start_time:
            logger.warning("Skipping appointment %s with malformed range", appt.id)
            continue
        if overlaps(padded(appt.time_range, buffer_minutes), wanted):
            return appt
    return None


def has_conflict(
    appointments: Iterable[Appointment],
    specialist_id: uuid.UUID,
    candidate: TimeRange,
    exclude_appointment_id: Optional[uuid.UUID] = None,
    buffer_minutes: int = 0,
) -> bool:
    return find_conflict(appointments, specialist_id, candidate, exclude_appointment_id, buffer_minutes) is not None
