"""Booking committer: the only path that writes appointment time ranges.

Every write runs inside a per-specialist write window: the in-process
specialist lock, then a row lock on the specialist, then a fresh conflict
check, the write itself and the commit. Domain events go out only after the
commit succeeds.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Iterable, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.core.models import AppointmentDB, Specialist
from booking_os.core.repository import (
    AppointmentEventRepository,
    AppointmentRepository,
    SpecialistRepository,
    is_lock_timeout,
)
from booking_os.observability.events import (
    AppointmentBooked,
    AppointmentCancelled,
    AppointmentRescheduled,
    AppointmentStatusChanged,
    DomainEvent,
    EventType,
)
from booking_os.scheduling.conflicts import find_conflict
from booking_os.scheduling.locks import SchedulingBusyError, SpecialistLocks
from booking_os.scheduling.models import (
    CHANGEABLE_STATUSES,
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    BookingErrorCode,
    BookingOutcome,
    TimeRange,
)
from booking_os.scheduling.providers import BusinessSettingsProvider, EventDispatcher, SpecialistDirectory

logger = logging.getLogger(__name__)

# Done and Cancelled are terminal.
STATUS_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.DONE, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.DONE, AppointmentStatus.CANCELLED}),
}


def can_transition(current: AppointmentStatus, new: AppointmentStatus) -> bool:
    return new in STATUS_TRANSITIONS.get(current, frozenset())


@asynccontextmanager
async def specialist_write_window(
    session: AsyncSession,
    locks: SpecialistLocks,
    specialist_id: uuid.UUID,
) -> AsyncIterator[Optional[Specialist]]:
    """Serialize writers for *specialist_id* and yield its freshly locked row.

    Work that should persist must be committed inside the block. Leaving it
    any other way, by early return or by exception, rolls the transaction
    back so the row lock is released immediately. Waiting for the row lock
    longer than the lock timeout raises :class:`SchedulingBusyError`.
    """
    async with locks.hold(specialist_id):
        try:
            try:
                specialist = await SpecialistRepository(session).lock(specialist_id, timeout=locks.timeout)
            except DBAPIError as e:
                if not is_lock_timeout(e):
                    raise
                logger.warning(f"Row lock wait timed out for specialist {specialist_id}")
                raise SchedulingBusyError(specialist_id, locks.timeout) from e
            yield specialist
        finally:
            if session.in_transaction():
                await session.rollback()


class BookingCommitter:
    """Atomically checks and writes appointments for one session."""

    def __init__(
        self,
        session: AsyncSession,
        directory: SpecialistDirectory,
        locks: SpecialistLocks,
        events: Optional[EventDispatcher] = None,
        settings: Optional[BusinessSettingsProvider] = None,
    ):
        self.session = session
        self.directory = directory
        self.locks = locks
        self.events = events
        self.settings = settings
        self.appointments = AppointmentRepository(session)
        self.history = AppointmentEventRepository(session)

    # -- write window -------------------------------------------------------

    def write_window(self, specialist_id: uuid.UUID):
        return specialist_write_window(self.session, self.locks, specialist_id)

    async def buffer_minutes(self, business_id: uuid.UUID) -> int:
        """The business's required gap between appointments."""
        if self.settings is None:
            return 0
        return (await self.settings.get_booking_options(business_id)).buffer_minutes

    async def find_conflict(
        self,
        specialist_id: uuid.UUID,
        candidate: TimeRange,
        exclude_appointment_id: Optional[uuid.UUID] = None,
        buffer_minutes: int = 0,
    ) -> Optional[Appointment]:
        """Reload the specialist's nearby appointments and test *candidate*."""
        pad = timedelta(minutes=buffer_minutes)
        rows = await self.appointments.list_overlapping(specialist_id, candidate.start - pad, candidate.end + pad)
        existing = [Appointment.model_validate(row) for row in rows]
        return find_conflict(existing, specialist_id, candidate, exclude_appointment_id, buffer_minutes)

    def publish(self, events: Iterable[DomainEvent]) -> None:
        if self.events is None:
            return
        for event in events:
            self.events.publish(event)

    # -- mutations that assume the write window is held ----------------------

    async def apply_reschedule(
        self,
        appt: AppointmentDB,
        new_range: TimeRange,
        change_request_id: Optional[uuid.UUID] = None,
    ) -> AppointmentRescheduled:
        old_start, old_end = appt.start_time, appt.end_time
        await self.appointments.update_time(appt, new_range.start, new_range.end)
        await self.history.log_event(
            appt.business_id,
            appt.id,
            EventType.APPOINTMENT_RESCHEDULED.value,
            {
                "from": {"start": old_start.isoformat(), "end": old_end.isoformat()},
                "to": {"start": new_range.start.isoformat(), "end": new_range.end.isoformat()},
                "changeRequestId": str(change_request_id) if change_request_id else None,
            },
        )
        return AppointmentRescheduled(
            business_id=appt.business_id,
            appointment_id=appt.id,
            specialist_id=appt.specialist_id,
            old_start_time=old_start,
            old_end_time=old_end,
            new_start_time=new_range.start,
            new_end_time=new_range.end,
            change_request_id=change_request_id,
        )

    async def apply_status(
        self,
        appt: AppointmentDB,
        new_status: AppointmentStatus,
        change_request_id: Optional[uuid.UUID] = None,
    ) -> DomainEvent:
        old_status = appt.status
        await self.appointments.update_status(appt, new_status)
        await self.history.log_event(
            appt.business_id,
            appt.id,
            EventType.APPOINTMENT_STATUS_CHANGED.value,
            {
                "from": old_status,
                "to": new_status.value,
                "changeRequestId": str(change_request_id) if change_request_id else None,
            },
        )
        if new_status == AppointmentStatus.CANCELLED:
            return AppointmentCancelled(
                business_id=appt.business_id,
                appointment_id=appt.id,
                specialist_id=appt.specialist_id,
                previous_status=old_status,
                change_request_id=change_request_id,
            )
        return AppointmentStatusChanged(
            business_id=appt.business_id,
            appointment_id=appt.id,
            specialist_id=appt.specialist_id,
            old_status=old_status,
            new_status=new_status.value,
        )

    # -- public operations --------------------------------------------------

    async def commit_booking(self, time_range: TimeRange, draft: AppointmentDraft) -> BookingOutcome:
        """Book *time_range* for the draft's specialist, or report why not."""
        if not time_range.is_valid:
            return BookingOutcome(error=BookingErrorCode.INVALID_RANGE, message="End must be after start")

        if not await self.directory.is_bookable(draft.business_id, draft.specialist_id):
            return BookingOutcome(
                error=BookingErrorCode.SPECIALIST_UNAVAILABLE,
                message="Specialist not found or inactive",
            )

        async with self.write_window(draft.specialist_id):
            buffer = await self.buffer_minutes(draft.business_id)
            conflict = await self.find_conflict(draft.specialist_id, time_range, buffer_minutes=buffer)
            if conflict is not None:
                logger.info(
                    f"Slot {time_range.start.isoformat()} taken for specialist {draft.specialist_id} "
                    f"(conflicts with {conflict.id})"
                )
                return BookingOutcome(error=BookingErrorCode.SLOT_TAKEN, message="Slot is already booked")

            appt = await self.appointments.create(
                business_id=draft.business_id,
                specialist_id=draft.specialist_id,
                client_id=draft.client_id,
                client_name=draft.client_name,
                client_phone=draft.client_phone,
                notes=draft.notes,
                start_time=time_range.start,
                end_time=time_range.end,
                status=draft.status.value,
            )
            await self.history.log_event(
                appt.business_id,
                appt.id,
                EventType.APPOINTMENT_BOOKED.value,
                {"start": time_range.start.isoformat(), "end": time_range.end.isoformat(), "status": appt.status},
            )
            await self.session.commit()

        booked = Appointment.model_validate(appt)
        logger.info(f"Booked appointment {booked.id} for specialist {booked.specialist_id}")
        self.publish(
            [
                AppointmentBooked(
                    business_id=booked.business_id,
                    appointment_id=booked.id,
                    specialist_id=booked.specialist_id,
                    start_time=booked.start_time,
                    end_time=booked.end_time,
                    status=booked.status.value,
                    client_id=booked.client_id,
                )
            ]
        )
        return BookingOutcome(appointment=booked)

    async def reschedule(
        self,
        business_id: uuid.UUID,
        appointment_id: uuid.UUID,
        new_range: TimeRange,
    ) -> BookingOutcome:
        """Move an appointment on the business's own authority."""
        if not new_range.is_valid:
            return BookingOutcome(error=BookingErrorCode.INVALID_RANGE, message="End must be after start")

        appt = await self.appointments.get_for_business(business_id, appointment_id)
        if appt is None:
            return BookingOutcome(error=BookingErrorCode.NOT_FOUND, message="Appointment not found")

        async with self.write_window(appt.specialist_id):
            await self.session.refresh(appt)
            if AppointmentStatus(appt.status) not in CHANGEABLE_STATUSES:
                return BookingOutcome(
                    error=BookingErrorCode.APPOINTMENT_NOT_ACTIVE,
                    message=f"Appointment is {appt.status}",
                )
            buffer = await self.buffer_minutes(appt.business_id)
            if await self.find_conflict(
                appt.specialist_id, new_range, exclude_appointment_id=appt.id, buffer_minutes=buffer
            ):
                return BookingOutcome(error=BookingErrorCode.SLOT_TAKEN, message="Slot is already booked")
            event = await self.apply_reschedule(appt, new_range)
            await self.session.commit()

        self.publish([event])
        return BookingOutcome(appointment=Appointment.model_validate(appt))

    async def change_status(
        self,
        business_id: uuid.UUID,
        appointment_id: uuid.UUID,
        new_status: AppointmentStatus,
    ) -> BookingOutcome:
        appt = await self.appointments.get_for_business(business_id, appointment_id)
        if appt is None:
            return BookingOutcome(error=BookingErrorCode.NOT_FOUND, message="Appointment not found")

        async with self.write_window(appt.specialist_id):
            await self.session.refresh(appt)
            current = AppointmentStatus(appt.status)
            if not can_transition(current, new_status):
                return BookingOutcome(
                    error=BookingErrorCode.INVALID_TRANSITION,
                    message=f"Cannot move from {current.value} to {new_status.value}",
                )
            event = await self.apply_status(appt, new_status)
            await self.session.commit()

        self.publish([event])
        return BookingOutcome(appointment=Appointment.model_validate(appt))
