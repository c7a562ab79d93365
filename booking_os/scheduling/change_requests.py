"""Client change requests: submission policy and the business decision.

A request moves PENDING -> APPROVED or PENDING -> REJECTED exactly once.
Approving a reschedule re-checks the requested slot inside the specialist's
write window, because the slot may have been booked since submission.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.core.models import ChangeRequestDB
from booking_os.core.repository import (
    AppointmentEventRepository,
    AppointmentRepository,
    ChangeRequestRepository,
)
from booking_os.observability.events import ChangeRequestDecided, ChangeRequestSubmitted, DomainEvent, EventType
from booking_os.scheduling.booking import BookingCommitter
from booking_os.scheduling.models import (
    CHANGEABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    BookingErrorCode,
    ChangeRequest,
    ChangeRequestOutcome,
    ChangeRequestStatus,
    ChangeRequestType,
    ClientChangeSettings,
    Decision,
    TimeRange,
)
from booking_os.scheduling.providers import AccessTokenVerifier, BusinessSettingsProvider

logger = logging.getLogger(__name__)

AUTO_DECIDER = "auto"


def _failure(code: BookingErrorCode, message: str, **kwargs) -> ChangeRequestOutcome:
    return ChangeRequestOutcome(error=code, message=message, **kwargs)


class ManageView(ChangeRequestOutcome):
    """What a client sees behind a manage link."""

    time_zone: Optional[str] = None
    settings: Optional[ClientChangeSettings] = None


class ChangeRequestService:
    """Submits and decides change requests for one session."""

    def __init__(
        self,
        session: AsyncSession,
        settings: BusinessSettingsProvider,
        committer: BookingCommitter,
        verifier: Optional[AccessTokenVerifier] = None,
    ):
        self.session = session
        self.settings = settings
        self.committer = committer
        self.verifier = verifier
        self.appointments = AppointmentRepository(session)
        self.requests = ChangeRequestRepository(session)
        self.history = AppointmentEventRepository(session)

    async def submit_request(
        self,
        appointment_id: uuid.UUID,
        request_type: ChangeRequestType,
        requested_range: Optional[TimeRange] = None,
        client_note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChangeRequestOutcome:
        """Record a client's reschedule or cancel request.

        Checks run in a fixed order so the client always gets the most
        fundamental reason first.
        """
        now = now or datetime.now(timezone.utc)

        appt = await self.appointments.get_by_id(appointment_id)
        if appt is None:
            return _failure(BookingErrorCode.NOT_FOUND, "Appointment not found")
        if AppointmentStatus(appt.status) not in CHANGEABLE_STATUSES:
            return _failure(
                BookingErrorCode.APPOINTMENT_NOT_ACTIVE,
                f"Appointment is {appt.status}",
                appointment=Appointment.model_validate(appt),
            )

        settings = await self.settings.get_change_settings(appt.business_id, appt.specialist_id)
        if not settings.allows(request_type):
            return _failure(BookingErrorCode.DISABLED, "Changes of this kind are disabled")

        if now + timedelta(hours=settings.min_hours_before) > appt.start_time:
            return _failure(
                BookingErrorCode.TOO_LATE,
                f"Changes must be requested at least {settings.min_hours_before}h before the appointment",
            )

        if request_type != ChangeRequestType.RESCHEDULE:
            requested_range = None

        async with self.committer.write_window(appt.specialist_id):
            await self.session.refresh(appt)
            if AppointmentStatus(appt.status) not in CHANGEABLE_STATUSES:
                return _failure(
                    BookingErrorCode.APPOINTMENT_NOT_ACTIVE,
                    f"Appointment is {appt.status}",
                    appointment=Appointment.model_validate(appt),
                )

            if await self.requests.get_pending_for_appointment(appt.id):
                return _failure(BookingErrorCode.PENDING_REQUEST_EXISTS, "A request is already awaiting a decision")

            if request_type == ChangeRequestType.RESCHEDULE and (
                requested_range is None or not requested_range.is_valid or requested_range.start <= now
            ):
                return _failure(BookingErrorCode.INVALID_RANGE, "A future time range is required")

            buffer = await self.committer.buffer_minutes(appt.business_id)
            if requested_range is not None and await self.committer.find_conflict(
                appt.specialist_id, requested_range, exclude_appointment_id=appt.id, buffer_minutes=buffer
            ):
                return _failure(BookingErrorCode.SLOT_TAKEN, "Requested slot is already booked")

            req = await self.requests.create(
                business_id=appt.business_id,
                appointment_id=appt.id,
                specialist_id=appt.specialist_id,
                type=request_type.value,
                status=ChangeRequestStatus.PENDING.value,
                requested_start_time=requested_range.start if requested_range else None,
                requested_end_time=requested_range.end if requested_range else None,
                client_note=client_note,
            )
            await self.history.log_event(
                appt.business_id,
                appt.id,
                EventType.CHANGE_REQUEST_SUBMITTED.value,
                {"requestId": str(req.id), "type": request_type.value},
            )
            await self.session.commit()

        logger.info(f"Change request {req.id} ({request_type.value}) submitted for appointment {appt.id}")
        self.committer.publish(
            [
                ChangeRequestSubmitted(
                    business_id=appt.business_id,
                    appointment_id=appt.id,
                    specialist_id=appt.specialist_id,
                    request_id=req.id,
                    request_type=request_type.value,
                )
            ]
        )

        submitted = ChangeRequestOutcome(
            request=ChangeRequest.model_validate(req),
            appointment=Appointment.model_validate(appt),
        )
        if settings.require_master_approval:
            return submitted

        decided = await self.decide(req.id, Decision.APPROVE, decided_by=AUTO_DECIDER)
        if not decided.ok:
            logger.info(f"Auto-approval of {req.id} failed ({decided.error.value}); left pending")
            return submitted
        return decided

    async def submit_by_token(
        self,
        token: str,
        request_type: ChangeRequestType,
        requested_range: Optional[TimeRange] = None,
        client_note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChangeRequestOutcome:
        grant = self.verifier.resolve(token) if self.verifier else None
        if grant is None:
            return _failure(BookingErrorCode.NOT_FOUND, "Invalid or expired link")
        return await self.submit_request(grant.appointment_id, request_type, requested_range, client_note, now)

    async def _load_request(
        self, request_id: uuid.UUID, business_id: Optional[uuid.UUID]
    ) -> Optional[ChangeRequestDB]:
        if business_id is None:
            return await self.requests.get_by_id(request_id)
        return await self.requests.get_for_business(business_id, request_id)

    async def decide(
        self,
        request_id: uuid.UUID,
        decision: Decision,
        decision_note: Optional[str] = None,
        business_id: Optional[uuid.UUID] = None,
        decided_by: str = "dashboard",
    ) -> ChangeRequestOutcome:
        """Approve or reject a pending request.

        A failed approval mutates nothing and leaves the request PENDING.
        """
        req = await self._load_request(request_id, business_id)
        if req is None:
            return _failure(BookingErrorCode.NOT_FOUND, "Change request not found")
        if req.status != ChangeRequestStatus.PENDING.value:
            return _failure(
                BookingErrorCode.ALREADY_DECIDED,
                f"Request already {req.status}",
                request=ChangeRequest.model_validate(req),
            )

        events: list[DomainEvent] = []
        async with self.committer.write_window(req.specialist_id):
            await self.session.refresh(req)
            if req.status != ChangeRequestStatus.PENDING.value:
                return _failure(
                    BookingErrorCode.ALREADY_DECIDED,
                    f"Request already {req.status}",
                    request=ChangeRequest.model_validate(req),
                )

            appt = await self.appointments.get_by_id(req.appointment_id)
            if appt is None:
                return _failure(BookingErrorCode.NOT_FOUND, "Appointment not found")
            await self.session.refresh(appt)

            if decision == Decision.APPROVE:
                failure = await self._apply_approval(req, appt, events)
                if failure is not None:
                    return failure
                new_status = ChangeRequestStatus.APPROVED
            else:
                new_status = ChangeRequestStatus.REJECTED

            await self.requests.mark_decided(req, new_status, decision_note, decided_by)
            await self.history.log_event(
                req.business_id,
                req.appointment_id,
                EventType.CHANGE_REQUEST_DECIDED.value,
                {"requestId": str(req.id), "status": new_status.value, "decidedBy": decided_by},
            )
            await self.session.commit()

        logger.info(f"Change request {req.id} {new_status.value} by {decided_by}")
        events.append(
            ChangeRequestDecided(
                business_id=req.business_id,
                appointment_id=req.appointment_id,
                specialist_id=req.specialist_id,
                request_id=req.id,
                request_type=req.type,
                status=new_status.value,
                decision_note=decision_note,
                decided_by=decided_by,
            )
        )
        self.committer.publish(events)
        return ChangeRequestOutcome(
            request=ChangeRequest.model_validate(req),
            appointment=Appointment.model_validate(appt),
        )

    async def _apply_approval(self, req, appt, events: list[DomainEvent]) -> Optional[ChangeRequestOutcome]:
        """Mutate the appointment for an approval, or return why it can't be done."""
        if AppointmentStatus(appt.status) not in CHANGEABLE_STATUSES:
            return _failure(
                BookingErrorCode.APPOINTMENT_NOT_ACTIVE,
                f"Appointment is {appt.status}",
                request=ChangeRequest.model_validate(req),
            )

        if req.type == ChangeRequestType.CANCEL.value:
            events.append(await self.committer.apply_status(appt, AppointmentStatus.CANCELLED, req.id))
            return None

        requested = ChangeRequest.model_validate(req).requested_range
        if requested is None or not requested.is_valid:
            return _failure(
                BookingErrorCode.INVALID_RANGE,
                "Request has no valid time range",
                request=ChangeRequest.model_validate(req),
            )
        buffer = await self.committer.buffer_minutes(appt.business_id)
        if await self.committer.find_conflict(
            appt.specialist_id, requested, exclude_appointment_id=appt.id, buffer_minutes=buffer
        ):
            logger.info(f"Slot for change request {req.id} was taken since submission")
            return _failure(
                BookingErrorCode.SLOT_NO_LONGER_AVAILABLE,
                "Requested slot is no longer available",
                request=ChangeRequest.model_validate(req),
            )
        events.append(await self.committer.apply_reschedule(appt, requested, req.id))
        return None

    async def manage_view(self, token: str) -> ManageView:
        """Resolve a manage token to its appointment, settings and latest request."""
        grant = self.verifier.resolve(token) if self.verifier else None
        if grant is None:
            return ManageView(error=BookingErrorCode.NOT_FOUND, message="Invalid or expired link")

        appt = await self.appointments.get_for_business(grant.business_id, grant.appointment_id)
        if appt is None:
            return ManageView(error=BookingErrorCode.NOT_FOUND, message="Appointment not found")

        latest = await self.requests.get_latest_for_appointment(appt.id)
        return ManageView(
            appointment=Appointment.model_validate(appt),
            request=ChangeRequest.model_validate(latest) if latest else None,
            time_zone=await self.settings.get_time_zone(appt.business_id),
            settings=await self.settings.get_change_settings(appt.business_id, appt.specialist_id),
        )
