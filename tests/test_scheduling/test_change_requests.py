"""DB-backed tests for the change request state machine."""

import uuid
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import update

from booking_os.core.auth import create_manage_token
from booking_os.core.models import AppointmentDB
from booking_os.core.repository import ChangeRequestRepository
from booking_os.observability.events import EventType
from booking_os.scheduling.booking import BookingCommitter
from booking_os.scheduling.change_requests import ChangeRequestService
from booking_os.scheduling.locks import SpecialistLocks
from booking_os.scheduling.models import (
    AppointmentDraft,
    AppointmentStatus,
    BookingErrorCode,
    BookingSlotsOptions,
    ChangeRequestStatus,
    ChangeRequestType,
    ClientChangeSettings,
    Decision,
    TimeRange,
)
from booking_os.scheduling.providers import DbSpecialistDirectory, JwtTokenVerifier
from booking_os.scheduling.service import AvailabilityService
from tests.conftest import BUSINESS_ID, KYIV, SPECIALIST_ID, FixedSettingsProvider, next_weekday

DAY = next_weekday(2)  # a Wednesday at least two days out


def _local(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(DAY, time(hour, minute), tzinfo=ZoneInfo(KYIV)).astimezone(timezone.utc)


def _range(hour: int, minute: int = 0, minutes: int = 30) -> TimeRange:
    return TimeRange.from_duration(_local(hour, minute), minutes)


@pytest.fixture
def provider():
    return FixedSettingsProvider()


@pytest.fixture
def committer(session, seed, recorder, provider):
    return BookingCommitter(
        session, DbSpecialistDirectory(session), SpecialistLocks(timeout=2.0), recorder, provider
    )


@pytest.fixture
def service(session, provider, committer):
    return ChangeRequestService(session, provider, committer, JwtTokenVerifier())


async def _book(committer, hour: int = 10, minute: int = 0):
    outcome = await committer.commit_booking(
        _range(hour, minute),
        AppointmentDraft(business_id=BUSINESS_ID, specialist_id=SPECIALIST_ID, client_name="Iryna"),
    )
    assert outcome.ok
    return outcome.appointment


class TestSubmit:
    async def test_reschedule_request_pending(self, service, committer, recorder):
        appt = await _book(committer)
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14), "later please")
        assert outcome.ok
        assert outcome.request.status == ChangeRequestStatus.PENDING
        assert outcome.request.requested_start_time == _local(14)
        assert outcome.request.client_note == "later please"
        assert recorder.types()[-1] == EventType.CHANGE_REQUEST_SUBMITTED.value

    async def test_cancel_request_drops_range(self, service, committer):
        appt = await _book(committer)
        outcome = await service.submit_request(appt.id, ChangeRequestType.CANCEL, _range(14))
        assert outcome.ok
        assert outcome.request.requested_range is None

    async def test_unknown_appointment(self, service, seed):
        outcome = await service.submit_request(uuid.uuid4(), ChangeRequestType.CANCEL)
        assert outcome.error == BookingErrorCode.NOT_FOUND

    async def test_cancelled_appointment_not_active(self, service, committer):
        appt = await _book(committer)
        await committer.change_status(BUSINESS_ID, appt.id, AppointmentStatus.CANCELLED)
        outcome = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        assert outcome.error == BookingErrorCode.APPOINTMENT_NOT_ACTIVE

    async def test_disabled_kind(self, service, committer, provider):
        provider.change_settings = ClientChangeSettings(allow_reschedule=False)
        appt = await _book(committer)
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        assert outcome.error == BookingErrorCode.DISABLED
        assert (await service.submit_request(appt.id, ChangeRequestType.CANCEL)).ok

    async def test_disabled_entirely(self, service, committer, provider):
        provider.change_settings = ClientChangeSettings(enabled=False)
        appt = await _book(committer)
        outcome = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        assert outcome.error == BookingErrorCode.DISABLED

    async def test_too_late(self, service, committer, provider):
        provider.change_settings = ClientChangeSettings(min_hours_before=4)
        appt = await _book(committer)
        now = appt.start_time - timedelta(hours=2)
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14), now=now)
        assert outcome.error == BookingErrorCode.TOO_LATE

    async def test_second_request_while_pending(self, service, committer):
        appt = await _book(committer)
        assert (await service.submit_request(appt.id, ChangeRequestType.CANCEL)).ok
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        assert outcome.error == BookingErrorCode.PENDING_REQUEST_EXISTS

    async def test_reschedule_needs_future_range(self, service, committer):
        appt = await _book(committer)
        missing = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE)
        assert missing.error == BookingErrorCode.INVALID_RANGE
        inverted = TimeRange(start=_local(15), end=_local(14))
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, inverted)
        assert outcome.error == BookingErrorCode.INVALID_RANGE

    async def test_reschedule_to_taken_slot(self, service, committer):
        appt = await _book(committer)
        await _book(committer, 14)
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        assert outcome.error == BookingErrorCode.SLOT_TAKEN

    async def test_reschedule_respects_buffer(self, service, committer, provider):
        appt = await _book(committer)
        await _book(committer, 14)
        provider.options = BookingSlotsOptions(buffer_minutes=15)
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(13, 30))
        assert outcome.error == BookingErrorCode.SLOT_TAKEN

    async def test_cancelled_while_checking_settings(self, session, committer):
        appt = await _book(committer)

        class CancelsMeanwhile(FixedSettingsProvider):
            async def get_change_settings(self, business_id, specialist_id=None):
                await session.execute(
                    update(AppointmentDB)
                    .where(AppointmentDB.id == appt.id)
                    .values(status=AppointmentStatus.CANCELLED.value)
                )
                await session.commit()
                return await super().get_change_settings(business_id, specialist_id)

        service = ChangeRequestService(session, CancelsMeanwhile(), committer, JwtTokenVerifier())
        outcome = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        assert outcome.error == BookingErrorCode.APPOINTMENT_NOT_ACTIVE
        assert await ChangeRequestRepository(session).get_pending_for_appointment(appt.id) is None


class TestDecide:
    async def test_reject_leaves_appointment(self, service, committer, recorder):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        outcome = await service.decide(submitted.request.id, Decision.REJECT, "fully booked week")
        assert outcome.ok
        assert outcome.request.status == ChangeRequestStatus.REJECTED
        assert outcome.request.decision_note == "fully booked week"
        assert outcome.request.decided_by == "dashboard"
        assert outcome.request.decided_at is not None
        assert outcome.appointment.status == AppointmentStatus.PENDING
        assert recorder.types()[-1] == EventType.CHANGE_REQUEST_DECIDED.value

    async def test_approve_reschedule_moves_appointment(self, service, committer, recorder):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        outcome = await service.decide(submitted.request.id, Decision.APPROVE)
        assert outcome.ok
        assert outcome.request.status == ChangeRequestStatus.APPROVED
        assert outcome.appointment.start_time == _local(14)
        assert EventType.APPOINTMENT_RESCHEDULED.value in recorder.types()

    async def test_approve_cancel_frees_slot(self, service, committer, session, provider):
        appt = await _book(committer)
        availability = AvailabilityService(session, provider)
        now = datetime.now(timezone.utc)

        before = await availability.compute_available_slots(BUSINESS_ID, SPECIALIST_ID, DAY, 30, now=now)
        assert _local(10) not in before.slots

        submitted = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        outcome = await service.decide(submitted.request.id, Decision.APPROVE)
        assert outcome.appointment.status == AppointmentStatus.CANCELLED

        after = await availability.compute_available_slots(BUSINESS_ID, SPECIALIST_ID, DAY, 30, now=now)
        assert _local(10) in after.slots

    async def test_slot_taken_after_submission(self, service, committer, session):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        await _book(committer, 14)

        outcome = await service.decide(submitted.request.id, Decision.APPROVE)
        assert outcome.error == BookingErrorCode.SLOT_NO_LONGER_AVAILABLE

        stored = await ChangeRequestRepository(session).get_by_id(submitted.request.id)
        assert stored.status == ChangeRequestStatus.PENDING.value
        assert stored.decided_at is None
        assert (await service.decide(submitted.request.id, Decision.REJECT)).ok

    async def test_decided_request_is_final(self, service, committer):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        assert (await service.decide(submitted.request.id, Decision.APPROVE)).ok
        for decision in (Decision.APPROVE, Decision.REJECT):
            outcome = await service.decide(submitted.request.id, decision)
            assert outcome.error == BookingErrorCode.ALREADY_DECIDED
            assert outcome.request.status == ChangeRequestStatus.APPROVED

    async def test_rejected_request_is_final(self, service, committer):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        await service.decide(submitted.request.id, Decision.REJECT)
        outcome = await service.decide(submitted.request.id, Decision.APPROVE)
        assert outcome.error == BookingErrorCode.ALREADY_DECIDED

    async def test_approve_after_business_cancelled(self, service, committer):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(14))
        await committer.change_status(BUSINESS_ID, appt.id, AppointmentStatus.CANCELLED)
        outcome = await service.decide(submitted.request.id, Decision.APPROVE)
        assert outcome.error == BookingErrorCode.APPOINTMENT_NOT_ACTIVE

    async def test_other_business_cannot_decide(self, service, committer):
        appt = await _book(committer)
        submitted = await service.submit_request(appt.id, ChangeRequestType.CANCEL)
        outcome = await service.decide(submitted.request.id, Decision.APPROVE, business_id=uuid.uuid4())
        assert outcome.error == BookingErrorCode.NOT_FOUND

    async def test_auto_approval(self, service, committer, provider):
        provider.change_settings = ClientChangeSettings(require_master_approval=False)
        appt = await _book(committer)
        outcome = await service.submit_request(appt.id, ChangeRequestType.RESCHEDULE, _range(15))
        assert outcome.ok
        assert outcome.request.status == ChangeRequestStatus.APPROVED
        assert outcome.request.decided_by == "auto"
        assert outcome.appointment.start_time == _local(15)


class TestManageToken:
    async def test_submit_by_token(self, service, committer):
        appt = await _book(committer)
        token = create_manage_token(appt.id, appt.business_id)
        outcome = await service.submit_by_token(token, ChangeRequestType.CANCEL)
        assert outcome.ok
        assert outcome.request.appointment_id == appt.id

    async def test_bad_token(self, service, seed):
        outcome = await service.submit_by_token("not-a-token", ChangeRequestType.CANCEL)
        assert outcome.error == BookingErrorCode.NOT_FOUND

    async def test_manage_view(self, service, committer):
        appt = await _book(committer)
        token = create_manage_token(appt.id, appt.business_id)
        await service.submit_request(appt.id, ChangeRequestType.CANCEL)

        view = await service.manage_view(token)
        assert view.ok
        assert view.appointment.id == appt.id
        assert view.time_zone == KYIV
        assert view.settings.min_hours_before == 3
        assert view.request.type == ChangeRequestType.CANCEL

    async def test_expired_token(self, service, committer):
        appt = await _book(committer)
        token = create_manage_token(appt.id, appt.business_id, expires_in=timedelta(seconds=-1))
        assert (await service.manage_view(token)).error == BookingErrorCode.NOT_FOUND
