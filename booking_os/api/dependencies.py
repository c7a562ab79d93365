"""FastAPI dependencies: business authentication and service wiring."""

from __future__ import annotations

import hmac
import uuid

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.config import get_settings
from booking_os.core.database import get_db
from booking_os.core.models import Business
from booking_os.core.repository import BusinessRepository
from booking_os.observability.logger import get_event_logger
from booking_os.scheduling.booking import BookingCommitter
from booking_os.scheduling.change_requests import ChangeRequestService
from booking_os.scheduling.locks import SpecialistLocks, get_specialist_locks
from booking_os.scheduling.providers import (
    DbBusinessSettingsProvider,
    DbSpecialistDirectory,
    EventDispatcher,
    JwtTokenVerifier,
)
from booking_os.scheduling.service import AvailabilityService, ScheduleService


def _provided_api_key(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.headers.get("X-API-Key")


async def get_current_business(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Business:
    """Resolve the calling business.

    Requires the API key (Bearer or X-API-Key) when one is configured, plus
    an ``X-Business-Id`` header naming an active business.
    """
    settings = get_settings()
    if settings.has_api_key:
        provided = _provided_api_key(request)
        if not provided or not hmac.compare_digest(provided, settings.api_key):
            raise HTTPException(status_code=401, detail="Invalid or missing API key")

    business_id = request.headers.get("X-Business-Id")
    if not business_id:
        raise HTTPException(status_code=401, detail="Missing X-Business-Id")
    try:
        bid = uuid.UUID(business_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Business-Id")

    business = await BusinessRepository(db).get_by_id(bid)
    if business is None or not business.active:
        raise HTTPException(status_code=401, detail="Unknown business")
    return business


def get_event_dispatcher() -> EventDispatcher:
    return get_event_logger()


def get_locks() -> SpecialistLocks:
    return get_specialist_locks()


def get_settings_provider(db: AsyncSession = Depends(get_db)) -> DbBusinessSettingsProvider:
    settings = get_settings()
    return DbBusinessSettingsProvider(
        db,
        default_time_zone=settings.default_time_zone,
        default_step=settings.slot_step_minutes,
    )


def get_booking_committer(
    db: AsyncSession = Depends(get_db),
    locks: SpecialistLocks = Depends(get_locks),
    events: EventDispatcher = Depends(get_event_dispatcher),
    provider: DbBusinessSettingsProvider = Depends(get_settings_provider),
) -> BookingCommitter:
    return BookingCommitter(db, DbSpecialistDirectory(db), locks, events, provider)


def get_change_request_service(
    db: AsyncSession = Depends(get_db),
    provider: DbBusinessSettingsProvider = Depends(get_settings_provider),
    committer: BookingCommitter = Depends(get_booking_committer),
) -> ChangeRequestService:
    return ChangeRequestService(db, provider, committer, JwtTokenVerifier())


def get_availability_service(
    db: AsyncSession = Depends(get_db),
    provider: DbBusinessSettingsProvider = Depends(get_settings_provider),
) -> AvailabilityService:
    settings = get_settings()
    return AvailabilityService(
        db,
        provider,
        min_duration_minutes=settings.min_duration_minutes,
        max_duration_minutes=settings.max_duration_minutes,
    )


def get_schedule_service(
    db: AsyncSession = Depends(get_db),
    locks: SpecialistLocks = Depends(get_locks),
) -> ScheduleService:
    return ScheduleService(db, locks)
