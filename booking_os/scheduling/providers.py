"""Collaborator interfaces the engine depends on, with database-backed defaults.

Settings are always injected through these protocols, so policy code can be
tested with fixture values and never reads global state.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.core.auth import decode_manage_token
from booking_os.core.repository import BusinessRepository, SpecialistRepository
from booking_os.observability.events import DomainEvent
from booking_os.scheduling.models import BookingSlotsOptions, ClientChangeSettings

logger = logging.getLogger(__name__)


class ManageGrant(BaseModel):
    """What a verified manage token authorizes."""

    appointment_id: uuid.UUID
    business_id: uuid.UUID
    expires_at: Optional[datetime] = None


class BusinessSettingsProvider(Protocol):
    async def get_time_zone(self, business_id: uuid.UUID) -> str: ...

    async def get_booking_options(self, business_id: uuid.UUID) -> BookingSlotsOptions: ...

    async def get_change_settings(
        self, business_id: uuid.UUID, specialist_id: Optional[uuid.UUID] = None
    ) -> ClientChangeSettings: ...


class SpecialistDirectory(Protocol):
    async def is_bookable(self, business_id: uuid.UUID, specialist_id: uuid.UUID) -> bool: ...


class AccessTokenVerifier(Protocol):
    def resolve(self, token: str) -> Optional[ManageGrant]: ...


class EventDispatcher(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


# ---------------------------------------------------------------------------
# Settings document parsing
# ---------------------------------------------------------------------------


def _is_valid_time_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_time_zone(settings_doc: Optional[dict], column_value: Optional[str], default: str) -> str:
    candidates = [column_value]
    if settings_doc:
        candidates.append(settings_doc.get("timeZone"))
        slots = settings_doc.get("bookingSlots")
        if isinstance(slots, dict):
            candidates.append(slots.get("timeZone"))
    for name in candidates:
        if isinstance(name, str) and name.strip() and _is_valid_time_zone(name.strip()):
            return name.strip()
    return default


def _clamped_int(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = round(float(value))
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def parse_booking_options(settings_doc: Optional[dict], default_step: int = 30) -> BookingSlotsOptions:
    slots = (settings_doc or {}).get("bookingSlots")
    if not isinstance(slots, dict):
        return BookingSlotsOptions(slot_step_minutes=default_step)
    step = slots.get("slotStepMinutes")
    return BookingSlotsOptions(
        slot_step_minutes=step if step in (15, 30, 60) else default_step,
        buffer_minutes=_clamped_int(slots.get("bufferMinutes"), 0, 0, 30),
        min_advance_booking_minutes=_clamped_int(slots.get("minAdvanceBookingMinutes"), 0, 0, 10080),
        max_days_ahead=_clamped_int(slots.get("maxDaysAhead"), 60, 1, 365),
    )


def parse_change_settings(*docs: Optional[dict]) -> ClientChangeSettings:
    """Merge ``clientChangeRequests`` documents, later ones winning per key.

    Flags default to on unless explicitly ``false``; ``minHoursBefore``
    defaults to 3 hours.
    """
    merged: dict[str, Any] = {}
    for doc in docs:
        if isinstance(doc, dict):
            merged.update({k: v for k, v in doc.items() if v is not None})

    return ClientChangeSettings(
        enabled=merged.get("enabled") is not False,
        allow_reschedule=merged.get("allowReschedule") is not False,
        allow_cancel=merged.get("allowCancel") is not False,
        min_hours_before=_clamped_int(merged.get("minHoursBefore"), 3, 0, 24 * 365),
        require_master_approval=merged.get("requireMasterApproval") is not False,
    )


# ---------------------------------------------------------------------------
# Database-backed implementations
# ---------------------------------------------------------------------------


class DbBusinessSettingsProvider:
    """Reads per-business settings documents, with per-specialist overrides."""

    def __init__(self, session: AsyncSession, default_time_zone: str = "Europe/Kyiv", default_step: int = 30):
        self.session = session
        self.default_time_zone = default_time_zone
        self.default_step = default_step

    async def _settings_doc(self, business_id: uuid.UUID) -> tuple[Optional[dict], Optional[str]]:
        business = await BusinessRepository(self.session).get_by_id(business_id)
        if business is None:
            return None, None
        return business.settings, business.time_zone

    async def get_time_zone(self, business_id: uuid.UUID) -> str:
        doc, column = await self._settings_doc(business_id)
        return parse_time_zone(doc, column, self.default_time_zone)

    async def get_booking_options(self, business_id: uuid.UUID) -> BookingSlotsOptions:
        doc, _ = await self._settings_doc(business_id)
        return parse_booking_options(doc, self.default_step)

    async def get_change_settings(
        self, business_id: uuid.UUID, specialist_id: Optional[uuid.UUID] = None
    ) -> ClientChangeSettings:
        doc, _ = await self._settings_doc(business_id)
        business_cfg = (doc or {}).get("clientChangeRequests")
        specialist_cfg = None
        if specialist_id is not None:
            specialist = await SpecialistRepository(self.session).get_for_business(business_id, specialist_id)
            specialist_cfg = specialist.change_settings if specialist else None
        return parse_change_settings(business_cfg, specialist_cfg)


class DbSpecialistDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_bookable(self, business_id: uuid.UUID, specialist_id: uuid.UUID) -> bool:
        specialist = await SpecialistRepository(self.session).get_for_business(business_id, specialist_id)
        return bool(specialist and specialist.active)


class JwtTokenVerifier:
    """Resolves signed manage tokens; expired or tampered tokens resolve to None."""

    def resolve(self, token: str) -> Optional[ManageGrant]:
        claims = decode_manage_token(token)
        if not claims:
            return None
        try:
            grant = ManageGrant(
                appointment_id=uuid.UUID(claims["sub"]),
                business_id=uuid.UUID(claims["bid"]),
                expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc) if "exp" in claims else None,
            )
        except (KeyError, ValueError):
            logger.warning("Manage token with malformed claims rejected")
            return None
        return grant
