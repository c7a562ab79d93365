"""Pytest configuration and fixtures."""

import uuid
from datetime import date, datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from booking_os.core.models import Base
from booking_os.core.repository import BusinessRepository, SpecialistRepository
from booking_os.observability.events import DomainEvent
from booking_os.scheduling.models import (
    Appointment,
    AppointmentStatus,
    BookingSlotsOptions,
    ClientChangeSettings,
)

BUSINESS_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
SPECIALIST_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
KYIV = "Europe/Kyiv"


# ---------------------------------------------------------------------------
# Auth override for tests: bypass get_current_business
# ---------------------------------------------------------------------------

class _MockBusiness:
    """Lightweight stand-in for the Business ORM model used in tests."""

    def __init__(self, business_id: uuid.UUID = BUSINESS_ID):
        self.id = business_id
        self.name = "Test Studio"
        self.slug = "test-studio"
        self.time_zone = KYIV
        self.settings = None
        self.active = True


def apply_auth_override(app, business_id: uuid.UUID = BUSINESS_ID):
    """Apply get_current_business override to a FastAPI test app."""
    from booking_os.api.dependencies import get_current_business

    app.dependency_overrides[get_current_business] = lambda: _MockBusiness(business_id)
    return app


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------

class FixedSettingsProvider:
    """Settings provider returning fixed values for every business."""

    def __init__(
        self,
        time_zone: str = KYIV,
        options: Optional[BookingSlotsOptions] = None,
        change_settings: Optional[ClientChangeSettings] = None,
    ):
        self.time_zone = time_zone
        self.options = options or BookingSlotsOptions()
        self.change_settings = change_settings or ClientChangeSettings()

    async def get_time_zone(self, business_id):
        return self.time_zone

    async def get_booking_options(self, business_id):
        return self.options

    async def get_change_settings(self, business_id, specialist_id=None):
        return self.change_settings


class RecordingDispatcher:
    """Event dispatcher that keeps published events in a list."""

    def __init__(self):
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


def make_appointment(
    start: datetime,
    minutes: int = 30,
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    specialist_id: uuid.UUID = SPECIALIST_ID,
) -> Appointment:
    return Appointment(
        id=uuid.uuid4(),
        business_id=BUSINESS_ID,
        specialist_id=specialist_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        status=status,
    )


def next_weekday(weekday: int, min_days_ahead: int = 2) -> date:
    """First date at least *min_days_ahead* days from today falling on *weekday*."""
    day = date.today() + timedelta(days=min_days_ahead)
    while day.weekday() != weekday:
        day += timedelta(days=1)
    return day


@pytest.fixture
def recorder():
    return RecordingDispatcher()


@pytest.fixture
def settings_provider():
    return FixedSettingsProvider()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as sess:
        yield sess


@pytest_asyncio.fixture
async def seed(session: AsyncSession):
    """A business in Kyiv with one specialist on the default Mon-Fri schedule."""
    business = await BusinessRepository(session).create(
        id=BUSINESS_ID, name="Test Studio", slug="test-studio", time_zone=KYIV
    )
    specialist = await SpecialistRepository(session).create(business.id, "Olena", id=SPECIALIST_ID)
    await session.commit()
    return {"business": business, "specialist": specialist}
