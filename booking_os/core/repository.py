"""CRUD repositories for the scheduling store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.core.models import (
    AppointmentDB,
    AppointmentEventDB,
    Business,
    ChangeRequestDB,
    Specialist,
)
from booking_os.scheduling.models import AppointmentStatus, ChangeRequestStatus, SpecialistSchedule
from booking_os.scheduling.schedule import (
    dump_blocked_periods,
    dump_date_overrides,
    dump_weekly_hours,
)

# PostgreSQL SQLSTATE raised when lock_timeout expires.
LOCK_NOT_AVAILABLE = "55P03"


def is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


class BusinessRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Business:
        business = Business(**kwargs)
        self.session.add(business)
        await self.session.flush()
        return business

    async def get_by_id(self, business_id: uuid.UUID) -> Optional[Business]:
        return await self.session.get(Business, business_id)

    async def get_by_slug(self, slug: str) -> Optional[Business]:
        result = await self.session.execute(select(Business).where(Business.slug == slug))
        return result.scalar_one_or_none()

    async def update_settings(self, business_id: uuid.UUID, settings: dict) -> Optional[Business]:
        business = await self.get_by_id(business_id)
        if business:
            business.settings = settings
            await self.session.flush()
        return business


class SpecialistRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, business_id: uuid.UUID, name: str, **kwargs) -> Specialist:
        if "weekly_hours" not in kwargs:
            kwargs["weekly_hours"] = dump_weekly_hours(SpecialistSchedule.default())
        specialist = Specialist(business_id=business_id, name=name, **kwargs)
        self.session.add(specialist)
        await self.session.flush()
        return specialist

    async def get_by_id(self, specialist_id: uuid.UUID) -> Optional[Specialist]:
        return await self.session.get(Specialist, specialist_id)

    async def get_for_business(
        self, business_id: uuid.UUID, specialist_id: uuid.UUID
    ) -> Optional[Specialist]:
        stmt = select(Specialist).where(
            Specialist.id == specialist_id, Specialist.business_id == business_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_business(self, business_id: uuid.UUID, active_only: bool = True) -> Sequence[Specialist]:
        stmt = select(Specialist).where(Specialist.business_id == business_id)
        if active_only:
            stmt = stmt.where(Specialist.active.is_(True))
        result = await self.session.execute(stmt.order_by(Specialist.name))
        return result.scalars().all()

    async def lock(self, specialist_id: uuid.UUID, timeout: Optional[float] = None) -> Optional[Specialist]:
        """Row-lock the specialist for the rest of the transaction.

        On PostgreSQL the wait is bounded by *timeout* seconds; see
        :func:`is_lock_timeout`. The returned row is reloaded from the database.
        """
        if timeout is not None:
            conn = await self.session.connection()
            if conn.dialect.name == "postgresql":
                await self.session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))
        stmt = (
            select(Specialist)
            .where(Specialist.id == specialist_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save_schedule(self, specialist: Specialist, schedule: SpecialistSchedule) -> Specialist:
        specialist.weekly_hours = dump_weekly_hours(schedule)
        specialist.date_overrides = dump_date_overrides(schedule)
        specialist.blocked_periods = dump_blocked_periods(schedule)
        specialist.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return specialist


class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> AppointmentDB:
        appt = AppointmentDB(**kwargs)
        self.session.add(appt)
        await self.session.flush()
        return appt

    async def get_by_id(self, appointment_id: uuid.UUID) -> Optional[AppointmentDB]:
        return await self.session.get(AppointmentDB, appointment_id)

    async def get_for_business(
        self, business_id: uuid.UUID, appointment_id: uuid.UUID
    ) -> Optional[AppointmentDB]:
        stmt = select(AppointmentDB).where(
            AppointmentDB.id == appointment_id, AppointmentDB.business_id == business_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_overlapping(
        self,
        specialist_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> Sequence[AppointmentDB]:
        """Non-cancelled appointments of a specialist intersecting ``[start, end)``.

        A coarse SQL pre-filter; the conflict detector makes the final call.
        """
        stmt = (
            select(AppointmentDB)
            .where(
                AppointmentDB.specialist_id == specialist_id,
                AppointmentDB.status != AppointmentStatus.CANCELLED.value,
                AppointmentDB.start_time < end,
                AppointmentDB.end_time > start,
            )
            .order_by(AppointmentDB.start_time)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_business(
        self,
        business_id: uuid.UUID,
        specialist_id: Optional[uuid.UUID] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[str] = None,
        limit: int = 200,
    ) -> Sequence[AppointmentDB]:
        stmt = select(AppointmentDB).where(AppointmentDB.business_id == business_id)
        if specialist_id:
            stmt = stmt.where(AppointmentDB.specialist_id == specialist_id)
        if start:
            stmt = stmt.where(AppointmentDB.start_time >= start)
        if end:
            stmt = stmt.where(AppointmentDB.start_time < end)
        if status:
            stmt = stmt.where(AppointmentDB.status == status)
        result = await self.session.execute(stmt.order_by(AppointmentDB.start_time).limit(limit))
        return result.scalars().all()

    async def update_status(self, appt: AppointmentDB, status: AppointmentStatus) -> AppointmentDB:
        appt.status = status.value
        appt.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return appt

    async def update_time(self, appt: AppointmentDB, start: datetime, end: datetime) -> AppointmentDB:
        appt.start_time = start
        appt.end_time = end
        appt.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return appt


class ChangeRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ChangeRequestDB:
        req = ChangeRequestDB(**kwargs)
        self.session.add(req)
        await self.session.flush()
        return req

    async def get_by_id(self, request_id: uuid.UUID) -> Optional[ChangeRequestDB]:
        return await self.session.get(ChangeRequestDB, request_id)

    async def get_for_business(
        self, business_id: uuid.UUID, request_id: uuid.UUID
    ) -> Optional[ChangeRequestDB]:
        stmt = select(ChangeRequestDB).where(
            ChangeRequestDB.id == request_id, ChangeRequestDB.business_id == business_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending_for_appointment(self, appointment_id: uuid.UUID) -> Optional[ChangeRequestDB]:
        stmt = select(ChangeRequestDB).where(
            ChangeRequestDB.appointment_id == appointment_id,
            ChangeRequestDB.status == ChangeRequestStatus.PENDING.value,
        )
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def get_latest_for_appointment(self, appointment_id: uuid.UUID) -> Optional[ChangeRequestDB]:
        stmt = (
            select(ChangeRequestDB)
            .where(ChangeRequestDB.appointment_id == appointment_id)
            .order_by(ChangeRequestDB.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_business(
        self,
        business_id: uuid.UUID,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> Sequence[ChangeRequestDB]:
        stmt = select(ChangeRequestDB).where(ChangeRequestDB.business_id == business_id)
        if status:
            stmt = stmt.where(ChangeRequestDB.status == status)
        result = await self.session.execute(stmt.order_by(ChangeRequestDB.created_at.desc()).limit(limit))
        return result.scalars().all()

    async def mark_decided(
        self,
        req: ChangeRequestDB,
        status: ChangeRequestStatus,
        decision_note: Optional[str],
        decided_by: str,
    ) -> ChangeRequestDB:
        req.status = status.value
        req.decision_note = decision_note
        req.decided_by = decided_by
        req.decided_at = datetime.now(timezone.utc)
        await self.session.flush()
        return req


class AppointmentEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_event(
        self,
        business_id: uuid.UUID,
        appointment_id: uuid.UUID,
        event_type: str,
        data: Optional[dict] = None,
    ) -> AppointmentEventDB:
        entry = AppointmentEventDB(
            business_id=business_id,
            appointment_id=appointment_id,
            type=event_type,
            data=data,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_appointment(self, appointment_id: uuid.UUID, limit: int = 50) -> Sequence[AppointmentEventDB]:
        stmt = (
            select(AppointmentEventDB)
            .where(AppointmentEventDB.appointment_id == appointment_id)
            .order_by(AppointmentEventDB.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
