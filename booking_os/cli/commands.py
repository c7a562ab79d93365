"""CLI commands for BookingOS."""

import asyncio
import json
import uuid
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os.config import get_settings

app = typer.Typer(
    name="booking-os",
    help="Multi-tenant appointment scheduling engine",
    add_completion=False,
)
console = Console()

T = TypeVar("T")


def _run(work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run *work* in a fresh session, commit, and release the engine."""
    from booking_os.core.database import _get_engine, get_session_factory

    async def runner() -> T:
        try:
            async with get_session_factory()() as session:
                result = await work(session)
                await session.commit()
                return result
        finally:
            await _get_engine().dispose()

    return asyncio.run(runner())


def _parse_uuid(value: str, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {name}: {value}[/red]")
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: int = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(f"Starting BookingOS API server on {host}:{port}")
    uvicorn.run(
        "booking_os.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def init_db():
    """Create database tables."""
    from booking_os.core.database import _get_engine
    from booking_os.core.database import init_db as create_tables

    async def runner():
        try:
            await create_tables()
        finally:
            await _get_engine().dispose()

    asyncio.run(runner())
    console.print("[green]Database tables ready.[/green]")


@app.command()
def create_business(
    name: str = typer.Argument(..., help="Business name"),
    slug: Optional[str] = typer.Option(None, "--slug", help="Unique URL slug"),
    time_zone: Optional[str] = typer.Option(None, "--tz", help="IANA time zone, e.g. Europe/Kyiv"),
    settings_file: Optional[typer.FileText] = typer.Option(
        None, "--settings", help="JSON settings document (bookingSlots, clientChangeRequests)"
    ),
):
    """Create a business and print its id."""
    from booking_os.core.repository import BusinessRepository

    doc = json.load(settings_file) if settings_file else None

    async def work(session: AsyncSession):
        business = await BusinessRepository(session).create(
            name=name, slug=slug, time_zone=time_zone, settings=doc
        )
        return business.id

    business_id = _run(work)
    console.print(f"[green]Created business[/green] {business_id}")


@app.command()
def create_specialist(
    business_id: str = typer.Argument(..., help="Owning business id"),
    name: str = typer.Argument(..., help="Specialist name"),
):
    """Create a specialist with the default Mon-Fri 09:00-18:00 schedule."""
    from booking_os.core.repository import BusinessRepository, SpecialistRepository

    bid = _parse_uuid(business_id, "business id")

    async def work(session: AsyncSession):
        if await BusinessRepository(session).get_by_id(bid) is None:
            return None
        specialist = await SpecialistRepository(session).create(bid, name)
        return specialist.id

    specialist_id = _run(work)
    if specialist_id is None:
        console.print(f"[red]Business not found: {business_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Created specialist[/green] {specialist_id}")


@app.command()
def slots(
    business_id: str = typer.Argument(..., help="Business id"),
    specialist_id: str = typer.Argument(..., help="Specialist id"),
    day: str = typer.Option(None, "--date", "-d", help="Local date (YYYY-MM-DD), default today"),
    duration: int = typer.Option(30, "--duration", help="Duration in minutes"),
):
    """Show bookable slots for a specialist on a date."""
    from booking_os.scheduling.providers import DbBusinessSettingsProvider
    from booking_os.scheduling.service import AvailabilityService, utc_to_slot_key

    settings = get_settings()
    bid = _parse_uuid(business_id, "business id")
    sid = _parse_uuid(specialist_id, "specialist id")
    try:
        target = date.fromisoformat(day) if day else date.today()
    except ValueError:
        console.print(f"[red]Invalid date: {day}[/red]")
        raise typer.Exit(1)

    async def work(session: AsyncSession):
        provider = DbBusinessSettingsProvider(session, settings.default_time_zone, settings.slot_step_minutes)
        service = AvailabilityService(
            session,
            provider,
            min_duration_minutes=settings.min_duration_minutes,
            max_duration_minutes=settings.max_duration_minutes,
        )
        return await service.compute_available_slots(bid, sid, target, duration)

    try:
        result = _run(work)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not result.slots:
        reason = result.reason.value if result.reason else "no slots left"
        console.print(f"[yellow]No slots on {target}: {reason}[/yellow]")
        return

    table = Table(title=f"Slots on {target} ({result.time_zone}, {duration} min)")
    table.add_column("Local")
    table.add_column("UTC")
    for start in result.slots:
        table.add_row(utc_to_slot_key(start, result.time_zone), start.isoformat())
    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@app.command()
def manage_link(
    appointment_id: str = typer.Argument(..., help="Appointment id"),
    days: int = typer.Option(None, "--days", help="Validity in days"),
):
    """Issue a client manage token for an appointment."""
    from booking_os.core.auth import create_manage_token
    from booking_os.core.repository import AppointmentRepository

    aid = _parse_uuid(appointment_id, "appointment id")

    async def work(session: AsyncSession):
        appt = await AppointmentRepository(session).get_by_id(aid)
        return appt.business_id if appt else None

    business_id = _run(work)
    if business_id is None:
        console.print(f"[red]Appointment not found: {appointment_id}[/red]")
        raise typer.Exit(1)

    token = create_manage_token(aid, business_id, timedelta(days=days) if days else None)
    typer.echo(token)


@app.command()
def version():
    """Show version information."""
    from booking_os import __version__

    console.print(f"BookingOS v{__version__}")
