"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from booking_os import __version__
from booking_os.core.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)) -> dict:
    """Health check including a round trip to the database."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "degraded", "service": "booking-os", "version": __version__, "database": str(e)}
    return {"status": "healthy", "service": "booking-os", "version": __version__, "database": "ok"}


@router.get("/health/live")
async def liveness_check() -> dict:
    """Liveness check - basic process health."""
    return {"status": "alive"}
