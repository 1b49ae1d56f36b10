"""Health and readiness endpoints."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tracksync.database import get_db
from tracksync.services.store import TrackerStore

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    tracker_count: int
    position_count: int
    last_sync: datetime | None = None
    last_sync_success: bool | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthResponse:
    """
    Health check endpoint with ingestion status.

    Returns counts and the outcome of the most recent sync operation.
    """
    status = await TrackerStore(db).get_status()

    return HealthResponse(
        status="ok",
        timestamp=datetime.now(UTC),
        tracker_count=status.tracker_count,
        position_count=status.position_count,
        last_sync=status.last_sync_time,
        last_sync_success=status.last_sync_success,
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Simple readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict:
    """Simple liveness check for container orchestration."""
    return {"status": "alive"}
