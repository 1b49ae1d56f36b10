"""API routes for trackers and their position history."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tracksync.database import get_db
from tracksync.schemas.api import PositionOut, PositionsResponse, TrackerOut, TrackersResponse
from tracksync.services.store import TrackerStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["trackers"])

DEFAULT_POSITION_WINDOW = timedelta(days=7)


def _parse_rfc3339(value: str, field: str) -> datetime:
    """Parse an RFC3339 timestamp, assuming UTC when no offset is given."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field} date format (use RFC3339)",
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@router.get("/trackers", response_model=TrackersResponse)
async def list_trackers(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TrackersResponse:
    """List all trackers with their position counts and last checkpoint."""
    rows = await TrackerStore(db).list_trackers()
    return TrackersResponse(
        trackers=[
            TrackerOut(
                id=tracker.id,
                name=tracker.name,
                position_count=count,
                last_sync=tracker.last_sync_timestamp,
            )
            for tracker, count in rows
        ]
    )


@router.get("/positions/{tracker_id}", response_model=PositionsResponse)
async def get_positions(
    tracker_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    start: str | None = Query(None, description="Range start (RFC3339), default 7 days ago"),
    end: str | None = Query(None, description="Range end (RFC3339), default now"),
) -> PositionsResponse:
    """Positions of one tracker within a time range, oldest first."""
    store = TrackerStore(db)
    if not await store.tracker_exists(tracker_id):
        raise HTTPException(status_code=404, detail="Tracker not found")

    now = datetime.now(UTC)
    start_time = _parse_rfc3339(start, "start") if start else now - DEFAULT_POSITION_WINDOW
    end_time = _parse_rfc3339(end, "end") if end else now

    positions = await store.get_positions(tracker_id, start_time, end_time)

    return PositionsResponse(
        tracker_id=tracker_id,
        start=start_time,
        end=end_time,
        count=len(positions),
        positions=[PositionOut.model_validate(p) for p in positions],
    )
