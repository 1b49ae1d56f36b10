"""Manual sync/backfill triggers and the operation log."""

import asyncio
import logging
from datetime import UTC, date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tracksync.config import Settings
from tracksync.database import get_db
from tracksync.dependencies import get_app_settings, get_sync_engine, limiter
from tracksync.exceptions import TrackerNotFoundError, TrackSyncError
from tracksync.schemas.api import SyncLogOut, SyncLogResponse, SyncResult
from tracksync.services.store import TrackerStore
from tracksync.services.sync_engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)
router = APIRouter(tags=["sync"])

MANUAL_SYNC_LIMIT = "10/minute"


def _to_result(report: SyncReport, message: str) -> SyncResult:
    return SyncResult(
        operation=report.operation,
        tracker_id=report.tracker_id,
        positions_fetched=report.positions_fetched,
        positions_stored=report.positions_stored,
        trackers_synced=report.trackers_synced,
        duration_ms=report.duration_ms,
        message=message,
    )


async def _run_with_deadline(coro, timeout_minutes: int) -> SyncReport:
    """Await a sync coroutine, mapping failures onto HTTP errors."""
    try:
        async with asyncio.timeout(timeout_minutes * 60):
            return await coro
    except TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f"Sync exceeded {timeout_minutes} minute deadline",
        )
    except TrackerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TrackSyncError as e:
        logger.error(f"Manual sync failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/sync", response_model=SyncResult)
@limiter.limit(MANUAL_SYNC_LIMIT)
async def trigger_sync(
    request: Request,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    tracker_id: int | None = Query(None, ge=1, description="Sync one tracker only"),
) -> SyncResult:
    """
    Manually trigger an incremental sync.

    Syncs all trackers unless tracker_id is given. Resumes from each tracker's
    checkpoint, exactly like the scheduled sync.
    """
    if tracker_id is not None:
        coro = engine.sync_tracker(tracker_id)
    else:
        coro = engine.sync_all()

    report = await _run_with_deadline(coro, settings.manual_sync_timeout_minutes)
    return _to_result(report, f"Successfully synced {report.positions_fetched} positions")


@router.post("/backfill", response_model=SyncResult)
@limiter.limit(MANUAL_SYNC_LIMIT)
async def trigger_backfill(
    request: Request,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    start_date: date = Query(..., description="Start date (YYYY-MM-DD)"),
    end_date: date | None = Query(None, description="End date (YYYY-MM-DD), default now"),
    tracker_id: int | None = Query(None, ge=1, description="Backfill one tracker only"),
) -> SyncResult:
    """
    Fetch an explicit historical range in 24 hour chunks.

    Positions already stored are skipped; checkpoints only ever move forward.
    """
    start = datetime.combine(start_date, datetime.min.time(), tzinfo=UTC)
    if end_date is not None:
        end = datetime.combine(end_date, datetime.min.time(), tzinfo=UTC)
    else:
        end = datetime.now(UTC)

    if start >= end:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")

    if tracker_id is not None:
        coro = engine.backfill_tracker(tracker_id, start, end)
    else:
        coro = engine.backfill_all(start, end)

    report = await _run_with_deadline(coro, settings.backfill_timeout_minutes)
    return _to_result(
        report,
        f"Backfilled {report.positions_fetched} positions from {start_date} to {end.date()}",
    )


@router.get("/sync-log", response_model=SyncLogResponse)
async def list_sync_log(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(20, ge=1, le=200),
) -> SyncLogResponse:
    """Most recent sync operations, newest first."""
    entries = await TrackerStore(db).get_sync_logs(limit)
    return SyncLogResponse(entries=[SyncLogOut.model_validate(e) for e in entries])
