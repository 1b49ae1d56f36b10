"""
Chunked fetch-store-checkpoint engine for tracker positions.

For each tracker the engine resolves a time range (resume point or explicit
backfill range), splits it into chunks no longer than the upstream 24 hour
limit and, strictly in order, for each chunk:

1. waits for the shared rate limiter,
2. fetches the chunk's positions,
3. stores them idempotently (duplicate position IDs are ignored),
4. advances the tracker checkpoint to the chunk end.

A failing chunk aborts that tracker's remaining chunks. Checkpoints written
for earlier chunks are kept, so the next invocation resumes after them.
Nothing is retried here: retries are the next scheduled or manual run.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracksync.exceptions import (
    StorageError,
    SyncFailedError,
    TrackerNotFoundError,
    TrackerSyncError,
    UpstreamError,
)
from tracksync.schemas.weenect import WeenectPosition, WeenectTracker
from tracksync.services.chunker import chunk_range
from tracksync.services.rate_limiter import RateLimiter
from tracksync.services.store import TrackerStore

logger = logging.getLogger(__name__)

# Start point for a never-synced tracker when no backfill floor is configured
DEFAULT_LOOKBACK = timedelta(days=1)


class TelemetryProvider(Protocol):
    """Upstream capability consumed by the engine (see WeenectClient)."""

    async def login(self) -> None: ...

    async def get_trackers(self) -> list[WeenectTracker]: ...

    async def get_positions(
        self, tracker_id: int, start: datetime, end: datetime
    ) -> list[WeenectPosition]: ...


@dataclass
class SyncReport:
    """Outcome of one top-level sync or backfill invocation."""

    operation: str
    tracker_id: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    positions_fetched: int = 0
    positions_stored: int = 0
    trackers_synced: int = 0
    trackers_failed: int = 0
    duration_ms: int = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.CancelledError):
        return "cancelled"
    return str(error) or type(error).__name__


class SyncEngine:
    """
    Orchestrates incremental syncs and backfills.

    Trackers and their chunks are processed sequentially. The engine keeps no
    state between invocations: every run re-reads checkpoints from the store.
    Each top-level call writes exactly one sync_log entry, whatever the outcome.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        client: TelemetryProvider,
        rate_limiter: RateLimiter,
        backfill_start: datetime | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_maker = session_maker
        self.client = client
        self.rate_limiter = rate_limiter
        self.backfill_start = _as_utc(backfill_start) if backfill_start else None
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def sync_all(self) -> SyncReport:
        """Incrementally sync every tracker on the account."""
        logger.info("Starting sync for all trackers")
        return await self._run_fleet(SyncReport(operation="sync"))

    async def sync_tracker(self, tracker_id: int) -> SyncReport:
        """Incrementally sync one tracker."""
        logger.info(f"Starting sync for tracker {tracker_id}")
        return await self._run_single(
            tracker_id, SyncReport(operation="sync", tracker_id=tracker_id)
        )

    async def backfill_all(self, start: datetime, end: datetime) -> SyncReport:
        """Fetch [start, end) for every tracker on the account."""
        start, end = _as_utc(start), _as_utc(end)
        logger.info(f"Starting backfill for all trackers: {start} to {end}")
        return await self._run_fleet(SyncReport(operation="backfill", start=start, end=end))

    async def backfill_tracker(
        self, tracker_id: int, start: datetime, end: datetime
    ) -> SyncReport:
        """Fetch [start, end) for one tracker."""
        start, end = _as_utc(start), _as_utc(end)
        logger.info(f"Starting backfill for tracker {tracker_id}: {start} to {end}")
        return await self._run_single(
            tracker_id,
            SyncReport(operation="backfill", tracker_id=tracker_id, start=start, end=end),
        )

    # ------------------------------------------------------------------
    # Operation runners
    # ------------------------------------------------------------------

    async def _run_fleet(self, report: SyncReport) -> SyncReport:
        sync_time = self._clock()
        started = time.monotonic()
        error: str | None = None

        try:
            async with self.session_maker() as db:
                store = TrackerStore(db)
                await self._authenticate()
                trackers = await self._list_trackers()
                logger.info(f"Found {len(trackers)} trackers")

                for tracker in trackers:
                    try:
                        await store.upsert_tracker(tracker.id, tracker.name)
                        fetched, stored = await self._sync_one(
                            store, tracker.id, report.start, report.end
                        )
                    except TrackerSyncError as e:
                        report.trackers_failed += 1
                        report.positions_fetched += e.positions
                        report.positions_stored += e.stored
                        logger.error(f"Failed to sync tracker {tracker.id}: {e}")
                        continue
                    except StorageError as e:
                        report.trackers_failed += 1
                        logger.error(f"Failed to upsert tracker {tracker.id}: {e}")
                        continue

                    report.trackers_synced += 1
                    report.positions_fetched += fetched
                    report.positions_stored += stored
                    logger.info(
                        f"Synced tracker {tracker.id} ({tracker.name}): "
                        f"{fetched} positions, {stored} new"
                    )

            if report.trackers_failed:
                error = f"{report.trackers_failed} trackers failed"
        except BaseException as e:
            error = _describe(e)
            raise
        finally:
            report.duration_ms = int((time.monotonic() - started) * 1000)
            await self._record(report, sync_time, error)

        logger.info(
            f"Sync completed in {report.duration_ms}ms: {report.trackers_synced} ok, "
            f"{report.trackers_failed} failed, {report.positions_fetched} positions"
        )
        if report.trackers_failed:
            raise SyncFailedError(report.trackers_failed, report.positions_fetched)
        return report

    async def _run_single(self, tracker_id: int, report: SyncReport) -> SyncReport:
        sync_time = self._clock()
        started = time.monotonic()
        error: str | None = None

        try:
            async with self.session_maker() as db:
                store = TrackerStore(db)
                await self._authenticate()
                await self._ensure_tracker(store, tracker_id)

                if report.start is None or report.end is None:
                    report.start, report.end = await self._resolve_range(store, tracker_id)

                fetched, stored = await self._fetch_and_store(
                    store, tracker_id, report.start, report.end
                )
                report.positions_fetched = fetched
                report.positions_stored = stored
                report.trackers_synced = 1
        except BaseException as e:
            error = _describe(e)
            report.trackers_failed = 1
            if isinstance(e, TrackerSyncError):
                report.positions_fetched = e.positions
                report.positions_stored = e.stored
            raise
        finally:
            report.duration_ms = int((time.monotonic() - started) * 1000)
            await self._record(report, sync_time, error)

        logger.info(
            f"Sync completed for tracker {tracker_id}: {report.positions_fetched} positions "
            f"in {report.duration_ms}ms"
        )
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _authenticate(self) -> None:
        await self.rate_limiter.acquire()
        await self.client.login()

    async def _list_trackers(self) -> list[WeenectTracker]:
        await self.rate_limiter.acquire()
        return await self.client.get_trackers()

    async def _ensure_tracker(self, store: TrackerStore, tracker_id: int) -> None:
        """Make sure the tracker row exists, registering it from the upstream list."""
        if await store.tracker_exists(tracker_id):
            return

        logger.debug(f"Tracker {tracker_id} not in database, looking it up upstream")
        for tracker in await self._list_trackers():
            if tracker.id == tracker_id:
                await store.upsert_tracker(tracker.id, tracker.name)
                return

        raise TrackerNotFoundError(tracker_id)

    async def _resolve_range(
        self, store: TrackerStore, tracker_id: int
    ) -> tuple[datetime, datetime]:
        """Incremental range: from the checkpoint (or backfill floor) up to now."""
        end = _as_utc(self._clock())
        tracker = await store.get_tracker(tracker_id)

        if tracker is not None and tracker.last_sync_timestamp is not None:
            start = tracker.last_sync_timestamp
        elif self.backfill_start is not None:
            logger.debug(f"Tracker {tracker_id} never synced, starting at backfill date")
            start = self.backfill_start
        else:
            start = end - DEFAULT_LOOKBACK

        return start, end

    async def _sync_one(
        self,
        store: TrackerStore,
        tracker_id: int,
        start: datetime | None,
        end: datetime | None,
    ) -> tuple[int, int]:
        if start is None or end is None:
            try:
                start, end = await self._resolve_range(store, tracker_id)
            except StorageError as e:
                raise TrackerSyncError(tracker_id, 0, f"tracker {tracker_id}: {e}") from e
        return await self._fetch_and_store(store, tracker_id, start, end)

    async def _fetch_and_store(
        self,
        store: TrackerStore,
        tracker_id: int,
        start: datetime,
        end: datetime,
    ) -> tuple[int, int]:
        """
        Run the chunk loop for one tracker.

        Returns:
            Tuple of (positions fetched, positions newly stored)

        Raises:
            TrackerSyncError: A chunk failed; carries the counts fetched and stored before it
        """
        chunks = chunk_range(start, end)
        logger.debug(
            f"Fetching positions for tracker {tracker_id}: {start} to {end} "
            f"({len(chunks)} chunks)"
        )

        fetched = 0
        stored = 0
        for chunk in chunks:
            logger.debug(f"Fetching chunk for tracker {tracker_id}: {chunk.start} to {chunk.end}")
            try:
                await self.rate_limiter.acquire()
                positions = await self.client.get_positions(tracker_id, chunk.start, chunk.end)

                records = []
                for position in positions:
                    record = position.to_record(tracker_id)
                    if record is None:
                        logger.warning(f"Skipping position {position.id} without timestamp")
                        continue
                    records.append(record)

                inserted = await store.insert_positions(records)
                await store.advance_checkpoint(tracker_id, chunk.end)
            except (UpstreamError, StorageError) as e:
                raise TrackerSyncError(
                    tracker_id, fetched, f"tracker {tracker_id}: {e}", stored=stored
                ) from e

            fetched += len(positions)
            stored += inserted
            logger.debug(f"Updated sync timestamp for tracker {tracker_id}: {chunk.end}")

        return fetched, stored

    async def _record(self, report: SyncReport, sync_time: datetime, error: str | None) -> None:
        """Write the operation log entry in its own session."""
        try:
            async with self.session_maker() as db:
                await TrackerStore(db).add_sync_log(
                    tracker_id=report.tracker_id,
                    operation=report.operation,
                    sync_time=sync_time,
                    positions_fetched=report.positions_fetched,
                    start_date=report.start,
                    end_date=report.end,
                    success=error is None,
                    error_message=error,
                    duration_ms=report.duration_ms,
                )
        except StorageError as e:
            logger.error(f"Failed to log sync: {e}")
