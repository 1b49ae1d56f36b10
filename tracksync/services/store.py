"""Persistent store for trackers, positions and the sync log."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tracksync.exceptions import StorageError
from tracksync.models import Position, SyncLog, Tracker

logger = logging.getLogger(__name__)


@dataclass
class StatusInfo:
    """Overall daemon status."""

    tracker_count: int
    position_count: int
    last_sync_time: datetime | None = None
    last_sync_success: bool | None = None
    last_sync_positions: int = 0
    last_sync_error: str | None = None


@dataclass
class TrackerStats:
    """Per-tracker position statistics."""

    tracker_id: int
    tracker_name: str
    position_count: int
    first_position: datetime | None
    last_position: datetime | None
    last_sync: datetime | None


@dataclass
class LatestPosition:
    """Most recent fix of a tracker, joined with its name."""

    tracker_id: int
    tracker_name: str
    latitude: float
    longitude: float
    battery: int | None
    timestamp: datetime


class TrackerStore:
    """
    Durable storage on top of an AsyncSession.

    Writes commit immediately so that progress survives interruption. Every
    database error is rolled back and re-raised as StorageError.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _guard(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"{action} failed: {e}") from e

    def _insert(self, model):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if self.db.get_bind().dialect.name == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def upsert_tracker(self, tracker_id: int, name: str) -> None:
        """Create the tracker, or update its name. Never touches the checkpoint."""
        async with self._guard(f"upsert tracker {tracker_id}"):
            stmt = self._insert(Tracker).values(id=tracker_id, name=name)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={"name": stmt.excluded.name, "updated_at": func.now()},
            )
            await self.db.execute(stmt)
            await self.db.commit()

    async def advance_checkpoint(self, tracker_id: int, sync_time: datetime) -> bool:
        """
        Move the tracker checkpoint forward to sync_time.

        The update is conditional: a value at or below the stored checkpoint is
        ignored, so overlapping runs can never move it backwards.

        Returns:
            True if the checkpoint moved, False if it was already at or past sync_time
        """
        async with self._guard(f"advance checkpoint for tracker {tracker_id}"):
            result = await self.db.execute(
                update(Tracker)
                .where(Tracker.id == tracker_id)
                .where(
                    or_(
                        Tracker.last_sync_timestamp.is_(None),
                        Tracker.last_sync_timestamp < sync_time,
                    )
                )
                .values(last_sync_timestamp=sync_time, updated_at=func.now())
            )
            await self.db.commit()

            if result.rowcount:
                return True

        if not await self.tracker_exists(tracker_id):
            raise StorageError(f"advance checkpoint failed: tracker {tracker_id} does not exist")
        return False

    async def insert_position(self, record: dict[str, Any]) -> bool:
        """
        Insert a position unless one with the same ID already exists.

        Returns:
            True if a new row was written
        """
        inserted = await self.insert_positions([record])
        return inserted == 1

    async def insert_positions(self, records: list[dict[str, Any]]) -> int:
        """
        Insert positions in one transaction, ignoring already stored IDs.

        First write wins: an existing row is never updated.

        Returns:
            Number of new rows written
        """
        if not records:
            return 0

        inserted = 0
        async with self._guard(f"insert {len(records)} positions"):
            for values in records:
                stmt = self._insert(Position).values(**values).on_conflict_do_nothing(
                    index_elements=["id"]
                )
                result = await self.db.execute(stmt)
                inserted += max(result.rowcount, 0)
            await self.db.commit()

        return inserted

    async def add_sync_log(
        self,
        *,
        sync_time: datetime,
        success: bool,
        positions_fetched: int,
        operation: str = "sync",
        tracker_id: int | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        error_message: str | None = None,
        duration_ms: int | None = None,
    ) -> SyncLog:
        """Append an operation log entry."""
        entry = SyncLog(
            tracker_id=tracker_id,
            operation=operation,
            sync_time=sync_time,
            positions_fetched=positions_fetched,
            start_date=start_date,
            end_date=end_date,
            success=success,
            error_message=error_message,
            duration_ms=duration_ms,
        )
        async with self._guard("insert sync log"):
            self.db.add(entry)
            await self.db.commit()
        return entry

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_tracker(self, tracker_id: int) -> Tracker | None:
        async with self._guard(f"get tracker {tracker_id}"):
            result = await self.db.execute(select(Tracker).where(Tracker.id == tracker_id))
            return result.scalar_one_or_none()

    async def tracker_exists(self, tracker_id: int) -> bool:
        async with self._guard(f"check tracker {tracker_id}"):
            result = await self.db.execute(select(Tracker.id).where(Tracker.id == tracker_id))
            return result.first() is not None

    async def list_trackers(self) -> list[tuple[Tracker, int]]:
        """All trackers ordered by name, with their position counts."""
        async with self._guard("list trackers"):
            result = await self.db.execute(
                select(Tracker, func.count(Position.id))
                .outerjoin(Position, Position.tracker_id == Tracker.id)
                .group_by(Tracker.id)
                .order_by(Tracker.name)
            )
            return [(tracker, count) for tracker, count in result.all()]

    async def get_status(self) -> StatusInfo:
        async with self._guard("get status"):
            tracker_count = (await self.db.execute(select(func.count(Tracker.id)))).scalar() or 0
            position_count = (
                await self.db.execute(select(func.count(Position.id)))
            ).scalar() or 0

            result = await self.db.execute(
                select(SyncLog).order_by(SyncLog.sync_time.desc(), SyncLog.id.desc()).limit(1)
            )
            last = result.scalar_one_or_none()

        status = StatusInfo(tracker_count=tracker_count, position_count=position_count)
        if last:
            status.last_sync_time = last.sync_time
            status.last_sync_success = last.success
            status.last_sync_positions = last.positions_fetched
            status.last_sync_error = last.error_message
        return status

    async def get_stats(self, tracker_id: int | None = None) -> list[TrackerStats]:
        """Position statistics for one tracker, or all trackers when tracker_id is None."""
        query = (
            select(
                Tracker.id,
                Tracker.name,
                func.count(Position.id),
                func.min(Position.timestamp),
                func.max(Position.timestamp),
                Tracker.last_sync_timestamp,
            )
            .outerjoin(Position, Position.tracker_id == Tracker.id)
            .group_by(Tracker.id)
            .order_by(Tracker.name)
        )
        if tracker_id is not None:
            query = query.where(Tracker.id == tracker_id)

        async with self._guard("get stats"):
            result = await self.db.execute(query)
            rows = result.all()

        return [
            TrackerStats(
                tracker_id=row[0],
                tracker_name=row[1],
                position_count=row[2],
                first_position=row[3],
                last_position=row[4],
                last_sync=row[5],
            )
            for row in rows
        ]

    async def get_positions(
        self, tracker_id: int, start: datetime, end: datetime
    ) -> list[Position]:
        """Positions of a tracker with start <= timestamp <= end, oldest first."""
        async with self._guard(f"get positions for tracker {tracker_id}"):
            result = await self.db.execute(
                select(Position)
                .where(
                    Position.tracker_id == tracker_id,
                    Position.timestamp >= start,
                    Position.timestamp <= end,
                )
                .order_by(Position.timestamp)
            )
            return list(result.scalars().all())

    async def get_latest_positions(self) -> list[LatestPosition]:
        """Most recent position of every tracker that has one, ordered by tracker name."""
        latest = (
            select(
                Position.tracker_id,
                func.max(Position.timestamp).label("max_ts"),
            )
            .group_by(Position.tracker_id)
            .subquery()
        )
        query = (
            select(Position, Tracker.name)
            .join(Tracker, Tracker.id == Position.tracker_id)
            .join(
                latest,
                (latest.c.tracker_id == Position.tracker_id)
                & (latest.c.max_ts == Position.timestamp),
            )
            .order_by(Tracker.name, Position.id)
        )

        async with self._guard("get latest positions"):
            result = await self.db.execute(query)
            rows = result.all()

        latest_by_tracker: dict[int, LatestPosition] = {}
        for position, name in rows:
            # Two fixes can share the newest timestamp; keep one per tracker
            latest_by_tracker.setdefault(
                position.tracker_id,
                LatestPosition(
                    tracker_id=position.tracker_id,
                    tracker_name=name,
                    latitude=position.latitude,
                    longitude=position.longitude,
                    battery=position.battery,
                    timestamp=position.timestamp,
                ),
            )
        return list(latest_by_tracker.values())

    async def get_recent_positions(self, tracker_id: int, since: datetime) -> list[Position]:
        """Positions of a tracker newer than `since`, oldest first."""
        async with self._guard(f"get recent positions for tracker {tracker_id}"):
            result = await self.db.execute(
                select(Position)
                .where(Position.tracker_id == tracker_id, Position.timestamp >= since)
                .order_by(Position.timestamp)
            )
            return list(result.scalars().all())

    async def get_positions_for_heatmap(
        self, since: datetime
    ) -> dict[int, list[tuple[float, float]]]:
        """(latitude, longitude) pairs per tracker since the given time."""
        async with self._guard("get heatmap positions"):
            result = await self.db.execute(
                select(Position.tracker_id, Position.latitude, Position.longitude).where(
                    Position.timestamp >= since
                )
            )
            rows = result.all()

        by_tracker: dict[int, list[tuple[float, float]]] = {}
        for tracker_id, lat, lon in rows:
            by_tracker.setdefault(tracker_id, []).append((lat, lon))
        return by_tracker

    async def get_sync_logs(self, limit: int = 20) -> list[SyncLog]:
        """Most recent operation log entries, newest first."""
        async with self._guard("get sync logs"):
            result = await self.db.execute(
                select(SyncLog).order_by(SyncLog.sync_time.desc(), SyncLog.id.desc()).limit(limit)
            )
            return list(result.scalars().all())
