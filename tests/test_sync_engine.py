"""Tests for the chunked fetch-store-checkpoint engine."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tracksync.exceptions import (
    AuthenticationError,
    StorageError,
    SyncFailedError,
    TrackerNotFoundError,
    TrackerSyncError,
    UpstreamError,
)
from tracksync.services.rate_limiter import RateLimiter
from tracksync.services.store import TrackerStore
from tracksync.services.sync_engine import SyncEngine

CHECKPOINT = datetime(2024, 1, 10, tzinfo=UTC)
DAY = timedelta(days=1)


async def checkpoint_of(session_maker, tracker_id: int) -> datetime | None:
    async with session_maker() as db:
        tracker = await TrackerStore(db).get_tracker(tracker_id)
        return tracker.last_sync_timestamp if tracker else None


async def sync_logs(session_maker):
    async with session_maker() as db:
        return await TrackerStore(db).get_sync_logs(limit=50)


async def seed_tracker(session_maker, tracker_id: int, name: str, checkpoint: datetime | None):
    async with session_maker() as db:
        store = TrackerStore(db)
        await store.upsert_tracker(tracker_id, name)
        if checkpoint is not None:
            await store.advance_checkpoint(tracker_id, checkpoint)


class TestIncrementalSync:
    """Tests for resuming from checkpoints."""

    @pytest.mark.asyncio
    async def test_sync_from_checkpoint_in_day_chunks(
        self, sync_engine, session_maker, provider, hourly_positions, now
    ):
        """Checkpoint 01-10, now 01-12 06:00: three chunks, checkpoint lands on now."""
        provider.trackers = provider.trackers[:1]
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)

        report = await sync_engine.sync_tracker(42)

        assert provider.calls == [
            (42, CHECKPOINT, CHECKPOINT + DAY),
            (42, CHECKPOINT + DAY, CHECKPOINT + 2 * DAY),
            (42, CHECKPOINT + 2 * DAY, now),
        ]
        assert report.positions_fetched == 24 + 24 + 6
        assert report.positions_stored == 54
        assert await checkpoint_of(session_maker, 42) == now

        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is True
        assert logs[0].positions_fetched == 54
        assert logs[0].tracker_id == 42
        assert logs[0].start_date == CHECKPOINT
        assert logs[0].end_date == now

    @pytest.mark.asyncio
    async def test_rerun_stores_nothing_new(
        self, sync_engine, session_maker, provider, hourly_positions, now
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        await seed_tracker(session_maker, 7, "Luna", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 30)

        first = await sync_engine.sync_all()
        second = await sync_engine.sync_all()

        assert first.positions_stored == 30
        assert second.positions_stored == 0
        assert second.positions_fetched == 0
        assert await checkpoint_of(session_maker, 42) == now
        assert len(await sync_logs(session_maker)) == 2

    @pytest.mark.asyncio
    async def test_redelivered_positions_are_not_duplicated(
        self, session_maker, provider, position_factory, now
    ):
        """A position served again in a later run is stored once."""
        await seed_tracker(session_maker, 42, "Felix", now - timedelta(hours=2))
        provider.trackers = provider.trackers[:1]
        fix = position_factory("dup", now - timedelta(hours=1))
        provider.positions[42] = [fix]

        engine = SyncEngine(session_maker, provider, RateLimiter(1000), clock=lambda: now)
        await engine.sync_all()
        report = await engine.backfill_tracker(42, now - DAY, now)

        assert report.positions_fetched == 1
        assert report.positions_stored == 0

    @pytest.mark.asyncio
    async def test_never_synced_tracker_starts_at_backfill_floor(
        self, session_maker, provider, now
    ):
        provider.trackers = provider.trackers[:1]
        engine = SyncEngine(
            session_maker,
            provider,
            RateLimiter(1000),
            backfill_start=now - 2 * DAY,
            clock=lambda: now,
        )

        await engine.sync_all()

        assert provider.calls[0][1] == now - 2 * DAY
        assert len(provider.calls) == 2
        assert await checkpoint_of(session_maker, 42) == now

    @pytest.mark.asyncio
    async def test_never_synced_tracker_without_floor_looks_back_one_day(
        self, sync_engine, provider, now
    ):
        provider.trackers = provider.trackers[:1]

        await sync_engine.sync_all()

        assert provider.calls == [(42, now - DAY, now)]

    @pytest.mark.asyncio
    async def test_positions_without_timestamp_are_skipped(
        self, sync_engine, session_maker, provider, position_factory, now
    ):
        provider.trackers = provider.trackers[:1]
        provider.positions[42] = [position_factory("ok", now - timedelta(hours=1))]
        untimed = position_factory("untimed", now, date_tracker=None)
        original = provider.get_positions

        async def with_untimed(tracker_id, start, end):
            return await original(tracker_id, start, end) + [untimed]

        provider.get_positions = with_untimed

        report = await sync_engine.sync_all()

        assert report.positions_fetched == 2
        assert report.positions_stored == 1

    @pytest.mark.asyncio
    async def test_reads_during_sync_see_committed_chunks(
        self, sync_engine, session_maker, provider, hourly_positions, now
    ):
        """API-style reads on another session run between chunks without blocking the sync."""
        provider.trackers = provider.trackers[:1]
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        counts = []
        latest = []

        async def read_status(tracker_id, start, end):
            async with session_maker() as db:
                store = TrackerStore(db)
                counts.append((await store.get_status()).position_count)
                latest.append([p.timestamp for p in await store.get_latest_positions()])

        provider.before_fetch = read_status

        report = await sync_engine.sync_tracker(42)

        assert report.positions_stored == 54
        assert counts == [0, 24, 48]
        assert latest == [
            [],
            [CHECKPOINT + timedelta(hours=23)],
            [CHECKPOINT + timedelta(hours=47)],
        ]
        assert await checkpoint_of(session_maker, 42) == now


class TestFailures:
    """Tests for partial failure, authentication failure and cancellation."""

    @pytest.mark.asyncio
    async def test_failing_tracker_does_not_stop_others(
        self, sync_engine, session_maker, provider, hourly_positions, now
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        await seed_tracker(session_maker, 7, "Luna", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        provider.positions[7] = hourly_positions("luna", CHECKPOINT, 54)
        # Felix fails on its second chunk
        provider.failures[(42, CHECKPOINT + DAY)] = UpstreamError("HTTP 500")

        with pytest.raises(SyncFailedError) as exc_info:
            await sync_engine.sync_all()

        assert exc_info.value.failed == 1
        assert await checkpoint_of(session_maker, 42) == CHECKPOINT + DAY
        assert await checkpoint_of(session_maker, 7) == now
        # Felix made no call past the failed chunk
        assert (42, CHECKPOINT + 2 * DAY, now) not in provider.calls

        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].tracker_id is None
        assert logs[0].error_message == "1 trackers failed"
        # 24 from Felix's first chunk plus all 54 of Luna's
        assert logs[0].positions_fetched == 24 + 54

    @pytest.mark.asyncio
    async def test_failed_tracker_resumes_next_run(
        self, sync_engine, session_maker, provider, hourly_positions, now
    ):
        provider.trackers = provider.trackers[:1]
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        provider.failures[(42, CHECKPOINT + DAY)] = UpstreamError("timeout")

        with pytest.raises(SyncFailedError):
            await sync_engine.sync_all()

        provider.failures.clear()
        provider.calls.clear()
        report = await sync_engine.sync_all()

        assert provider.calls[0] == (42, CHECKPOINT + DAY, CHECKPOINT + 2 * DAY)
        assert report.positions_stored == 30
        assert await checkpoint_of(session_maker, 42) == now

    @pytest.mark.asyncio
    async def test_checkpoint_observed_between_chunks_never_decreases(
        self, sync_engine, session_maker, provider, now
    ):
        provider.trackers = provider.trackers[:1]
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        observed = []

        async def record_checkpoint(tracker_id, start, end):
            observed.append(await checkpoint_of(session_maker, tracker_id))

        provider.before_fetch = record_checkpoint
        await sync_engine.sync_tracker(42)
        observed.append(await checkpoint_of(session_maker, 42))

        assert observed == [CHECKPOINT, CHECKPOINT + DAY, CHECKPOINT + 2 * DAY, now]

    @pytest.mark.asyncio
    async def test_backfill_of_old_range_keeps_checkpoint(
        self, sync_engine, session_maker, provider, hourly_positions
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        old_start = CHECKPOINT - 10 * DAY
        provider.positions[42] = hourly_positions("old", old_start, 48)

        report = await sync_engine.backfill_tracker(42, old_start, old_start + 2 * DAY)

        assert report.positions_stored == 48
        assert await checkpoint_of(session_maker, 42) == CHECKPOINT

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure_isolates_tracker(
        self, sync_engine, session_maker, provider, hourly_positions, now, monkeypatch
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        await seed_tracker(session_maker, 7, "Luna", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        provider.positions[7] = hourly_positions("luna", CHECKPOINT, 54)
        original = TrackerStore.advance_checkpoint

        async def fail_felix_second_chunk(self, tracker_id, sync_time):
            if tracker_id == 42 and sync_time == CHECKPOINT + 2 * DAY:
                raise StorageError("disk full")
            return await original(self, tracker_id, sync_time)

        monkeypatch.setattr(TrackerStore, "advance_checkpoint", fail_felix_second_chunk)

        with pytest.raises(SyncFailedError) as exc_info:
            await sync_engine.sync_all()

        assert exc_info.value.failed == 1
        assert await checkpoint_of(session_maker, 42) == CHECKPOINT + DAY
        assert (42, CHECKPOINT + 2 * DAY, now) not in provider.calls
        assert await checkpoint_of(session_maker, 7) == now

        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_message == "1 trackers failed"
        assert logs[0].positions_fetched == 24 + 54

    @pytest.mark.asyncio
    async def test_position_write_failure_keeps_checkpoint(
        self, sync_engine, session_maker, provider, hourly_positions, monkeypatch
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        original = TrackerStore.insert_positions
        writes = []

        async def fail_second_write(self, records):
            writes.append(len(records))
            if len(writes) == 2:
                raise StorageError("database is locked")
            return await original(self, records)

        monkeypatch.setattr(TrackerStore, "insert_positions", fail_second_write)

        with pytest.raises(TrackerSyncError) as exc_info:
            await sync_engine.sync_tracker(42)

        assert isinstance(exc_info.value.__cause__, StorageError)
        assert await checkpoint_of(session_maker, 42) == CHECKPOINT + DAY
        assert len(provider.calls) == 2
        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is False
        assert "database is locked" in logs[0].error_message

    @pytest.mark.asyncio
    async def test_failure_carries_positions_stored_before_it(
        self, sync_engine, session_maker, provider, hourly_positions
    ):
        provider.trackers = provider.trackers[:1]
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        provider.failures[(42, CHECKPOINT + 2 * DAY)] = UpstreamError("HTTP 500")

        with pytest.raises(TrackerSyncError) as exc_info:
            await sync_engine.sync_tracker(42)

        assert exc_info.value.positions == 48
        assert exc_info.value.stored == 48

    @pytest.mark.asyncio
    async def test_fleet_report_counts_stored_positions_of_failed_tracker(
        self, sync_engine, session_maker, provider, hourly_positions, monkeypatch
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        await seed_tracker(session_maker, 7, "Luna", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)
        provider.positions[7] = hourly_positions("luna", CHECKPOINT, 54)
        provider.failures[(42, CHECKPOINT + DAY)] = UpstreamError("HTTP 500")
        reports = []
        original = sync_engine._record

        async def capture(report, sync_time, error):
            reports.append(report)
            await original(report, sync_time, error)

        monkeypatch.setattr(sync_engine, "_record", capture)

        with pytest.raises(SyncFailedError):
            await sync_engine.sync_all()

        assert reports[0].positions_fetched == 24 + 54
        assert reports[0].positions_stored == 24 + 54

    @pytest.mark.asyncio
    async def test_single_tracker_failure_propagates(
        self, sync_engine, session_maker, provider
    ):
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.failures[(42, CHECKPOINT)] = UpstreamError("HTTP 502")

        with pytest.raises(TrackerSyncError) as exc_info:
            await sync_engine.sync_tracker(42)

        assert isinstance(exc_info.value.__cause__, UpstreamError)
        assert await checkpoint_of(session_maker, 42) == CHECKPOINT
        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is False
        assert "HTTP 502" in logs[0].error_message

    @pytest.mark.asyncio
    async def test_auth_failure_writes_one_log_entry(self, sync_engine, session_maker, provider):
        provider.login_error = AuthenticationError("bad credentials")

        with pytest.raises(AuthenticationError):
            await sync_engine.sync_all()

        assert provider.calls == []
        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_message == "bad credentials"

    @pytest.mark.asyncio
    async def test_tracker_list_failure_writes_one_log_entry(
        self, sync_engine, session_maker, provider
    ):
        provider.list_error = UpstreamError("HTTP 503")

        with pytest.raises(UpstreamError):
            await sync_engine.backfill_all(CHECKPOINT, CHECKPOINT + DAY)

        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].operation == "backfill"
        assert logs[0].success is False

    @pytest.mark.asyncio
    async def test_cancellation_keeps_completed_chunks(
        self, sync_engine, session_maker, provider, hourly_positions
    ):
        provider.trackers = provider.trackers[:1]
        await seed_tracker(session_maker, 42, "Felix", CHECKPOINT)
        provider.positions[42] = hourly_positions("felix", CHECKPOINT, 54)

        async def stall_on_third_chunk(tracker_id, start, end):
            if start == CHECKPOINT + 2 * DAY:
                await asyncio.sleep(10)

        provider.before_fetch = stall_on_third_chunk

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.5):
                await sync_engine.sync_all()

        assert await checkpoint_of(session_maker, 42) == CHECKPOINT + 2 * DAY
        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_message == "cancelled"


class TestSingleTracker:
    """Tests for single-tracker operations."""

    @pytest.mark.asyncio
    async def test_unknown_local_tracker_is_registered(self, sync_engine, session_maker, now):
        report = await sync_engine.sync_tracker(7)

        assert report.trackers_synced == 1
        async with session_maker() as db:
            tracker = await TrackerStore(db).get_tracker(7)
        assert tracker.name == "Luna"
        assert tracker.last_sync_timestamp == now

    @pytest.mark.asyncio
    async def test_tracker_unknown_upstream(self, sync_engine, session_maker):
        with pytest.raises(TrackerNotFoundError):
            await sync_engine.backfill_tracker(999, CHECKPOINT, CHECKPOINT + DAY)

        logs = await sync_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].tracker_id == 999
        assert logs[0].success is False
