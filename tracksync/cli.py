"""Command line entry point: daemon, manual sync/backfill and status reports."""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import UTC, date, datetime

import uvicorn

from tracksync import __version__
from tracksync.config import Settings, load_settings
from tracksync.exceptions import TrackSyncError
from tracksync.runtime import configure_logging, create_runtime
from tracksync.services.store import TrackerStore
from tracksync.services.sync_engine import SyncReport
from tracksync.tasks.scheduler import setup_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}' (use YYYY-MM-DD)")


def _midnight(value: date) -> datetime:
    return datetime.combine(value, datetime.min.time(), tzinfo=UTC)


def _format_time(value: datetime | None) -> str:
    return value.isoformat() if value else "never"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracksync",
        description="GPS tracker data collection daemon for Weenect",
    )
    parser.add_argument("--config", help="path to a JSON config file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="run the scheduler and HTTP API until interrupted")

    sync_parser = subparsers.add_parser("sync-now", help="sync all trackers (or one) now")
    sync_parser.add_argument("--tracker-id", type=int, help="sync only this tracker")

    backfill_parser = subparsers.add_parser("backfill", help="fetch a historical date range")
    backfill_parser.add_argument(
        "--start-date", type=_parse_date, required=True, help="start date (YYYY-MM-DD)"
    )
    backfill_parser.add_argument(
        "--end-date", type=_parse_date, help="end date (YYYY-MM-DD), default now"
    )
    backfill_parser.add_argument("--tracker-id", type=int, help="backfill only this tracker")

    subparsers.add_parser("status", help="show database and last sync status")

    stats_parser = subparsers.add_parser("stats", help="show per-tracker position statistics")
    stats_parser.add_argument("--tracker-id", type=int, help="show only this tracker")

    subparsers.add_parser("version", help="print the version")
    return parser


async def run_daemon(settings: Settings) -> None:
    """Run scheduled syncs, and the HTTP API when enabled, until SIGINT/SIGTERM."""
    # tracksync.main builds its module-level app on import
    from tracksync.main import create_app

    runtime = await create_runtime(settings)
    try:
        setup_scheduler(
            runtime.sync_engine,
            settings.schedule_crontab,
            timeout_minutes=settings.scheduled_sync_timeout_minutes,
        )

        if settings.http_enabled:
            app = create_app(runtime=runtime, start_scheduler=False)
            config = uvicorn.Config(
                app,
                host=settings.http_host,
                port=settings.http_port,
                log_level=settings.log_level.lower(),
            )
            logger.info(f"Starting HTTP API on {settings.http_host}:{settings.http_port}")
            # uvicorn handles SIGINT/SIGTERM and returns from serve()
            await uvicorn.Server(config).serve()
        else:
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop.set)
            logger.info("Daemon running, press Ctrl+C to stop")
            await stop.wait()

        logger.info("Shutting down...")
    finally:
        shutdown_scheduler()
        await runtime.close()
    logger.info("Daemon stopped")


async def sync_now(settings: Settings, tracker_id: int | None) -> SyncReport:
    runtime = await create_runtime(settings)
    try:
        async with asyncio.timeout(settings.manual_sync_timeout_minutes * 60):
            if tracker_id is not None:
                return await runtime.sync_engine.sync_tracker(tracker_id)
            return await runtime.sync_engine.sync_all()
    finally:
        await runtime.close()


async def backfill(
    settings: Settings,
    start_date: date,
    end_date: date | None,
    tracker_id: int | None,
) -> SyncReport:
    start = _midnight(start_date)
    end = _midnight(end_date) if end_date else datetime.now(UTC)
    if start >= end:
        raise TrackSyncError("start date must be before end date")

    runtime = await create_runtime(settings)
    try:
        async with asyncio.timeout(settings.backfill_timeout_minutes * 60):
            if tracker_id is not None:
                return await runtime.sync_engine.backfill_tracker(tracker_id, start, end)
            return await runtime.sync_engine.backfill_all(start, end)
    finally:
        await runtime.close()


async def show_status(settings: Settings) -> None:
    runtime = await create_runtime(settings, with_sync=False)
    try:
        async with runtime.session_maker() as db:
            store = TrackerStore(db)
            status = await store.get_status()
            stats = await store.get_stats()
    finally:
        await runtime.close()

    print("Weenect Daemon Status")
    print("=====================\n")
    print(f"Database: {settings.database_url}")
    print(f"Trackers: {status.tracker_count}")
    print(f"Total Positions: {status.position_count}")

    if stats:
        print("\nPositions per Tracker:")
        for s in stats:
            line = f"  {s.tracker_name} (ID {s.tracker_id}): {s.position_count} positions"
            if s.last_sync:
                line += f" (last sync: {s.last_sync:%Y-%m-%d %H:%M})"
            print(line)

    print("\nLast Sync:")
    if status.last_sync_time is None:
        print("  Never synced")
    else:
        print(f"  Time: {_format_time(status.last_sync_time)}")
        print(f"  Success: {status.last_sync_success}")
        print(f"  Positions Fetched: {status.last_sync_positions}")
        if status.last_sync_error:
            print(f"  Error: {status.last_sync_error}")


async def show_stats(settings: Settings, tracker_id: int | None) -> None:
    runtime = await create_runtime(settings, with_sync=False)
    try:
        async with runtime.session_maker() as db:
            stats = await TrackerStore(db).get_stats(tracker_id)
    finally:
        await runtime.close()

    if tracker_id is not None:
        print(f"Statistics for Tracker {tracker_id}")
    else:
        print("Statistics for All Trackers")
    print("===========================\n")

    for s in stats:
        print(f"Tracker: {s.tracker_name} (ID: {s.tracker_id})")
        print(f"  Positions: {s.position_count}")
        if s.first_position:
            print(f"  First Position: {_format_time(s.first_position)}")
        if s.last_position:
            print(f"  Last Position: {_format_time(s.last_position)}")
        if s.last_sync:
            print(f"  Last Sync: {_format_time(s.last_sync)}")
        print()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "version":
        print(f"tracksync v{__version__}")
        return 0

    try:
        settings = load_settings(args.config)
        configure_logging(settings.log_level)

        if args.command == "run":
            asyncio.run(run_daemon(settings))
        elif args.command == "sync-now":
            report = asyncio.run(sync_now(settings, args.tracker_id))
            print(
                f"Sync completed: {report.positions_fetched} positions fetched, "
                f"{report.positions_stored} new"
            )
        elif args.command == "backfill":
            report = asyncio.run(
                backfill(settings, args.start_date, args.end_date, args.tracker_id)
            )
            print(
                f"Backfill completed: {report.positions_fetched} positions fetched, "
                f"{report.positions_stored} new"
            )
        elif args.command == "status":
            asyncio.run(show_status(settings))
        elif args.command == "stats":
            asyncio.run(show_stats(settings, args.tracker_id))
    except TimeoutError:
        logger.error(f"{args.command} exceeded its deadline")
        return 1
    except TrackSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
