"""Process-wide wiring of database, upstream clients and the sync engine."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tracksync.config import Settings
from tracksync.database import create_engine, create_session_maker, init_db
from tracksync.services.presence import PresenceService, SureHubClient
from tracksync.services.rate_limiter import RateLimiter
from tracksync.services.sync_engine import SyncEngine
from tracksync.services.weenect_client import WeenectClient

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """
    Long-lived objects shared by the scheduler, the API and the CLI.

    One RateLimiter instance gates every upstream call made by this process,
    including overlapping scheduled and manual syncs.
    """

    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    rate_limiter: RateLimiter
    sync_engine: SyncEngine | None = None
    presence: PresenceService | None = None

    async def close(self) -> None:
        await self.engine.dispose()


async def create_runtime(settings: Settings, with_sync: bool = True) -> Runtime:
    """
    Open the database (creating tables if needed) and build the services.

    with_sync=False skips the upstream client, for read-only commands that run
    without credentials.
    """
    if with_sync:
        settings.require_credentials()

    engine = create_engine(settings.database_url, echo=settings.debug)
    await init_db(engine)
    session_maker = create_session_maker(engine)

    runtime = Runtime(
        settings=settings,
        engine=engine,
        session_maker=session_maker,
        rate_limiter=RateLimiter(settings.rate_limit),
    )

    if with_sync:
        client = WeenectClient(
            username=settings.weenect_username,
            password=settings.weenect_password,
            base_url=settings.weenect_base_url,
            max_retries=settings.upstream_max_retries,
            timeout=settings.upstream_timeout_seconds,
        )
        runtime.sync_engine = SyncEngine(
            session_maker,
            client,
            runtime.rate_limiter,
            backfill_start=settings.backfill_start,
        )

    if settings.surehub_enabled:
        runtime.presence = PresenceService(
            SureHubClient(
                settings.surehub_email,
                settings.surehub_password,
                base_url=settings.surehub_base_url,
                timeout=settings.upstream_timeout_seconds,
            ),
            ttl=timedelta(minutes=settings.presence_cache_minutes),
        )
        logger.info("SureHub client initialized")

    return runtime


def configure_logging(level: str = "info") -> None:
    """Configure process-wide logging at the given level name."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
