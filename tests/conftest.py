"""Pytest fixtures for tracksync tests."""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tracksync.config import Settings
from tracksync.database import create_engine, create_session_maker, init_db
from tracksync.dependencies import limiter
from tracksync.main import create_app
from tracksync.runtime import Runtime
from tracksync.schemas.weenect import WeenectPosition, WeenectTracker
from tracksync.services.rate_limiter import RateLimiter
from tracksync.services.store import TrackerStore
from tracksync.services.sync_engine import SyncEngine


class FakeProvider:
    """
    In-memory stand-in for the Weenect API.

    Positions are served per tracker, filtered to the requested [start, end).
    `failures` maps (tracker_id, chunk_start) to an exception raised for that
    chunk; `login_error` fails authentication.
    """

    def __init__(self, trackers: list[WeenectTracker] | None = None):
        self.trackers = trackers or []
        self.positions: dict[int, list[WeenectPosition]] = {}
        self.failures: dict[tuple[int, datetime], Exception] = {}
        self.login_error: Exception | None = None
        self.list_error: Exception | None = None
        self.before_fetch: Callable[[int, datetime, datetime], Any] | None = None
        self.calls: list[tuple[int, datetime, datetime]] = []
        self.logins = 0

    async def login(self) -> None:
        self.logins += 1
        if self.login_error:
            raise self.login_error

    async def get_trackers(self) -> list[WeenectTracker]:
        if self.list_error:
            raise self.list_error
        return list(self.trackers)

    async def get_positions(
        self, tracker_id: int, start: datetime, end: datetime
    ) -> list[WeenectPosition]:
        self.calls.append((tracker_id, start, end))
        if self.before_fetch:
            await self.before_fetch(tracker_id, start, end)
        if error := self.failures.get((tracker_id, start)):
            raise error
        return [
            p
            for p in self.positions.get(tracker_id, [])
            if start <= p.timestamp < end
        ]


def make_position(position_id: str, timestamp: datetime, **fields) -> WeenectPosition:
    values = {
        "id": position_id,
        "latitude": 48.8566,
        "longitude": 2.3522,
        "date_tracker": timestamp,
        "battery": 80,
    }
    values.update(fields)
    return WeenectPosition(**values)


@pytest.fixture
def now() -> datetime:
    """Fixed 'current time' for engine tests."""
    return datetime(2024, 1, 12, 6, 0, 0, tzinfo=UTC)


@pytest.fixture
def position_factory() -> Callable[..., WeenectPosition]:
    return make_position


@pytest.fixture
def hourly_positions() -> Callable[[str, datetime, int], list[WeenectPosition]]:
    """Build `count` positions one hour apart starting at `start`."""

    def build(prefix: str, start: datetime, count: int) -> list[WeenectPosition]:
        return [
            make_position(f"{prefix}-{i}", start + timedelta(hours=i)) for i in range(count)
        ]

    return build


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Test settings with safe defaults."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tracksync.db'}",
        weenect_username="user@example.com",
        weenect_password="secret",
        backfill_start_date=None,
        home_lat=48.8566,
        home_lon=2.3522,
        pois=[{"name": "Vet", "lat": 48.86, "lon": 2.35}],
        web_dir=str(tmp_path / "web"),
        _env_file=None,
    )


@pytest_asyncio.fixture
async def async_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """On-disk SQLite database per test, schema created."""
    engine = create_engine(test_settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> TrackerStore:
    return TrackerStore(db_session)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(
        [
            WeenectTracker(id=42, name="Felix"),
            WeenectTracker(id=7, name="Luna"),
        ]
    )


@pytest.fixture
def sync_engine(session_maker, provider: FakeProvider, now: datetime) -> SyncEngine:
    return SyncEngine(
        session_maker,
        provider,
        RateLimiter(rate=1000),
        backfill_start=None,
        clock=lambda: now,
    )


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    async_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
    sync_engine: SyncEngine,
) -> AsyncGenerator[AsyncClient, None]:
    """Test HTTP client bound to the test database and engine."""
    runtime = Runtime(
        settings=test_settings,
        engine=async_engine,
        session_maker=session_maker,
        rate_limiter=sync_engine.rate_limiter,
        sync_engine=sync_engine,
    )
    app = create_app(runtime=runtime, start_scheduler=False)
    limiter.reset()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
