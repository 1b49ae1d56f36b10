"""Services for position ingestion and upstream access."""

from tracksync.services.rate_limiter import RateLimiter
from tracksync.services.store import TrackerStore
from tracksync.services.sync_engine import SyncEngine, SyncReport
from tracksync.services.weenect_client import WeenectClient

__all__ = ["RateLimiter", "SyncEngine", "SyncReport", "TrackerStore", "WeenectClient"]
