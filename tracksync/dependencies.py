"""FastAPI dependencies and the shared request limiter."""

from fastapi import HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from tracksync.config import Settings
from tracksync.services.presence import PresenceService
from tracksync.services.sync_engine import SyncEngine

# Rate limiter for API requests (not upstream calls)
limiter = Limiter(key_func=get_remote_address)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_presence(request: Request) -> PresenceService | None:
    return getattr(request.app.state, "presence", None)


def get_sync_engine(request: Request) -> SyncEngine:
    engine: SyncEngine | None = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync is not configured")
    return engine
