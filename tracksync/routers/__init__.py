"""API routers."""

from tracksync.routers.health import router as health_router
from tracksync.routers.status import router as status_router
from tracksync.routers.sync import router as sync_router
from tracksync.routers.trackers import router as trackers_router

__all__ = ["health_router", "status_router", "sync_router", "trackers_router"]
