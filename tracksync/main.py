"""FastAPI application for the tracksync read-side API."""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from tracksync import __version__
from tracksync.config import Settings, get_settings
from tracksync.database import check_db_ready
from tracksync.dependencies import limiter
from tracksync.routers import health_router, status_router, sync_router, trackers_router
from tracksync.runtime import Runtime, configure_logging, create_runtime
from tracksync.tasks.scheduler import setup_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


def _bind_runtime(app: FastAPI, runtime: Runtime) -> None:
    app.state.runtime = runtime
    app.state.settings = runtime.settings
    app.state.session_maker = runtime.session_maker
    app.state.sync_engine = runtime.sync_engine
    app.state.presence = runtime.presence


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting tracksync API...")
    settings: Settings = app.state.settings

    runtime: Runtime | None = getattr(app.state, "runtime", None)
    owns_runtime = runtime is None
    if runtime is None:
        with_sync = bool(settings.weenect_username and settings.weenect_password)
        if not with_sync:
            logger.warning("Weenect credentials not configured, manual sync disabled")
        runtime = await create_runtime(settings, with_sync=with_sync)
        _bind_runtime(app, runtime)

    # Verify database is ready
    try:
        await check_db_ready(runtime.engine)
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database not ready: {e}")
        raise

    started_scheduler = False
    if app.state.start_scheduler and runtime.sync_engine is not None:
        setup_scheduler(
            runtime.sync_engine,
            settings.schedule_crontab,
            timeout_minutes=settings.scheduled_sync_timeout_minutes,
        )
        started_scheduler = True

    yield

    # Shutdown
    if started_scheduler:
        shutdown_scheduler()
    if owns_runtime:
        await runtime.close()
    logger.info("tracksync API shut down")


def create_app(
    settings: Settings | None = None,
    runtime: Runtime | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the API application.

    With a runtime the app serves from it immediately; otherwise the lifespan
    builds one from settings on startup.
    """
    if settings is None:
        settings = runtime.settings if runtime else get_settings()

    app = FastAPI(
        title="tracksync API",
        description="GPS tracker position history synced from Weenect",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.start_scheduler = start_scheduler
    if runtime is not None:
        _bind_runtime(app, runtime)

    # Add rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every HTTP request with its duration."""
        started = time.monotonic()
        response = await call_next(request)
        duration_ms = int((time.monotonic() - started) * 1000)
        client = request.client.host if request.client else "-"
        logger.debug(
            f"HTTP request: {request.method} {request.url.path} {response.status_code} "
            f"client={client} duration_ms={duration_ms}"
        )
        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unhandled exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(trackers_router, prefix="/api")
    app.include_router(status_router, prefix="/api")
    app.include_router(sync_router, prefix="/api")

    # Mount the web UI last so API routes take precedence
    web_dir = Path(settings.web_dir)
    if web_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(web_dir), html=True), name="web")
        logger.info(f"Serving web UI from {web_dir}")
    else:
        @app.get("/")
        async def root():
            """Root endpoint with API info."""
            return {
                "name": "tracksync API",
                "version": __version__,
                "docs": "/docs",
                "health": "/health",
            }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "tracksync.main:app",
        host=settings.http_host,
        port=settings.http_port,
        reload=settings.debug,
    )
