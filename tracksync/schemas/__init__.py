"""Pydantic schemas for API responses and upstream payloads."""

from tracksync.schemas.api import (
    HeatmapResponse,
    PositionsResponse,
    StatusResponse,
    SyncLogResponse,
    SyncResult,
    TrackersResponse,
)
from tracksync.schemas.weenect import WeenectPosition, WeenectTracker

__all__ = [
    "HeatmapResponse",
    "PositionsResponse",
    "StatusResponse",
    "SyncLogResponse",
    "SyncResult",
    "TrackersResponse",
    "WeenectPosition",
    "WeenectTracker",
]
