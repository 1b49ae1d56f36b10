"""Pydantic schemas for API responses."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from tracksync.config import POI


class TrackerOut(BaseModel):
    """Tracker with position count."""

    id: int
    name: str
    position_count: int
    last_sync: datetime | None = None


class TrackersResponse(BaseModel):
    trackers: list[TrackerOut]


class PositionOut(BaseModel):
    """Position trimmed to what the map needs."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: datetime
    latitude: float
    longitude: float
    battery: int | None = None
    speed: float | None = None


class PositionsResponse(BaseModel):
    tracker_id: int
    start: datetime
    end: datetime
    count: int
    positions: list[PositionOut]


class Home(BaseModel):
    lat: float
    lon: float


class HistoryPoint(BaseModel):
    lat: float
    lon: float
    timestamp: datetime


class TrackerStatus(BaseModel):
    """A tracker's current state for the radar display."""

    id: int
    name: str
    color: str
    lat: float
    lon: float
    battery: int | None = None
    timestamp: datetime
    is_inside: bool | None = None
    last_flap: datetime | None = None
    history: list[HistoryPoint] = []


class StatusResponse(BaseModel):
    home: Home
    trackers: list[TrackerStatus]
    pois: list[POI]
    heatmap_days: int


class HeatmapBin(BaseModel):
    x: int
    y: int
    count: int


class HeatmapTrackerData(BaseModel):
    name: str
    color: str
    bins: list[HeatmapBin]
    max: int  # highest count in any bin, for normalization


class HeatmapResponse(BaseModel):
    resolution: int
    radius_m: float
    days: int
    trackers: dict[int, HeatmapTrackerData]


class SyncLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tracker_id: int | None = None
    operation: str
    sync_time: datetime
    positions_fetched: int
    start_date: datetime | None = None
    end_date: datetime | None = None
    success: bool
    error_message: str | None = None
    duration_ms: int | None = None


class SyncLogResponse(BaseModel):
    entries: list[SyncLogOut]


class SyncResult(BaseModel):
    """Result of a manual sync or backfill."""

    operation: str
    tracker_id: int | None = None
    positions_fetched: int
    positions_stored: int
    trackers_synced: int
    duration_ms: int
    message: str
