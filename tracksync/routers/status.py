"""Radar status and heatmap endpoints."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tracksync.config import Settings
from tracksync.database import get_db
from tracksync.dependencies import get_app_settings, get_presence
from tracksync.exceptions import StorageError
from tracksync.schemas.api import (
    HeatmapBin,
    HeatmapResponse,
    HeatmapTrackerData,
    HistoryPoint,
    Home,
    StatusResponse,
    TrackerStatus,
)
from tracksync.services.geo import latlon_to_radar_bin, tracker_color
from tracksync.services.presence import PresenceService
from tracksync.services.store import TrackerStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["status"])

HISTORY_WINDOW = timedelta(hours=3)
RADAR_RADIUS_M = 1000.0


@router.get("/status", response_model=StatusResponse)
async def get_status(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    presence: Annotated[PresenceService | None, Depends(get_presence)],
) -> StatusResponse:
    """
    Latest position of every tracker for the radar display.

    Includes a short history trail and, when SureHub is configured, whether
    the pet is inside according to the flap (matched by name, case-insensitive).
    """
    store = TrackerStore(db)
    latest = await store.get_latest_positions()
    pet_status = await presence.get_status() if presence else {}

    history_start = datetime.now(UTC) - HISTORY_WINDOW
    trackers: list[TrackerStatus] = []
    for p in latest:
        tracker = TrackerStatus(
            id=p.tracker_id,
            name=p.tracker_name,
            color=tracker_color(p.tracker_id),
            lat=p.latitude,
            lon=p.longitude,
            battery=p.battery,
            timestamp=p.timestamp,
        )

        try:
            recent = await store.get_recent_positions(p.tracker_id, history_start)
        except StorageError as e:
            logger.error(f"Failed to get recent positions for tracker {p.tracker_id}: {e}")
        else:
            tracker.history = [
                HistoryPoint(lat=r.latitude, lon=r.longitude, timestamp=r.timestamp)
                for r in recent
            ]

        if status := pet_status.get(p.tracker_name.lower()):
            tracker.is_inside = status.is_inside
            tracker.last_flap = status.since

        trackers.append(tracker)

    return StatusResponse(
        home=Home(lat=settings.home_lat, lon=settings.home_lon),
        trackers=trackers,
        pois=settings.pois,
        heatmap_days=settings.heatmap_days if settings.heatmap_days > 0 else 60,
    )


@router.get("/heatmap", response_model=HeatmapResponse)
async def get_heatmap(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    days: int = Query(30, ge=1, le=365),
    resolution: int = Query(100, ge=20, le=200),
) -> HeatmapResponse:
    """Per-tracker visit counts binned on the radar grid around home."""
    store = TrackerStore(db)
    since = datetime.now(UTC) - timedelta(days=days)
    positions_by_tracker = await store.get_positions_for_heatmap(since)
    names = {tracker.id: tracker.name for tracker, _ in await store.list_trackers()}

    response = HeatmapResponse(
        resolution=resolution,
        radius_m=RADAR_RADIUS_M,
        days=days,
        trackers={},
    )

    for tracker_id, positions in positions_by_tracker.items():
        bins: dict[tuple[int, int], int] = {}
        for lat, lon in positions:
            x, y = latlon_to_radar_bin(
                lat, lon, settings.home_lat, settings.home_lon, RADAR_RADIUS_M, resolution
            )
            if not (0 <= x < resolution and 0 <= y < resolution):
                continue
            bins[(x, y)] = bins.get((x, y), 0) + 1

        response.trackers[tracker_id] = HeatmapTrackerData(
            name=names.get(tracker_id, ""),
            color=tracker_color(tracker_id),
            bins=[HeatmapBin(x=x, y=y, count=count) for (x, y), count in bins.items()],
            max=max(bins.values(), default=0),
        )
        logger.debug(
            f"Heatmap data for tracker {tracker_id}: {len(positions)} positions, "
            f"{len(bins)} bins"
        )

    return response
