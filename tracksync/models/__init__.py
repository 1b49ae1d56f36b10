"""Database models."""

from tracksync.models.position import Position
from tracksync.models.sync_log import SyncLog
from tracksync.models.tracker import Tracker

__all__ = [
    "Position",
    "SyncLog",
    "Tracker",
]
