"""Exception hierarchy for tracker ingestion."""


class TrackSyncError(Exception):
    """Base exception for tracksync errors."""

    pass


class ConfigurationError(TrackSyncError):
    """Missing or invalid configuration."""

    pass


class UpstreamError(TrackSyncError):
    """An upstream API call failed."""

    pass


class AuthenticationError(UpstreamError):
    """Upstream login was rejected or could not be completed."""

    pass


class StorageError(TrackSyncError):
    """A database read or write failed."""

    pass


class TrackerNotFoundError(TrackSyncError):
    """The requested tracker is unknown to the upstream provider."""

    def __init__(self, tracker_id: int):
        super().__init__(f"tracker {tracker_id} not found")
        self.tracker_id = tracker_id


class TrackerSyncError(TrackSyncError):
    """
    Syncing one tracker stopped part way through its chunks.

    Attributes:
        tracker_id: Tracker whose chunk loop was aborted
        positions: Positions fetched before the failure
        stored: Positions newly stored before the failure
    """

    def __init__(self, tracker_id: int, positions: int, message: str, stored: int = 0):
        super().__init__(message)
        self.tracker_id = tracker_id
        self.positions = positions
        self.stored = stored


class SyncFailedError(TrackSyncError):
    """A fleet-wide operation finished with one or more failed trackers."""

    def __init__(self, failed: int, positions: int):
        super().__init__(f"sync completed with {failed} errors")
        self.failed = failed
        self.positions = positions
