"""Pydantic models for Weenect API responses."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class WeenectTracker(BaseModel):
    """Tracker as listed by GET /mytracker."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""


class WeenectTrackerList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[WeenectTracker] = []
    total: int | None = None


class WeenectPosition(BaseModel):
    """GPS fix as returned by GET /mytracker/{id}/position."""

    model_config = ConfigDict(extra="ignore")

    id: str
    latitude: float
    longitude: float

    battery: int | None = None
    speed: float | None = None
    direction: int | None = None
    valid_signal: bool | None = None
    satellites: int | None = None
    gsm: int | None = None
    type: str | None = None

    last_message: datetime | None = None
    date_server: datetime | None = None
    date_tracker: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        # The API returns numeric IDs for some tracker generations
        return str(value)

    @field_validator("last_message", "date_server", "date_tracker", mode="before")
    @classmethod
    def _empty_date(cls, value):
        if value in ("", None):
            return None
        return value

    @property
    def timestamp(self) -> datetime | None:
        """Observation time: tracker clock first, then server receipt time."""
        return self.date_tracker or self.date_server or self.last_message

    def to_record(self, tracker_id: int) -> dict | None:
        """Map to `positions` column values, or None if the fix has no time."""
        timestamp = self.timestamp
        if timestamp is None:
            return None

        return {
            "id": self.id,
            "tracker_id": tracker_id,
            "timestamp": timestamp,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "battery": self.battery,
            "speed": self.speed,
            "direction": self.direction,
            "valid_signal": self.valid_signal,
            "satellites": self.satellites,
            "gsm": self.gsm,
            "type": self.type,
            "last_message": self.last_message,
            "date_server": self.date_server,
            "date_tracker": self.date_tracker,
        }
