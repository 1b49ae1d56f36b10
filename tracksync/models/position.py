"""Position model for GPS fixes reported by trackers."""

from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from tracksync.database import Base, UTCDateTime


class Position(Base):
    """
    A single GPS fix.

    The primary key is the provider-assigned position ID; rows are written once
    and never updated.
    """

    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tracker_id: Mapped[int] = mapped_column(ForeignKey("trackers.id"), nullable=False)

    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    # Optional telemetry
    battery: Mapped[int | None] = mapped_column(Integer)
    speed: Mapped[float | None] = mapped_column(Float)
    direction: Mapped[int | None] = mapped_column(Integer)
    valid_signal: Mapped[bool | None] = mapped_column(Boolean)
    satellites: Mapped[int | None] = mapped_column(Integer)
    gsm: Mapped[int | None] = mapped_column(Integer)
    type: Mapped[str | None] = mapped_column(String(20))
    last_message: Mapped[datetime | None] = mapped_column(UTCDateTime())
    date_server: Mapped[datetime | None] = mapped_column(UTCDateTime())
    date_tracker: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        # Range queries by tracker and time
        Index("idx_positions_tracker_timestamp", tracker_id, timestamp),
    )

    def __repr__(self) -> str:
        return f"<Position {self.id}: tracker={self.tracker_id} at {self.timestamp}>"
