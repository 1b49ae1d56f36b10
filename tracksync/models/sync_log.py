"""SyncLog model, one row per sync or backfill invocation."""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tracksync.database import Base, UTCDateTime


class SyncLog(Base):
    """
    Append-only record of a top-level sync operation.

    tracker_id is NULL for fleet-wide operations.
    """

    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    tracker_id: Mapped[int | None] = mapped_column(Integer, index=True)
    operation: Mapped[str] = mapped_column(String(20), nullable=False, default="sync")
    sync_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    positions_fetched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    end_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    duration_ms: Mapped[int | None] = mapped_column(Integer)

    def __repr__(self) -> str:
        return f"<SyncLog {self.id}: {self.operation} success={self.success}>"
