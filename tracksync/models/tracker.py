"""Tracker model for remotely tracked devices."""

from datetime import datetime

from sqlalchemy import String, func
from sqlalchemy.orm import Mapped, mapped_column

from tracksync.database import Base, UTCDateTime


class Tracker(Base):
    """
    A GPS tracker known to the upstream provider.

    last_sync_timestamp is the exclusive upper bound of positions known to be
    durably stored. It only ever moves forward.
    """

    __tablename__ = "trackers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_sync_timestamp: Mapped[datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Tracker {self.id}: {self.name}>"
