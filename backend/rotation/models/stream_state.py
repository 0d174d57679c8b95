"""
StreamStateRecord: durable mirror of the in-memory stream state.
Restored at startup so the epoch keeps increasing across restarts.
"""
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rotation.db.base import Base, TimestampMixin

STREAM_STATE_ROW_ID = 1


class StreamStateRecord(TimestampMixin, Base):
    __tablename__ = "stream_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=STREAM_STATE_ROW_ID)
    song_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    epoch: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
