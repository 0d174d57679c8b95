import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rotation.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SongStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Song(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "songs"

    artist_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    artist_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    artwork_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[SongStatus] = mapped_column(
        Enum(SongStatus, name="song_status", values_callable=lambda e: [m.value for m in e]),
        default=SongStatus.PENDING,
        nullable=False,
        index=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Moderation can pull a song from rotation without rejecting it
    is_suspended: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
