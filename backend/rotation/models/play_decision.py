import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rotation.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PlayDecision(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Audit trail of why each song was put on air."""
    __tablename__ = "play_decisions"

    song_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    epoch: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    selection_reason: Mapped[str] = mapped_column(String(20), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    competing_songs: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_at_selection: Mapped[int | None] = mapped_column(Integer, nullable=True)
    selected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    song = relationship("Song", lazy="selectin")
