import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rotation.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PlayEventKind(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class PlayEvent(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Raw fairness history. Replayed into the tracker on startup."""
    __tablename__ = "play_events"

    song_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)
    kind: Mapped[PlayEventKind] = mapped_column(
        Enum(PlayEventKind, name="play_event_kind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
