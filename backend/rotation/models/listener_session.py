from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, String, func
from sqlalchemy.orm import Mapped, mapped_column

from rotation.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ListenerSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "listener_sessions"

    session_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_heartbeat: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    last_epoch: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
