import uuid

from sqlalchemy import CheckConstraint, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rotation.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CreditBalance(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Promotional credits an artist has left. One credit buys one promoted play."""
    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_balances_non_negative"),
    )

    artist_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True, index=True)
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
