"""Catalog view and credit ledger backed by the songs / credit_balances tables."""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rotation.models.credit_balance import CreditBalance
from rotation.models.song import Song, SongStatus
from rotation.streaming.selection import CatalogSong

logger = logging.getLogger(__name__)

DEFAULT_DURATION = 180  # 3 minutes fallback


class SqlCatalogStore:
    """Each call opens its own short session; nothing is held between cycles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_duration: float = DEFAULT_DURATION,
    ):
        self.session_factory = session_factory
        self.default_duration = default_duration

    async def list_approved_songs(self) -> list[CatalogSong]:
        """Approved, unsuspended songs joined with their artist's credit balance."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Song, CreditBalance.balance)
                .outerjoin(CreditBalance, CreditBalance.artist_id == Song.artist_id)
                .where(
                    Song.status == SongStatus.APPROVED,
                    Song.is_suspended == False,  # noqa: E712
                )
                .order_by(Song.approved_at, Song.id)
            )
            rows = result.all()

        return [
            CatalogSong(
                id=str(song.id),
                artist_id=str(song.artist_id),
                title=song.title,
                duration_seconds=song.duration_seconds or self.default_duration,
                credits=max(balance or 0, 0),
                artist_name=song.artist_name,
                audio_url=song.audio_url,
                artwork_url=song.artwork_url,
            )
            for song, balance in rows
        ]

    async def get_credit_balance(self, artist_id: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CreditBalance.balance).where(CreditBalance.artist_id == uuid.UUID(artist_id))
            )
            return result.scalar() or 0

    async def decrement_credit(self, artist_id: str) -> bool:
        """Spend one credit. False when the balance was already zero."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(CreditBalance)
                .where(
                    CreditBalance.artist_id == uuid.UUID(artist_id),
                    CreditBalance.balance >= 1,
                )
                .values(
                    balance=CreditBalance.balance - 1,
                    total_used=CreditBalance.total_used + 1,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount == 1

    async def refund_credit(self, artist_id: str) -> None:
        """Give back a credit whose play never made it on air."""
        async with self.session_factory() as db:
            await db.execute(
                update(CreditBalance)
                .where(CreditBalance.artist_id == uuid.UUID(artist_id))
                .values(
                    balance=CreditBalance.balance + 1,
                    total_used=CreditBalance.total_used - 1,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        logger.info("Refunded one credit to artist %s", artist_id)
