"""Listener sessions, refreshed by matching heartbeats and counted for analytics."""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rotation.config import settings
from rotation.core.clock import ensure_utc, utcnow
from rotation.models.listener_session import ListenerSession

logger = logging.getLogger(__name__)


class ListenerService:
    def __init__(self, db: AsyncSession, active_seconds: int | None = None):
        self.db = db
        self.active_seconds = active_seconds or settings.LISTENER_ACTIVE_SECONDS

    async def touch(
        self,
        session_key: str,
        epoch: int,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> ListenerSession:
        """Create or refresh the session for one listener."""
        now = now or utcnow()
        result = await self.db.execute(
            select(ListenerSession).where(ListenerSession.session_key == session_key)
        )
        session = result.scalar_one_or_none()

        if session:
            session.last_heartbeat = now
            session.last_epoch = epoch
            session.duration_seconds = (now - ensure_utc(session.started_at)).total_seconds()
        else:
            session = ListenerSession(
                session_key=session_key,
                started_at=now,
                last_heartbeat=now,
                last_epoch=epoch,
                duration_seconds=0,
                user_agent=user_agent[:500] if user_agent else None,
            )
            self.db.add(session)
            logger.debug("New listener session %s", session_key)
        await self.db.flush()
        return session

    async def active_count(self, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=self.active_seconds)
        result = await self.db.execute(
            select(func.count(ListenerSession.id)).where(ListenerSession.last_heartbeat >= cutoff)
        )
        return result.scalar() or 0
