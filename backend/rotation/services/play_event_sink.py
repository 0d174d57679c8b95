"""
Play event sink: persists what the scheduler commits, off the hot path.

``emit`` is synchronous and never blocks, so the scheduler can call it from
inside its commit critical section. A writer task drains the queue in batches
into play_events / play_decisions / stream_state and refreshes the shared
now-playing cache. The stream state row can also be written directly with
``save_state``. Startup reads (last stream state, fairness history) live
here too since they read back the same tables.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rotation.core.clock import ensure_utc
from rotation.models.play_decision import PlayDecision
from rotation.models.play_event import PlayEvent, PlayEventKind
from rotation.models.stream_state import STREAM_STATE_ROW_ID, StreamStateRecord
from rotation.streaming.now_playing_cache import NowPlayingCache
from rotation.streaming.selection import CatalogSong, Selection
from rotation.streaming.stream_state import StreamSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlayRecord:
    song_id: str
    epoch: int
    kind: PlayEventKind
    occurred_at: datetime


@dataclass(frozen=True)
class DecisionRecord:
    epoch: int
    selection: Selection
    selected_at: datetime


@dataclass(frozen=True)
class StateRecord:
    snapshot: StreamSnapshot
    song: Optional[CatalogSong] = None


SinkItem = Union[PlayRecord, DecisionRecord, StateRecord]


class PlayEventSink:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: NowPlayingCache | None = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self._queue: asyncio.Queue[SinkItem] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    def emit(self, item: SinkItem) -> None:
        self._queue.put_nowait(item)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._task is not None:
            logger.warning("Play event sink already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Play event sink started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        # Whatever is still queued gets written before shutdown
        await self.drain()
        if self.cache:
            await self.cache.close()
        logger.info("Play event sink stopped")

    async def drain(self) -> None:
        """Write everything queued right now, in the caller's task."""
        batch = self._take_batch()
        if batch:
            await self._write_batch(batch)

    def _take_batch(self) -> list[SinkItem]:
        batch = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return batch

    async def _run_loop(self) -> None:
        while True:
            first = await self._queue.get()
            batch = [first, *self._take_batch()]
            await self._write_batch(batch)

    async def _write_batch(self, batch: list[SinkItem]) -> None:
        latest_state: StateRecord | None = None
        try:
            async with self.session_factory() as db:
                for item in batch:
                    if isinstance(item, PlayRecord):
                        db.add(PlayEvent(
                            song_id=uuid.UUID(item.song_id),
                            epoch=item.epoch,
                            kind=item.kind,
                            occurred_at=item.occurred_at,
                        ))
                    elif isinstance(item, DecisionRecord):
                        sel = item.selection
                        db.add(PlayDecision(
                            song_id=uuid.UUID(sel.song.id),
                            epoch=item.epoch,
                            selection_reason=sel.reason.value,
                            weight=sel.weight,
                            competing_songs=sel.competing,
                            credits_at_selection=sel.song.credits,
                            selected_at=item.selected_at,
                        ))
                    else:
                        latest_state = item
                if latest_state is not None:
                    await self._save_state(db, latest_state.snapshot)
                await db.commit()
        except Exception as e:
            logger.error("Failed to persist %d play event(s): %s", len(batch), e, exc_info=True)
            return

        if latest_state is not None and self.cache is not None:
            try:
                await self.cache.set_now_playing(_cache_payload(latest_state))
            except Exception as e:
                logger.warning("Now-playing cache update failed: %s", e)

    async def save_state(self, record: StateRecord) -> None:
        """Write the stream state row now, bypassing the queue."""
        async with self.session_factory() as db:
            await self._save_state(db, record.snapshot)
            await db.commit()

    async def _save_state(self, db: AsyncSession, snapshot: StreamSnapshot) -> None:
        record = await db.get(StreamStateRecord, STREAM_STATE_ROW_ID)
        if record is None:
            record = StreamStateRecord(id=STREAM_STATE_ROW_ID)
            db.add(record)
        elif record.epoch > snapshot.epoch:
            return
        record.song_id = uuid.UUID(snapshot.song_id) if snapshot.song_id else None
        record.started_at = snapshot.started_at
        record.duration_seconds = snapshot.duration_seconds
        record.epoch = snapshot.epoch

    # ── Startup reads ────────────────────────────────────────────────

    async def load_stream_state(self) -> StreamSnapshot | None:
        async with self.session_factory() as db:
            record = await db.get(StreamStateRecord, STREAM_STATE_ROW_ID)
            if record is None:
                return None
            return StreamSnapshot(
                song_id=str(record.song_id) if record.song_id else None,
                started_at=ensure_utc(record.started_at),
                duration_seconds=record.duration_seconds,
                epoch=record.epoch,
            )

    async def load_highest_epoch(self) -> int:
        """Highest epoch any play event or decision was written for (0 if none)."""
        async with self.session_factory() as db:
            events = (await db.execute(select(func.max(PlayEvent.epoch)))).scalar()
            decisions = (await db.execute(select(func.max(PlayDecision.epoch)))).scalar()
            return max(events or 0, decisions or 0)

    async def load_history(self, since: datetime) -> list[PlayRecord]:
        """Play events inside the fairness window, oldest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PlayEvent)
                .where(PlayEvent.occurred_at >= since)
                .order_by(PlayEvent.occurred_at, PlayEvent.epoch)
            )
            return [
                PlayRecord(
                    song_id=str(ev.song_id),
                    epoch=ev.epoch,
                    kind=ev.kind,
                    occurred_at=ensure_utc(ev.occurred_at),
                )
                for ev in result.scalars().all()
            ]

    async def load_last_played(self) -> dict[str, datetime]:
        """Most recent scheduled start per song, including ones older than the window."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PlayEvent.song_id, func.max(PlayEvent.occurred_at))
                .where(PlayEvent.kind == PlayEventKind.SCHEDULED)
                .group_by(PlayEvent.song_id)
            )
            return {str(song_id): ensure_utc(at) for song_id, at in result.all()}

    async def recent_decisions(self, limit: int = 50) -> list[PlayDecision]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PlayDecision).order_by(PlayDecision.epoch.desc()).limit(limit)
            )
            return list(result.scalars().all())


def _cache_payload(state: StateRecord) -> dict:
    snap = state.snapshot
    payload = {
        "song_id": snap.song_id,
        "epoch": snap.epoch,
        "started_at": snap.started_at.isoformat() if snap.started_at else None,
        "duration_seconds": snap.duration_seconds,
    }
    if state.song is not None:
        payload.update({
            "title": state.song.title,
            "artist_name": state.song.artist_name,
            "audio_url": state.song.audio_url,
            "artwork_url": state.song.artwork_url,
        })
    return payload
