"""
Rotation scheduler — decides and commits what plays next.

Advancing from epoch N runs in three steps:
1. ``StreamState.claim(N)`` picks a single advancer; everyone else waits for it
   to settle and re-reads the new state.
2. The claimant reads the catalog (bounded, retried once), draws a song with
   ``select_next`` and, for a promoted pick, spends the artist's credit
   (bounded, reselects on a lost race, degrades to organic on ledger trouble).
3. One synchronous commit: epoch CAS on the stream state, fairness
   bookkeeping for the outgoing and incoming songs, and the sink events. There
   is no await inside it, so it either fully happens or not at all; anything
   that goes wrong before it gives the credit back. The new state row is
   written before ``advance`` returns; the rest reaches the database later.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence

from rotation.core.clock import utcnow
from rotation.core.exceptions import InvariantViolation, LedgerUnavailable, NoEligibleContent
from rotation.models.play_event import PlayEventKind
from rotation.services.play_event_sink import DecisionRecord, PlayEventSink, PlayRecord, StateRecord
from rotation.streaming.fairness import FairnessTracker
from rotation.streaming.selection import (
    Candidate,
    CatalogSong,
    RotationParams,
    Selection,
    preview,
    select_next,
)
from rotation.streaming.stream_state import IDLE, StreamSnapshot, StreamState

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    async def list_approved_songs(self) -> list[CatalogSong]: ...

    async def get_credit_balance(self, artist_id: str) -> int: ...

    async def decrement_credit(self, artist_id: str) -> bool: ...

    async def refund_credit(self, artist_id: str) -> None: ...


@dataclass(frozen=True)
class AdvanceResult:
    snapshot: StreamSnapshot
    advanced: bool
    selection: Optional[Selection] = None


@dataclass(frozen=True)
class NowPlaying:
    snapshot: StreamSnapshot
    song: Optional[CatalogSong]
    remaining_seconds: float


class RotationScheduler:
    def __init__(
        self,
        catalog: CatalogStore,
        tracker: FairnessTracker,
        state: StreamState,
        sink: PlayEventSink,
        params: RotationParams,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
        catalog_timeout: float = 2.0,
        ledger_timeout: float = 2.0,
        catalog_retry_backoff: float = 0.25,
        credit_retry_limit: int = 3,
        advance_wait_timeout: float = 5.0,
    ):
        self.catalog = catalog
        self.tracker = tracker
        self.state = state
        self.sink = sink
        self.params = params
        self.rng = rng or random.Random()
        self.clock = clock
        self.catalog_timeout = catalog_timeout
        self.ledger_timeout = ledger_timeout
        self.catalog_retry_backoff = catalog_retry_backoff
        self.credit_retry_limit = credit_retry_limit
        self.advance_wait_timeout = advance_wait_timeout
        # Catalog row of the song committed at the current epoch
        self._current_song: CatalogSong | None = None

    # ── Catalog ──────────────────────────────────────────────────────

    async def load_catalog(self) -> list[CatalogSong]:
        """Read the catalog view; one retry with backoff, then NoEligibleContent."""
        for attempt in (1, 2):
            try:
                songs = await asyncio.wait_for(
                    self.catalog.list_approved_songs(), self.catalog_timeout
                )
                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt == 1:
                    logger.warning("Catalog read failed (%s), retrying", str(e) or type(e).__name__)
                    await asyncio.sleep(self.catalog_retry_backoff)
                    continue
                logger.warning("Catalog read failed twice (%s), nothing to schedule", str(e) or type(e).__name__)
                raise NoEligibleContent("Catalog unavailable") from e

        if not songs:
            raise NoEligibleContent()
        return songs

    def playing_song(self, snapshot: StreamSnapshot) -> CatalogSong | None:
        """Details of the song committed at ``snapshot``, if this process knows them."""
        song = self._current_song
        if song is None or song.id != snapshot.song_id:
            return None
        return song

    # ── Queries ──────────────────────────────────────────────────────

    async def current_track(self) -> NowPlaying:
        """Current song, advancing first when nothing is playing or it has run out."""
        snapshot = self.state.current()
        now = self.clock()
        if snapshot.is_idle:
            snapshot = (await self.advance(snapshot.epoch)).snapshot
        elif snapshot.remaining_seconds(now) <= 0:
            snapshot = (await self.advance(snapshot.epoch, PlayEventKind.COMPLETED)).snapshot

        return NowPlaying(snapshot, self.playing_song(snapshot), max(0.0, snapshot.remaining_seconds(self.clock())))

    async def upcoming(self, limit: int = 10) -> list[Candidate]:
        songs = await self.load_catalog()
        now = self.clock()
        current_id = self.state.current().song_id
        songs = [s for s in songs if s.id != current_id]
        return preview(songs, self.tracker.window_snapshot(now), now, self.params, limit)

    # ── Advancement ──────────────────────────────────────────────────

    async def advance_if_due(self) -> AdvanceResult | None:
        """Called by the background loop: start playback or replace a finished song."""
        snapshot = self.state.current()
        if snapshot.is_idle:
            return await self.advance(snapshot.epoch)
        if snapshot.remaining_seconds(self.clock()) <= 0:
            return await self.advance(snapshot.epoch, PlayEventKind.COMPLETED)
        return None

    async def force_advance(self) -> AdvanceResult:
        """Admin skip. The outgoing song gets no play or skip recorded."""
        return await self.advance(self.state.current().epoch)

    async def advance(
        self, expected_epoch: int, outcome: PlayEventKind | None = None
    ) -> AdvanceResult:
        """Move past ``expected_epoch`` at most once, however many callers race here.

        ``outcome`` (completed/skipped) is recorded for the outgoing song by the
        winner only.
        """
        if not self.state.claim(expected_epoch):
            snapshot = await self.state.wait_settled(expected_epoch, self.advance_wait_timeout)
            return AdvanceResult(snapshot, advanced=False)

        charged_artist: str | None = None
        try:
            songs = await self.load_catalog()
            now = self.clock()
            selection = await self._choose(songs, now)
            if selection.promoted:
                charged_artist = selection.song.artist_id

            new = self._commit(expected_epoch, selection, outcome, now)
            if new is None:
                logger.warning("Epoch %d moved under a held claim; dropping selection", expected_epoch)
                return AdvanceResult(self.state.current(), advanced=False)

            charged_artist = None
            logger.info(
                "Epoch %d: now playing %s (%s, weight %.2f, %d competing)",
                new.epoch, selection.song.id, selection.reason.value,
                selection.weight, selection.competing,
            )
            # Saved before returning so a restart never hands this epoch out again
            await self._persist_state(StateRecord(new, selection.song))
            return AdvanceResult(new, advanced=True, selection=selection)
        except InvariantViolation:
            logger.error("Invariant violated while advancing epoch %d", expected_epoch, exc_info=True)
            raise
        finally:
            if charged_artist is not None:
                await self._refund(charged_artist)
            self.state.release(expected_epoch)

    async def _choose(self, songs: Sequence[CatalogSong], now: datetime) -> Selection:
        fairness = self.tracker.window_snapshot(now)
        working = list(songs)
        exclude: set[str] = set()

        for _ in range(self.credit_retry_limit):
            selection = select_next(working, fairness, now, self.rng, self.params, frozenset(exclude))
            if selection is None:
                break
            if not selection.promoted:
                return selection
            artist_id = selection.song.artist_id
            try:
                if await self._spend_credit(artist_id):
                    return selection
            except LedgerUnavailable as e:
                logger.warning("Ledger unavailable (%s); organic selection this cycle", e)
                break
            logger.info("Lost credit race for artist %s, reselecting", artist_id)
            exclude.add(selection.song.id)
            working = await self._refresh_artist_credits(working, artist_id)
        else:
            logger.warning("Credit retries exhausted; organic selection this cycle")

        selection = select_next(songs, fairness, now, self.rng, self.params, allow_promoted=False)
        if selection is None:
            raise NoEligibleContent()
        return selection

    async def _spend_credit(self, artist_id: str) -> bool:
        try:
            return await asyncio.wait_for(self.catalog.decrement_credit(artist_id), self.ledger_timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            # The UPDATE may still have committed; nothing here can tell
            logger.warning(
                "Credit decrement for artist %s timed out; balance may be one short, reconcile the ledger",
                artist_id,
            )
            raise LedgerUnavailable("decrement timed out") from e
        except Exception as e:
            raise LedgerUnavailable(str(e) or type(e).__name__) from e

    async def _refresh_artist_credits(
        self, songs: list[CatalogSong], artist_id: str
    ) -> list[CatalogSong]:
        """Re-read one artist's balance after a lost race so their other songs weigh correctly."""
        try:
            balance = await asyncio.wait_for(
                self.catalog.get_credit_balance(artist_id), self.ledger_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Balance re-read for artist %s failed (%s); treating as 0 this cycle",
                artist_id, str(e) or type(e).__name__,
            )
            balance = 0
        return [
            replace(s, credits=balance) if s.artist_id == artist_id else s
            for s in songs
        ]

    async def _refund(self, artist_id: str) -> None:
        try:
            await asyncio.shield(
                asyncio.wait_for(self.catalog.refund_credit(artist_id), self.ledger_timeout)
            )
        except Exception as e:
            logger.error("Could not refund credit for artist %s: %s", artist_id, e)

    def _commit(
        self,
        expected_epoch: int,
        selection: Selection,
        outcome: PlayEventKind | None,
        now: datetime,
    ) -> StreamSnapshot | None:
        song = selection.song

        def bookkeeping(old: StreamSnapshot, new: StreamSnapshot) -> None:
            if old.song_id is not None and outcome is not None:
                if outcome == PlayEventKind.SKIPPED:
                    self.tracker.record_skip(old.song_id, now)
                else:
                    self.tracker.record_play(old.song_id, now)
            self.tracker.mark_scheduled(song.id, now)
            self._current_song = song

            if old.song_id is not None and outcome is not None:
                self.sink.emit(PlayRecord(old.song_id, old.epoch, outcome, now))
            self.sink.emit(PlayRecord(song.id, new.epoch, PlayEventKind.SCHEDULED, now))
            self.sink.emit(DecisionRecord(new.epoch, selection, now))
            self.sink.emit(StateRecord(new, song))

        return self.state.advance(
            expected_epoch, song.id, song.duration_seconds, now, on_commit=bookkeeping
        )

    async def _persist_state(self, record: StateRecord) -> None:
        try:
            await asyncio.shield(self.sink.save_state(record))
        except Exception as e:
            logger.error("Could not persist stream state at epoch %d: %s", record.snapshot.epoch, e)

    # ── Startup ──────────────────────────────────────────────────────

    async def restore(self) -> None:
        """Reload the persisted stream state and replay the fairness window.

        If play history got further than the saved state, the stream resumes
        idle at the highest epoch seen so the next song gets a fresh number.
        """
        snapshot = await self.sink.load_stream_state()
        highest = await self.sink.load_highest_epoch()
        if highest > (snapshot.epoch if snapshot is not None else 0):
            logger.warning(
                "Saved stream state is behind play history (epoch %d); resuming idle at epoch %d",
                snapshot.epoch if snapshot is not None else 0, highest,
            )
            snapshot = replace(IDLE, epoch=highest)
        if snapshot is not None:
            self.state.restore(snapshot)
            await self._restore_song_details(snapshot)

        now = self.clock()
        for song_id, at in (await self.sink.load_last_played()).items():
            self.tracker.mark_scheduled(song_id, at)

        events = await self.sink.load_history(now - self.tracker.window)
        for ev in events:
            if ev.kind == PlayEventKind.COMPLETED:
                self.tracker.record_play(ev.song_id, ev.occurred_at)
            elif ev.kind == PlayEventKind.SKIPPED:
                self.tracker.record_skip(ev.song_id, ev.occurred_at)
            else:
                self.tracker.mark_scheduled(ev.song_id, ev.occurred_at)
        logger.info("Replayed %d play event(s) into the fairness tracker", len(events))

    async def _restore_song_details(self, snapshot: StreamSnapshot) -> None:
        if snapshot.song_id is None:
            return
        try:
            songs = await self.load_catalog()
        except NoEligibleContent:
            logger.warning("Restored song %s playing without catalog details", snapshot.song_id)
            return
        self._current_song = next((s for s in songs if s.id == snapshot.song_id), None)
