"""
Stream state: the single "what's playing now" record shared by all listeners.

The record is an immutable snapshot swapped by reference, so readers always
see a consistent (song, started_at, epoch) triple. ``advance`` is the only
mutator and is a compare-and-swap on the epoch. ``claim`` hands out a
per-epoch advancement token so concurrent triggers don't all run a selection;
losers wait for the claim to settle and re-read.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from rotation.core.exceptions import InvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamSnapshot:
    song_id: str | None
    started_at: datetime | None
    duration_seconds: float
    epoch: int

    @property
    def is_idle(self) -> bool:
        return self.song_id is None

    def remaining_seconds(self, now: datetime) -> float:
        if self.song_id is None or self.started_at is None:
            return 0.0
        return self.duration_seconds - (now - self.started_at).total_seconds()


IDLE = StreamSnapshot(song_id=None, started_at=None, duration_seconds=0.0, epoch=0)

CommitHook = Callable[[StreamSnapshot, StreamSnapshot], None]


class StreamState:
    """Process-wide current-track record behind a compare-and-swap interface."""

    def __init__(self, initial: StreamSnapshot = IDLE):
        self._snapshot = initial
        self._previous: StreamSnapshot | None = None
        self._lock = threading.Lock()
        self._claims: dict[int, asyncio.Event] = {}

    def current(self) -> StreamSnapshot:
        return self._snapshot

    def previous(self) -> StreamSnapshot | None:
        """The snapshot that was current right before the last advance."""
        return self._previous

    def remaining_time(self, now: datetime) -> float:
        return self._snapshot.remaining_seconds(now)

    def advance(
        self,
        expected_epoch: int,
        song_id: str,
        duration_seconds: float,
        at: datetime,
        on_commit: CommitHook | None = None,
    ) -> StreamSnapshot | None:
        """Swap in a new current song if the epoch is still ``expected_epoch``.

        Returns the new snapshot, or None when another advancer got there
        first. ``on_commit`` runs inside the critical section before the swap;
        if it raises, the state is left untouched.
        """
        with self._lock:
            current = self._snapshot
            if current.epoch != expected_epoch:
                if expected_epoch > current.epoch:
                    raise InvariantViolation(
                        f"advance from epoch {expected_epoch} but state is at {current.epoch}"
                    )
                return None
            new = StreamSnapshot(
                song_id=song_id,
                started_at=at,
                duration_seconds=duration_seconds,
                epoch=current.epoch + 1,
            )
            if on_commit is not None:
                on_commit(current, new)
            self._previous = current
            self._snapshot = new
            return new

    def restore(self, snapshot: StreamSnapshot) -> None:
        """Load a persisted snapshot at startup. The epoch may never go back."""
        with self._lock:
            if snapshot.epoch < self._snapshot.epoch:
                raise InvariantViolation(
                    f"restore to epoch {snapshot.epoch} behind live epoch {self._snapshot.epoch}"
                )
            self._snapshot = snapshot
        logger.info("Stream state restored at epoch %d (song %s)", snapshot.epoch, snapshot.song_id)

    # ── Advancement arbitration ──────────────────────────────────────

    def claim(self, epoch: int) -> bool:
        """Become the sole advancer for ``epoch``. False if it is taken or stale."""
        with self._lock:
            if epoch != self._snapshot.epoch or epoch in self._claims:
                return False
            self._claims[epoch] = asyncio.Event()
            return True

    def release(self, epoch: int) -> None:
        with self._lock:
            event = self._claims.pop(epoch, None)
        if event is not None:
            event.set()

    def is_claimed(self, epoch: int) -> bool:
        return epoch in self._claims

    async def wait_settled(self, epoch: int, timeout: float) -> StreamSnapshot:
        """Wait (bounded) for whoever holds ``epoch`` to finish, then re-read."""
        event = self._claims.get(epoch)
        if event is not None:
            try:
                await asyncio.wait_for(event.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Advance for epoch %d still pending after %.1fs", epoch, timeout)
        return self._snapshot
