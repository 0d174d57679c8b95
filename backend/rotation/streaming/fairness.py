"""
Fairness tracker: per-song play/skip history over a trailing window.

Raw timestamped entries are kept per song; counts are restricted to the
fairness window when a snapshot is taken, so no background sweep is needed.
Entries older than the window are pruned whenever the song is written to.
"""
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass
class PlayHistoryEntry:
    song_id: str
    last_played_at: datetime | None = None
    plays: deque = field(default_factory=deque)
    skips: deque = field(default_factory=deque)


@dataclass(frozen=True)
class SongFairness:
    """Windowed view of one song's history."""
    last_played_at: datetime | None
    plays: int
    skips: int


class FairnessSnapshot:
    """Immutable read-only view returned by ``FairnessTracker.window_snapshot``."""

    def __init__(self, taken_at: datetime, songs: dict[str, SongFairness]):
        self.taken_at = taken_at
        self._songs = songs

    def get(self, song_id: str) -> SongFairness:
        return self._songs.get(song_id) or SongFairness(None, 0, 0)

    def last_played_at(self, song_id: str) -> datetime | None:
        return self.get(song_id).last_played_at

    def __contains__(self, song_id: str) -> bool:
        return song_id in self._songs

    def __len__(self) -> int:
        return len(self._songs)


class FairnessTracker:
    """Thread-safe ledger of recent plays and skips per song."""

    def __init__(self, window: timedelta):
        if window <= timedelta(0):
            raise ValueError("fairness window must be positive")
        self.window = window
        self._entries: dict[str, PlayHistoryEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, song_id: str) -> PlayHistoryEntry:
        entry = self._entries.get(song_id)
        if entry is None:
            entry = PlayHistoryEntry(song_id=song_id)
            self._entries[song_id] = entry
        return entry

    def _prune(self, entry: PlayHistoryEntry, now: datetime) -> None:
        cutoff = now - self.window
        for bucket in (entry.plays, entry.skips):
            while bucket and bucket[0] < cutoff:
                bucket.popleft()

    @staticmethod
    def _append(bucket: deque, at: datetime) -> None:
        # Keep buckets sorted; replayed events may arrive slightly out of order
        if not bucket or bucket[-1] <= at:
            bucket.append(at)
            return
        items = sorted([*bucket, at])
        bucket.clear()
        bucket.extend(items)

    def mark_scheduled(self, song_id: str, at: datetime) -> None:
        """Stamp last-played-at for a song that just became current."""
        with self._lock:
            entry = self._entry(song_id)
            if entry.last_played_at is None or at > entry.last_played_at:
                entry.last_played_at = at
            self._prune(entry, at)

    def record_play(self, song_id: str, at: datetime) -> None:
        with self._lock:
            entry = self._entry(song_id)
            if entry.last_played_at is None or at > entry.last_played_at:
                entry.last_played_at = at
            self._append(entry.plays, at)
            self._prune(entry, at)

    def record_skip(self, song_id: str, at: datetime) -> None:
        """Count a skip. last-played-at is left alone so the cool-down still
        runs from when the song started; an unseen song starts its cool-down now."""
        with self._lock:
            entry = self._entry(song_id)
            if entry.last_played_at is None:
                entry.last_played_at = at
            self._append(entry.skips, at)
            self._prune(entry, at)

    def window_snapshot(self, now: datetime) -> FairnessSnapshot:
        cutoff = now - self.window
        with self._lock:
            songs = {
                song_id: SongFairness(
                    last_played_at=entry.last_played_at,
                    plays=sum(1 for t in entry.plays if cutoff <= t <= now),
                    skips=sum(1 for t in entry.skips if cutoff <= t <= now),
                )
                for song_id, entry in self._entries.items()
            }
        return FairnessSnapshot(now, songs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
