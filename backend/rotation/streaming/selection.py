"""
Rotation selection: a pure weighted lottery over one catalog snapshot.

Nothing in here touches the ledger, the stream state or the clock: callers pass
the catalog view, a fairness snapshot, ``now`` and a ``random.Random``, and get
back a ``Selection``. Committing it (credit decrement, epoch swap) is the
scheduler's job, which keeps this module deterministic under a fixed seed.

Algorithm:
1. Partition into promoted (artist credits >= 1, outside the promoted
   cool-down) and organic (everything else outside the shorter organic
   cool-down).
2. Draw the promoted pool with probability ``p_promoted`` when both pools have
   songs; use whichever is non-empty otherwise. If every song is cooling down,
   the song with the oldest last-played-at wins so rotation never stalls.
3. Weight = (credits | 1) / (1 + recent skips) * recency boost, then a
   cumulative draw over candidates ordered by weight, age and song id.
"""
import enum
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from rotation.streaming.fairness import FairnessSnapshot


class SelectionReason(str, enum.Enum):
    CREDITS = "credits"
    ORGANIC = "organic"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class RotationParams:
    p_promoted: float = 0.7
    promoted_cooldown_minutes: float = 30
    organic_cooldown_minutes: float = 10
    recency_horizon_minutes: float = 240
    max_recency_boost: float = 3.0

    @property
    def promoted_cooldown(self) -> timedelta:
        return timedelta(minutes=self.promoted_cooldown_minutes)

    @property
    def organic_cooldown(self) -> timedelta:
        return timedelta(minutes=self.organic_cooldown_minutes)


@dataclass(frozen=True)
class CatalogSong:
    """Read-only view of one approved song plus its artist's credit balance."""
    id: str
    artist_id: str
    title: str
    duration_seconds: float
    credits: int = 0
    artist_name: str | None = None
    audio_url: str | None = None
    artwork_url: str | None = None


@dataclass(frozen=True)
class Candidate:
    song: CatalogSong
    reason: SelectionReason
    weight: float
    last_played_at: datetime | None


@dataclass(frozen=True)
class Selection:
    song: CatalogSong
    reason: SelectionReason
    weight: float
    competing: int

    @property
    def promoted(self) -> bool:
        return self.reason == SelectionReason.CREDITS


def _cooling(last_played_at: datetime | None, now: datetime, cooldown: timedelta) -> bool:
    return last_played_at is not None and now - last_played_at < cooldown


def recency_boost(last_played_at: datetime | None, now: datetime, params: RotationParams) -> float:
    """1.0 right after a play, growing linearly to ``max_recency_boost``."""
    if last_played_at is None:
        return params.max_recency_boost
    if params.recency_horizon_minutes <= 0:
        return params.max_recency_boost
    minutes = max(0.0, (now - last_played_at).total_seconds() / 60)
    ramp = min(1.0, minutes / params.recency_horizon_minutes)
    return 1.0 + (params.max_recency_boost - 1.0) * ramp


def partition(
    songs: Iterable[CatalogSong],
    fairness: FairnessSnapshot,
    now: datetime,
    params: RotationParams,
    allow_promoted: bool = True,
) -> tuple[list[CatalogSong], list[CatalogSong]]:
    promoted: list[CatalogSong] = []
    organic: list[CatalogSong] = []
    for song in songs:
        last = fairness.last_played_at(song.id)
        if allow_promoted and song.credits >= 1 and not _cooling(last, now, params.promoted_cooldown):
            promoted.append(song)
        elif not _cooling(last, now, params.organic_cooldown):
            organic.append(song)
    return promoted, organic


def _order_key(candidate: Candidate) -> tuple:
    last = candidate.last_played_at
    # Heaviest first; equal weights fall back to oldest play (never played first), then id
    return (
        -candidate.weight,
        last is not None,
        last.timestamp() if last is not None else 0.0,
        candidate.song.id,
    )


def rank(
    songs: Sequence[CatalogSong],
    reason: SelectionReason,
    fairness: FairnessSnapshot,
    now: datetime,
    params: RotationParams,
) -> list[Candidate]:
    """Weight every song of one pool and order them deterministically."""
    candidates = []
    for song in songs:
        stats = fairness.get(song.id)
        base = float(song.credits) if reason == SelectionReason.CREDITS else 1.0
        weight = base / (1 + stats.skips) * recency_boost(stats.last_played_at, now, params)
        candidates.append(Candidate(song, reason, weight, stats.last_played_at))
    candidates.sort(key=_order_key)
    return candidates


def weighted_draw(ranked: Sequence[Candidate], rng: random.Random) -> Candidate:
    total = sum(c.weight for c in ranked)
    if total <= 0:
        return ranked[0]
    point = rng.random() * total
    cumulative = 0.0
    for candidate in ranked:
        cumulative += candidate.weight
        if point < cumulative:
            return candidate
    return ranked[-1]


def oldest_played(songs: Sequence[CatalogSong], fairness: FairnessSnapshot) -> CatalogSong:
    def key(song: CatalogSong) -> tuple:
        last = fairness.last_played_at(song.id)
        return (last is not None, last.timestamp() if last is not None else 0.0, song.id)

    return min(songs, key=key)


def select_next(
    songs: Sequence[CatalogSong],
    fairness: FairnessSnapshot,
    now: datetime,
    rng: random.Random,
    params: RotationParams,
    exclude: frozenset[str] = frozenset(),
    allow_promoted: bool = True,
) -> Selection | None:
    """Pick the next song, or None when nothing is left after ``exclude``."""
    eligible = [s for s in songs if s.id not in exclude]
    if not eligible:
        return None

    promoted, organic = partition(eligible, fairness, now, params, allow_promoted)

    if promoted and organic:
        use_promoted = rng.random() < params.p_promoted
    else:
        use_promoted = bool(promoted)

    if use_promoted:
        pool, reason = promoted, SelectionReason.CREDITS
    elif organic:
        pool, reason = organic, SelectionReason.ORGANIC
    else:
        song = oldest_played(eligible, fairness)
        return Selection(song, SelectionReason.FALLBACK, 1.0, len(eligible))

    ranked = rank(pool, reason, fairness, now, params)
    chosen = weighted_draw(ranked, rng)
    return Selection(chosen.song, reason, chosen.weight, len(ranked))


def preview(
    songs: Sequence[CatalogSong],
    fairness: FairnessSnapshot,
    now: datetime,
    params: RotationParams,
    limit: int = 10,
) -> list[Candidate]:
    """Most likely upcoming songs: promoted pool by weight, then organic."""
    promoted, organic = partition(songs, fairness, now, params)
    ranked = rank(promoted, SelectionReason.CREDITS, fairness, now, params)
    ranked += rank(organic, SelectionReason.ORGANIC, fairness, now, params)
    if not ranked and songs:
        song = oldest_played(songs, fairness)
        ranked = [Candidate(song, SelectionReason.FALLBACK, 1.0, fairness.last_played_at(song.id))]
    return ranked[:limit]
