import asyncio
import random
from datetime import timedelta

import pytest

from rotation.core.exceptions import NoEligibleContent
from rotation.models.play_event import PlayEventKind
from rotation.services.catalog_service import SqlCatalogStore
from rotation.services.play_event_sink import PlayEventSink, PlayRecord, StateRecord
from rotation.services.rotation_scheduler import RotationScheduler
from rotation.streaming.fairness import FairnessTracker
from rotation.streaming.selection import RotationParams, SelectionReason
from rotation.streaming.stream_state import StreamSnapshot, StreamState

from fakes import FakeCatalog, MemorySink, song


def make_scheduler(catalog, clock, params=None, sink=None, **kwargs) -> RotationScheduler:
    kwargs.setdefault("catalog_retry_backoff", 0.0)
    return RotationScheduler(
        catalog,
        FairnessTracker(timedelta(hours=6)),
        StreamState(),
        sink or MemorySink(),
        params or RotationParams(),
        rng=random.Random(1234),
        clock=clock,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_first_advance_starts_playback(clock):
    catalog = FakeCatalog([song("a"), song("b")])
    scheduler = make_scheduler(catalog, clock)

    result = await scheduler.advance(0)

    assert result.advanced
    assert result.snapshot.epoch == 1
    assert result.snapshot.song_id in {"a", "b"}
    assert result.snapshot.started_at == clock.now
    assert scheduler.tracker.window_snapshot(clock.now).last_played_at(result.snapshot.song_id) == clock.now
    # scheduled event, decision, state mirror
    assert scheduler.sink.pending == 3


@pytest.mark.asyncio
async def test_empty_catalog_is_no_content(clock):
    scheduler = make_scheduler(FakeCatalog([]), clock)
    with pytest.raises(NoEligibleContent):
        await scheduler.advance(0)
    assert scheduler.state.current().epoch == 0
    assert scheduler.state.claim(0)


@pytest.mark.asyncio
async def test_promoted_selection_spends_exactly_one_credit(clock):
    catalog = FakeCatalog([song("a", "artist-1")], {"artist-1": 3})
    scheduler = make_scheduler(catalog, clock)

    result = await scheduler.advance(0)

    assert result.selection.reason == SelectionReason.CREDITS
    assert catalog.balances["artist-1"] == 2
    assert catalog.decrements == 1


@pytest.mark.asyncio
async def test_organic_selections_never_touch_balances(clock):
    catalog = FakeCatalog([song("a"), song("b"), song("c")], {"artist-x": 5})
    scheduler = make_scheduler(catalog, clock)

    epoch = 0
    for _ in range(10):
        result = await scheduler.advance(epoch, PlayEventKind.COMPLETED)
        assert result.selection.reason != SelectionReason.CREDITS
        epoch = result.snapshot.epoch
        clock.tick(180)

    assert catalog.balances == {"artist-x": 5}
    assert catalog.decrements == 0


@pytest.mark.asyncio
async def test_epoch_strictly_increases(clock):
    catalog = FakeCatalog([song("a", "artist-1"), song("b")], {"artist-1": 2})
    scheduler = make_scheduler(catalog, clock)

    epochs = []
    for _ in range(8):
        result = await scheduler.advance(scheduler.state.current().epoch, PlayEventKind.COMPLETED)
        epochs.append(result.snapshot.epoch)
        clock.tick(60)

    assert epochs == list(range(1, 9))


@pytest.mark.asyncio
async def test_single_song_keeps_playing_while_cooling(clock):
    catalog = FakeCatalog([song("only")])
    scheduler = make_scheduler(catalog, clock)

    await scheduler.advance(0)
    clock.tick(30)
    result = await scheduler.advance(1, PlayEventKind.SKIPPED)

    assert result.snapshot.song_id == "only"
    assert result.selection.reason == SelectionReason.FALLBACK


@pytest.mark.asyncio
async def test_concurrent_triggers_commit_once(clock):
    catalog = FakeCatalog([song("a"), song("b"), song("c")])
    catalog.list_delay = 0.01
    scheduler = make_scheduler(catalog, clock)

    results = await asyncio.gather(*(scheduler.advance(0) for _ in range(10)))

    assert sum(1 for r in results if r.advanced) == 1
    assert {r.snapshot.epoch for r in results} == {1}
    assert len({r.snapshot.song_id for r in results}) == 1
    assert catalog.list_calls == 1
    assert scheduler.sink.pending == 3


@pytest.mark.asyncio
async def test_ledger_timeout_falls_back_to_organic(clock):
    catalog = FakeCatalog([song("a", "artist-1")], {"artist-1": 3})
    catalog.ledger_delay = 0.5
    scheduler = make_scheduler(catalog, clock, ledger_timeout=0.01)

    result = await scheduler.advance(0)

    assert result.advanced
    assert result.selection.reason == SelectionReason.ORGANIC
    assert catalog.balances["artist-1"] == 3


@pytest.mark.asyncio
async def test_lost_credit_race_reselects(clock):
    catalog = FakeCatalog([song("a", "artist-1"), song("b")], {"artist-1": 1})
    catalog.steal_credits_for = {"artist-1"}
    scheduler = make_scheduler(catalog, clock, params=RotationParams(p_promoted=1.0))

    result = await scheduler.advance(0)

    assert result.snapshot.song_id == "b"
    assert result.selection.reason == SelectionReason.ORGANIC
    assert catalog.decrements == 0


@pytest.mark.asyncio
async def test_exhausted_credit_retries_go_organic(clock):
    songs = [song(str(i), f"artist-{i}") for i in range(4)]
    catalog = FakeCatalog(songs, {f"artist-{i}": 2 for i in range(4)})
    catalog.steal_credits_for = {f"artist-{i}" for i in range(4)}
    scheduler = make_scheduler(
        catalog, clock, params=RotationParams(p_promoted=1.0), credit_retry_limit=3
    )

    result = await scheduler.advance(0)

    assert result.advanced
    assert result.selection.reason == SelectionReason.ORGANIC
    assert catalog.decrements == 0


@pytest.mark.asyncio
async def test_credit_refunded_when_epoch_moves_underneath(clock):
    catalog = FakeCatalog([song("a", "artist-1")], {"artist-1": 3})
    catalog.ledger_delay = 0.05
    scheduler = make_scheduler(catalog, clock)

    async def interloper():
        await asyncio.sleep(0.01)
        scheduler.state.advance(0, "elsewhere", 120, clock.now)

    _, result = await asyncio.gather(interloper(), scheduler.advance(0))

    assert not result.advanced
    assert result.snapshot.song_id == "elsewhere"
    assert catalog.refunds == 1
    assert catalog.balances["artist-1"] == 3
    assert scheduler.sink.pending == 0


@pytest.mark.asyncio
async def test_cancelled_advance_releases_claim_and_keeps_credit(clock):
    catalog = FakeCatalog([song("a", "artist-1")], {"artist-1": 3})
    catalog.ledger_delay = 1.0
    scheduler = make_scheduler(catalog, clock)

    task = asyncio.create_task(scheduler.advance(0))
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert scheduler.state.current().epoch == 0
    assert not scheduler.state.is_claimed(0)
    assert catalog.balances["artist-1"] == 3
    assert len(scheduler.tracker) == 0


@pytest.mark.asyncio
async def test_catalog_read_retried_once(clock):
    catalog = FakeCatalog([song("a")])
    catalog.fail_list = 1
    scheduler = make_scheduler(catalog, clock)

    result = await scheduler.advance(0)

    assert result.advanced
    assert catalog.list_calls == 2


@pytest.mark.asyncio
async def test_catalog_down_is_no_content(clock):
    catalog = FakeCatalog([song("a")])
    catalog.fail_list = 2
    scheduler = make_scheduler(catalog, clock)

    with pytest.raises(NoEligibleContent) as exc:
        await scheduler.advance(0)
    assert exc.value.message == "Catalog unavailable"
    assert not scheduler.state.is_claimed(0)


@pytest.mark.asyncio
async def test_catalog_timeout_is_no_content(clock):
    catalog = FakeCatalog([song("a")])
    catalog.list_delay = 0.5
    scheduler = make_scheduler(catalog, clock, catalog_timeout=0.01)

    with pytest.raises(NoEligibleContent):
        await scheduler.advance(0)
    assert catalog.list_calls == 2


@pytest.mark.asyncio
async def test_outcome_recorded_for_outgoing_song(clock):
    catalog = FakeCatalog([song("a"), song("b")])
    scheduler = make_scheduler(catalog, clock)

    first = await scheduler.advance(0)
    started = clock.now
    clock.tick(20)
    await scheduler.advance(1, PlayEventKind.SKIPPED)

    stats = scheduler.tracker.window_snapshot(clock.now).get(first.snapshot.song_id)
    assert stats.skips == 1
    assert stats.plays == 0
    assert stats.last_played_at == started


@pytest.mark.asyncio
async def test_current_track_advances_when_elapsed(clock):
    catalog = FakeCatalog([song("a", duration=60), song("b", duration=60)])
    scheduler = make_scheduler(catalog, clock)

    now_playing = await scheduler.current_track()
    assert now_playing.snapshot.epoch == 1
    assert now_playing.remaining_seconds == 60
    first = now_playing.snapshot.song_id

    clock.tick(30)
    assert (await scheduler.current_track()).snapshot.epoch == 1

    clock.tick(31)
    now_playing = await scheduler.current_track()
    assert now_playing.snapshot.epoch == 2
    assert scheduler.tracker.window_snapshot(clock.now).get(first).plays == 1


@pytest.mark.asyncio
async def test_advance_if_due(clock):
    catalog = FakeCatalog([song("a", duration=60), song("b", duration=60)])
    scheduler = make_scheduler(catalog, clock)

    assert (await scheduler.advance_if_due()).snapshot.epoch == 1
    clock.tick(10)
    assert await scheduler.advance_if_due() is None
    clock.tick(60)
    assert (await scheduler.advance_if_due()).snapshot.epoch == 2


@pytest.mark.asyncio
async def test_force_advance_records_no_outcome(clock):
    catalog = FakeCatalog([song("a"), song("b")])
    scheduler = make_scheduler(catalog, clock)

    first = await scheduler.advance(0)
    result = await scheduler.force_advance()

    assert result.snapshot.epoch == 2
    stats = scheduler.tracker.window_snapshot(clock.now).get(first.snapshot.song_id)
    assert (stats.plays, stats.skips) == (0, 0)


@pytest.mark.asyncio
async def test_upcoming_excludes_current_song(clock):
    catalog = FakeCatalog([song("a"), song("b"), song("c")])
    scheduler = make_scheduler(catalog, clock)

    current = (await scheduler.advance(0)).snapshot.song_id
    upcoming = await scheduler.upcoming(limit=10)

    assert current not in {c.song.id for c in upcoming}
    assert len(upcoming) == 2


@pytest.mark.asyncio
async def test_restore_resumes_epoch_and_fairness(session_factory, add_song, clock):
    songs = [await add_song("one"), await add_song("two")]
    store = SqlCatalogStore(session_factory)

    sink = PlayEventSink(session_factory)
    scheduler = make_scheduler(store, clock, sink=sink)
    await scheduler.advance(0)
    clock.tick(200)
    await scheduler.advance(1, PlayEventKind.COMPLETED)
    await sink.drain()
    played = scheduler.state.current()

    restarted = make_scheduler(store, clock, sink=PlayEventSink(session_factory))
    await restarted.restore()

    assert restarted.state.current() == played
    fairness = restarted.tracker.window_snapshot(clock.now)
    for s in songs:
        assert fairness.last_played_at(str(s.id)) is not None
    assert sum(fairness.get(str(s.id)).plays for s in songs) == 1

    result = await restarted.advance(played.epoch)
    assert result.snapshot.epoch == played.epoch + 1


@pytest.mark.asyncio
async def test_current_song_details_outlive_catalog_changes(clock):
    catalog = FakeCatalog([song("a", duration=600), song("b", duration=600)])
    scheduler = make_scheduler(catalog, clock)

    playing = (await scheduler.advance(0)).snapshot.song_id
    # Suspended mid-play
    catalog.songs = [s for s in catalog.songs if s.id != playing]
    await scheduler.upcoming()
    reads = catalog.list_calls

    for _ in range(5):
        now_playing = await scheduler.current_track()
        assert now_playing.song.id == playing
    assert catalog.list_calls == reads

    catalog.songs = []
    now_playing = await scheduler.current_track()
    assert now_playing.snapshot.epoch == 1
    assert now_playing.song.title == f"Title {playing}"
    assert now_playing.remaining_seconds == 600


@pytest.mark.asyncio
async def test_state_saved_before_advance_returns(clock):
    scheduler = make_scheduler(FakeCatalog([song("a"), song("b")]), clock)

    result = await scheduler.advance(0)

    assert scheduler.sink.saved == [result.snapshot]


@pytest.mark.asyncio
async def test_restart_after_unflushed_advance_keeps_epoch(session_factory, add_song, clock):
    for title in ("one", "two", "three", "four"):
        await add_song(title)
    store = SqlCatalogStore(session_factory)
    sink = PlayEventSink(session_factory)
    scheduler = make_scheduler(store, clock, sink=sink)

    await scheduler.advance(0)
    await sink.drain()
    clock.tick(200)
    live = (await scheduler.advance(1, PlayEventKind.COMPLETED)).snapshot
    # Process dies before the writer gets to the queue
    assert sink.pending > 0

    restarted = make_scheduler(store, clock, sink=PlayEventSink(session_factory))
    await restarted.restore()

    assert restarted.state.current() == live
    assert restarted.playing_song(live).id == live.song_id


@pytest.mark.asyncio
async def test_restore_resumes_past_highest_recorded_epoch(session_factory, add_song, clock):
    s = await add_song("one")
    sink = PlayEventSink(session_factory)
    sink.emit(PlayRecord(str(s.id), 5, PlayEventKind.SCHEDULED, clock.now))
    await sink.drain()
    await sink.save_state(StateRecord(StreamSnapshot(str(s.id), clock.now, 180.0, 3)))

    scheduler = make_scheduler(SqlCatalogStore(session_factory), clock, sink=sink)
    await scheduler.restore()

    assert scheduler.state.current().epoch == 5
    assert scheduler.state.current().is_idle
    assert (await scheduler.advance(5)).snapshot.epoch == 6


@pytest.mark.asyncio
async def test_restored_song_without_catalog_still_playing(session_factory, add_song, clock):
    s = await add_song("one", duration=600)
    sink = PlayEventSink(session_factory)
    await sink.save_state(StateRecord(StreamSnapshot(str(s.id), clock.now, 600.0, 2)))

    scheduler = make_scheduler(FakeCatalog([]), clock, sink=sink)
    await scheduler.restore()
    now_playing = await scheduler.current_track()

    assert now_playing.snapshot.epoch == 2
    assert now_playing.song is None
    assert now_playing.remaining_seconds == 600


@pytest.mark.asyncio
async def test_ledger_timeout_names_artist(clock, caplog):
    catalog = FakeCatalog([song("a", "artist-1")], {"artist-1": 3})
    catalog.ledger_delay = 0.5
    scheduler = make_scheduler(catalog, clock, ledger_timeout=0.01)

    await scheduler.advance(0)

    assert "Credit decrement for artist artist-1 timed out" in caplog.text


@pytest.mark.asyncio
async def test_balance_reread_failure_is_logged(clock, caplog):
    catalog = FakeCatalog([song("a", "artist-1"), song("b")], {"artist-1": 1})
    catalog.steal_credits_for = {"artist-1"}
    catalog.fail_balance = True
    scheduler = make_scheduler(catalog, clock, params=RotationParams(p_promoted=1.0))

    result = await scheduler.advance(0)

    assert result.selection.reason == SelectionReason.ORGANIC
    assert "Balance re-read for artist artist-1 failed" in caplog.text
