"""Radio endpoints: now playing, listener reports, queue preview, admin controls."""
import logging

from fastapi import APIRouter, Depends, Query, Request

from rotation.core.dependencies import get_current_identity, get_ingestion, get_radio, require_admin
from rotation.core.exceptions import NoEligibleContent, StaleEpoch
from rotation.models.play_event import PlayEventKind
from rotation.schemas.radio import (
    CurrentTrackResponse,
    HeartbeatRequest,
    HeartbeatResponse,
    NoContentResponse,
    PlayDecisionOut,
    PlayReportRequest,
    PlayReportResponse,
    UpcomingSong,
)
from rotation.services.play_ingestion_service import ListenerIdentity, PlayIngestionService
from rotation.services.radio_runtime import RadioRuntime
from rotation.services.rotation_scheduler import NowPlaying

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/radio", tags=["radio"])


def _current_payload(now_playing: NowPlaying) -> CurrentTrackResponse:
    snap = now_playing.snapshot
    song = now_playing.song
    return CurrentTrackResponse(
        song_id=snap.song_id,
        started_at=snap.started_at,
        epoch=snap.epoch,
        remaining_seconds=round(now_playing.remaining_seconds, 3),
        duration_seconds=snap.duration_seconds,
        title=song.title if song else None,
        artist_name=song.artist_name if song else None,
        audio_url=song.audio_url if song else None,
        artwork_url=song.artwork_url if song else None,
    )


@router.get("/current", response_model=CurrentTrackResponse | NoContentResponse)
async def get_current_track(radio: RadioRuntime = Depends(get_radio)):
    """Public — what every listener should be hearing right now."""
    try:
        now_playing = await radio.scheduler.current_track()
    except NoEligibleContent as e:
        return NoContentResponse(message=e.message)
    if now_playing.snapshot.is_idle:
        return NoContentResponse()
    return _current_payload(now_playing)


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    body: HeartbeatRequest,
    request: Request,
    identity: ListenerIdentity = Depends(get_current_identity),
    ingestion: PlayIngestionService = Depends(get_ingestion),
):
    """Called by the player every ~30s with the epoch/song it believes is current."""
    try:
        result = await ingestion.heartbeat(
            identity, body.epoch, body.song_id, request.headers.get("user-agent")
        )
    except StaleEpoch as e:
        return HeartbeatResponse(stale=True, current_epoch=e.current_epoch)
    except NoEligibleContent:
        # Track ran out and nothing can replace it; the heartbeat itself was fine
        return HeartbeatResponse(ok=True, current_epoch=ingestion.scheduler.state.current().epoch)
    return HeartbeatResponse(ok=True, current_epoch=result.current_epoch)


@router.post("/play", response_model=PlayReportResponse)
async def report_play_outcome(
    body: PlayReportRequest,
    identity: ListenerIdentity = Depends(get_current_identity),
    ingestion: PlayIngestionService = Depends(get_ingestion),
):
    """Terminal report for the current song: completed or skipped."""
    try:
        result = await ingestion.report_play_outcome(
            identity, body.epoch, body.song_id, PlayEventKind(body.outcome)
        )
    except StaleEpoch as e:
        return PlayReportResponse(stale=True, current_epoch=e.current_epoch)
    except NoEligibleContent:
        return PlayReportResponse(ok=True, current_epoch=ingestion.scheduler.state.current().epoch)
    return PlayReportResponse(ok=True, current_epoch=result.current_epoch)


@router.get("/queue", response_model=list[UpcomingSong])
async def upcoming_queue(
    limit: int = Query(10, ge=1, le=50),
    radio: RadioRuntime = Depends(get_radio),
):
    """Most likely next songs, promoted first. A preview, not a reservation."""
    try:
        candidates = await radio.scheduler.upcoming(limit)
    except NoEligibleContent:
        return []
    return [
        UpcomingSong(
            song_id=c.song.id,
            title=c.song.title,
            artist_name=c.song.artist_name,
            reason=c.reason.value,
            weight=round(c.weight, 4),
            last_played_at=c.last_played_at,
        )
        for c in candidates
    ]


@router.post("/advance", response_model=CurrentTrackResponse | NoContentResponse)
async def force_advance(
    radio: RadioRuntime = Depends(get_radio),
    admin: ListenerIdentity = Depends(require_admin),
):
    """Admin — move to the next song now, without crediting a play or skip."""
    try:
        result = await radio.scheduler.force_advance()
    except NoEligibleContent as e:
        return NoContentResponse(message=e.message)
    logger.info("Admin %s forced advance to epoch %d", admin.subject, result.snapshot.epoch)
    now_playing = await radio.scheduler.current_track()
    return _current_payload(now_playing)


@router.get("/decisions", response_model=list[PlayDecisionOut])
async def recent_decisions(
    limit: int = Query(50, ge=1, le=500),
    radio: RadioRuntime = Depends(get_radio),
    _admin: ListenerIdentity = Depends(require_admin),
):
    """Admin — why recent songs were chosen."""
    await radio.sink.drain()
    decisions = await radio.sink.recent_decisions(limit)
    out = []
    for d in decisions:
        item = PlayDecisionOut.model_validate(d)
        item.title = d.song.title if d.song else None
        out.append(item)
    return out


@router.get("/health")
async def radio_health(radio: RadioRuntime = Depends(get_radio)):
    snapshot = radio.state.current()
    return {
        "status": "ok",
        "epoch": snapshot.epoch,
        "playing": not snapshot.is_idle,
        "engine_running": radio.engine.running,
        "pending_events": radio.sink.pending,
    }
