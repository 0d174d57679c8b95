"""
Heartbeat and play-outcome ingestion.

Listener reports are only trusted when they name the current epoch and song.
Anything else is stale and changes nothing; the caller is told the current
epoch so it can resynchronise.
"""
import logging
from dataclasses import dataclass

from rotation.core.exceptions import StaleEpoch
from rotation.models.play_event import PlayEventKind
from rotation.services.listener_service import ListenerService
from rotation.services.rotation_scheduler import RotationScheduler

logger = logging.getLogger(__name__)

OUTCOMES = (PlayEventKind.COMPLETED, PlayEventKind.SKIPPED)


@dataclass(frozen=True)
class ListenerIdentity:
    subject: str
    role: str = "listener"


@dataclass(frozen=True)
class IngestResult:
    current_epoch: int
    advanced: bool = False


class PlayIngestionService:
    def __init__(self, scheduler: RotationScheduler, listeners: ListenerService | None = None):
        self.scheduler = scheduler
        self.listeners = listeners

    def _check_current(self, epoch: int, song_id: str):
        snapshot = self.scheduler.state.current()
        if epoch != snapshot.epoch or song_id != snapshot.song_id:
            logger.debug(
                "Stale report for epoch %d (song %s); current epoch %d",
                epoch, song_id, snapshot.epoch,
            )
            raise StaleEpoch(snapshot.epoch)
        return snapshot

    async def heartbeat(
        self,
        identity: ListenerIdentity,
        epoch: int,
        song_id: str,
        user_agent: str | None = None,
    ) -> IngestResult:
        """Refresh the listener's session; advance if the track has run out."""
        snapshot = self._check_current(epoch, song_id)

        if self.listeners is not None:
            await self.listeners.touch(identity.subject, epoch, user_agent)

        if snapshot.remaining_seconds(self.scheduler.clock()) <= 0:
            result = await self.scheduler.advance(epoch, PlayEventKind.COMPLETED)
            return IngestResult(result.snapshot.epoch, advanced=result.advanced)
        return IngestResult(snapshot.epoch)

    async def report_play_outcome(
        self,
        identity: ListenerIdentity,
        epoch: int,
        song_id: str,
        outcome: PlayEventKind,
    ) -> IngestResult:
        if outcome not in OUTCOMES:
            raise ValueError(f"unsupported play outcome {outcome!r}")

        previous = self.scheduler.state.previous()
        current = self.scheduler.state.current()
        if (
            previous is not None
            and epoch == previous.epoch
            and song_id == previous.song_id
            and current.epoch == epoch + 1
        ):
            # Duplicate of the report that just advanced the stream
            return IngestResult(current.epoch)

        self._check_current(epoch, song_id)
        result = await self.scheduler.advance(epoch, outcome)
        logger.debug(
            "Listener %s reported %s for epoch %d", identity.subject, outcome.value, epoch
        )
        return IngestResult(result.snapshot.epoch, advanced=result.advanced)
