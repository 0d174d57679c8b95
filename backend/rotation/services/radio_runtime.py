"""Process-wide wiring of the rotation service: one scheduler, one stream."""
import logging
import random
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rotation.config import Settings
from rotation.services.advancement_engine import AdvancementEngine
from rotation.services.catalog_service import SqlCatalogStore
from rotation.services.play_event_sink import PlayEventSink
from rotation.services.rotation_scheduler import RotationScheduler
from rotation.streaming.fairness import FairnessTracker
from rotation.streaming.now_playing_cache import NowPlayingCache
from rotation.streaming.stream_state import StreamState

logger = logging.getLogger(__name__)


class RadioRuntime:
    def __init__(self, scheduler: RotationScheduler, sink: PlayEventSink, engine: AdvancementEngine):
        self.scheduler = scheduler
        self.sink = sink
        self.engine = engine

    @property
    def state(self) -> StreamState:
        return self.scheduler.state

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings,
    ) -> "RadioRuntime":
        cache = NowPlayingCache(config.REDIS_URL, config.NOW_PLAYING_TTL_SECONDS) if config.redis_enabled else None
        sink = PlayEventSink(session_factory, cache)
        scheduler = RotationScheduler(
            SqlCatalogStore(session_factory, config.DEFAULT_DURATION_SECONDS),
            FairnessTracker(timedelta(hours=config.FAIRNESS_WINDOW_HOURS)),
            StreamState(),
            sink,
            config.rotation_params,
            rng=random.Random(config.ROTATION_SEED),
            catalog_timeout=config.CATALOG_TIMEOUT_SECONDS,
            ledger_timeout=config.LEDGER_TIMEOUT_SECONDS,
            catalog_retry_backoff=config.CATALOG_RETRY_BACKOFF_SECONDS,
            credit_retry_limit=config.CREDIT_RETRY_LIMIT,
            advance_wait_timeout=config.ADVANCE_WAIT_TIMEOUT_SECONDS,
        )
        engine = AdvancementEngine(scheduler, config.ADVANCE_CHECK_INTERVAL_SECONDS)
        return cls(scheduler, sink, engine)

    async def start(self) -> None:
        try:
            await self.scheduler.restore()
        except Exception as e:
            # A cold start from epoch 0 is still a valid stream
            logger.error("Stream state restore failed: %s", e, exc_info=True)
        await self.sink.start()
        await self.engine.start()

    async def stop(self) -> None:
        await self.engine.stop()
        await self.sink.stop()
