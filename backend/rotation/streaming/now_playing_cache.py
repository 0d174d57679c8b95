import json

import redis.asyncio as aioredis

from rotation.config import settings

CURRENT_KEY = "radio:current"


class NowPlayingCache:
    """Redis copy of the now-playing record for other web processes."""

    def __init__(self, url: str | None = None, ttl_seconds: int | None = None):
        self.url = url or settings.REDIS_URL
        self.ttl_seconds = ttl_seconds or settings.NOW_PLAYING_TTL_SECONDS
        self._redis: aioredis.Redis | None = None

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.url)
        return self._redis

    async def set_now_playing(self, payload: dict) -> None:
        r = await self._get_redis()
        # Outlives any single song; a stale key just means the writer died
        await r.setex(CURRENT_KEY, self.ttl_seconds, json.dumps(payload))

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
