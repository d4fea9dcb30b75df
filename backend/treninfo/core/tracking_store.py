"""Redis persistence for tracked trains."""

import logging
import time

import orjson
import redis.asyncio as aioredis

from treninfo.config import settings
from treninfo.core.tracking import TrackedTrain

logger = logging.getLogger(__name__)

ITEMS_KEY = "treninfo:tracking:items"
ORDER_KEY = "treninfo:tracking:order"


class TrackingStore:
    """Tracked trains as JSON in a hash, ordered most recent first by a sorted set.

    Each tracked train lives under its own tracking key, so concurrent
    updates of different trains never touch the same field.
    """

    def __init__(self, redis: aioredis.Redis | None = None, max_items: int | None = None) -> None:
        self._redis = redis
        self._max_items = max_items if max_items is not None else settings.max_tracked_trains

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(settings.redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    @staticmethod
    def _decode(raw: bytes | None) -> TrackedTrain | None:
        if raw is None:
            return None
        try:
            return TrackedTrain.from_dict(orjson.loads(raw))
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Dropping unreadable tracking record")
            return None

    async def list_all(self) -> list[TrackedTrain]:
        keys = await self._redis.zrevrange(ORDER_KEY, 0, -1)
        if not keys:
            return []
        raws = await self._redis.hmget(ITEMS_KEY, keys)
        return [item for item in (self._decode(raw) for raw in raws) if item is not None]

    async def get(self, key: str) -> TrackedTrain | None:
        return self._decode(await self._redis.hget(ITEMS_KEY, key))

    async def upsert(self, item: TrackedTrain) -> TrackedTrain:
        """Insert or move ``item`` to the front; the oldest beyond the cap are dropped."""
        await self._redis.hset(ITEMS_KEY, item.key, orjson.dumps(item.to_dict()))
        await self._redis.zadd(ORDER_KEY, {item.key: int(time.time() * 1000)})

        excess = await self._redis.zcard(ORDER_KEY) - self._max_items
        if excess > 0:
            dropped = await self._redis.zrange(ORDER_KEY, 0, excess - 1)
            if dropped:
                await self._redis.hdel(ITEMS_KEY, *dropped)
                await self._redis.zrem(ORDER_KEY, *dropped)
                logger.info("Dropped %d oldest tracked trains", len(dropped))
        return item

    async def save_state(self, item: TrackedTrain) -> None:
        """Persist an updated item without changing its position in the list."""
        if await self._redis.hexists(ITEMS_KEY, item.key):
            await self._redis.hset(ITEMS_KEY, item.key, orjson.dumps(item.to_dict()))

    async def delete(self, key: str) -> bool:
        removed = await self._redis.hdel(ITEMS_KEY, key)
        await self._redis.zrem(ORDER_KEY, key)
        return bool(removed)
