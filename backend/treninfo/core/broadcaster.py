"""Fan-out of tracking triggers to Redis and to live subscriptions."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

import orjson
import redis.asyncio as aioredis

from treninfo.config import settings

logger = logging.getLogger(__name__)

CHANNEL = "treninfo:tracking:events"
LAST_BATCH_KEY = "treninfo:tracking:last_events"
QUEUE_SIZE = 10


@dataclass(eq=False)
class Subscription:
    """One live listener; an empty ``keys`` set follows every tracked train."""

    keys: frozenset[str] = frozenset()
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=QUEUE_SIZE))

    def select(self, events: list[dict]) -> list[dict]:
        if not self.keys:
            return events
        return [e for e in events if e.get("key") in self.keys]


def encode_batch(events: list[dict], kind: str = "tracking") -> bytes:
    return orjson.dumps({"type": kind, "events": events})


class Broadcaster:
    """Publishes trigger batches; the last batch is kept for late subscribers."""

    def __init__(self, redis: aioredis.Redis | None = None) -> None:
        self._redis = redis
        self._subscriptions: set[Subscription] = set()

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(settings.redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    async def publish(self, events: list[dict]) -> None:
        if not events:
            return
        payload = encode_batch(events)

        if self._redis is not None:
            try:
                await self._redis.set(LAST_BATCH_KEY, payload)
                await self._redis.publish(CHANNEL, payload)
            except aioredis.RedisError:
                logger.exception("Failed to publish tracking events to Redis")

        lagging = set()
        for sub in self._subscriptions:
            selected = sub.select(events)
            if not selected:
                continue
            try:
                sub.queue.put_nowait(payload if selected is events else encode_batch(selected))
            except asyncio.QueueFull:
                lagging.add(sub)
        if lagging:
            logger.warning("Dropping %d lagging subscriptions", len(lagging))
            self._subscriptions -= lagging

    async def last_batch(self, sub: Subscription) -> bytes | None:
        """The most recent batch as a ``snapshot`` message, narrowed to ``sub``."""
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(LAST_BATCH_KEY)
        except aioredis.RedisError:
            logger.exception("Failed to read last tracking events from Redis")
            return None
        if not raw:
            return None
        selected = sub.select(orjson.loads(raw).get("events", []))
        return encode_batch(selected, "snapshot") if selected else None

    def subscribe(self, keys: Iterable[str] = ()) -> Subscription:
        sub = Subscription(keys=frozenset(keys))
        self._subscriptions.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)
