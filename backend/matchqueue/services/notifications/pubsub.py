"""
Topic-based publish/subscribe for queue notifications.

Publishing is fire-and-forget: only subscribers connected at publish time
receive an event and nothing is persisted for late subscribers. Two
backends are provided, an in-process one for single-worker deployments and
tests, and a Redis one for fan-out across workers.
"""

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set

from matchqueue.core.redis import get_redis_pubsub

# Configure logger
logger = logging.getLogger(__name__)

PUBSUB_BACKEND = os.getenv("PUBSUB_BACKEND", "memory")

# Per-subscriber buffer; a subscriber that falls this far behind loses events
SUBSCRIBER_QUEUE_SIZE = 1000


class Subscription:
    """Async iterator over the payloads published to one topic."""

    def __init__(self, topic: str):
        self.topic = topic
        self.closed = False

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        payload = await self._next()
        if payload is None:
            raise StopAsyncIteration
        return payload

    async def _next(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def close(self) -> None:
        self.closed = True


class PubSub:
    """Interface shared by the pub/sub backends."""

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def subscribe(self, topic: str) -> Subscription:
        """Start listening on ``topic``; events published afterwards are delivered."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


class _MemorySubscription(Subscription):
    def __init__(self, topic: str, owner: "InMemoryPubSub"):
        super().__init__(topic)
        self._owner = owner
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)

    async def _next(self):
        return await self.queue.get()

    async def close(self) -> None:
        if self.closed:
            return
        await super().close()
        self._owner._discard(self)
        # Wake a reader blocked in _next
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class InMemoryPubSub(PubSub):
    """Pub/sub that fans out to asyncio queues inside this process."""

    def __init__(self):
        self._subscribers: Dict[str, Set[_MemorySubscription]] = {}

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        subscribers = list(self._subscribers.get(topic, ()))
        for subscription in subscribers:
            try:
                subscription.queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning(f"Dropping event on {topic}: subscriber queue full")
        logger.debug(f"Published to {topic} ({len(subscribers)} subscribers)")

    async def subscribe(self, topic: str) -> Subscription:
        subscription = _MemorySubscription(topic, self)
        self._subscribers.setdefault(topic, set()).add(subscription)
        return subscription

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def _discard(self, subscription: _MemorySubscription) -> None:
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.topic]


class _RedisSubscription(Subscription):
    def __init__(self, topic: str, pubsub):
        super().__init__(topic)
        self._pubsub = pubsub

    async def _next(self):
        while not self.closed:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message is None:
                continue
            try:
                return json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed message on {self.topic}")
        return None

    async def close(self) -> None:
        if self.closed:
            return
        await super().close()
        await self._pubsub.unsubscribe(self.topic)
        await self._pubsub.aclose()


class RedisPubSub(PubSub):
    """Pub/sub over Redis channels, shared by every worker process."""

    def __init__(self, redis=None):
        self._redis = redis

    @property
    def redis(self):
        if self._redis is None:
            self._redis = get_redis_pubsub()
        return self._redis

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        receivers = await self.redis.publish(topic, json.dumps(payload))
        logger.debug(f"Published to {topic} ({receivers} receivers)")

    async def subscribe(self, topic: str) -> Subscription:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(topic)
        return _RedisSubscription(topic, pubsub)


class FilteredSubscription(Subscription):
    """Subscription that only yields payloads accepted by ``predicate``."""

    def __init__(self, inner: Subscription, predicate: Callable[[Dict[str, Any]], bool]):
        super().__init__(inner.topic)
        self._inner = inner
        self._predicate = predicate

    async def _next(self):
        async for payload in self._inner:
            if self._predicate(payload):
                return payload
        return None

    async def close(self) -> None:
        await super().close()
        await self._inner.close()


_pubsub: Optional[PubSub] = None


def get_pubsub() -> PubSub:
    """
    Returns the process-wide pub/sub selected by ``PUBSUB_BACKEND``.
    """
    global _pubsub

    if _pubsub is None:
        if PUBSUB_BACKEND == "redis":
            _pubsub = RedisPubSub()
        elif PUBSUB_BACKEND == "memory":
            _pubsub = InMemoryPubSub()
        else:
            raise RuntimeError(f"Unknown PUBSUB_BACKEND: {PUBSUB_BACKEND}")
        logger.info(f"Using {PUBSUB_BACKEND} pub/sub backend")

    return _pubsub
