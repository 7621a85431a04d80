"""Recently-seen identifier caches used to suppress repeated deliveries.

Two independent caches are kept: one for Lark event ids (retried webhook
deliveries) and one for message ids (the same message re-emitted under a new
event). The in-memory backend lives for the life of the process only; the
Redis backend shares state between instances.
"""

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional

import redis.asyncio as redis_async

from invoice_bot.config import settings
from invoice_bot.logging_config import get_logger

logger = get_logger("dedup")

DEFAULT_CAPACITY = 1000


class IdCache(ABC):
    """Membership store for recently processed ids."""

    @abstractmethod
    async def seen_or_add(self, item_id: str) -> bool:
        """Record `item_id` and report whether it was already present, in one step."""


class BoundedIdCache(IdCache):
    """In-memory cache holding at most `capacity` ids, oldest-inserted evicted first.

    Re-adding an id that is already present does not move it, so eviction
    follows insertion order rather than recency of use.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()

    async def seen_or_add(self, item_id: str) -> bool:
        # No await between the check and the insert.
        if item_id in self._ids:
            return True
        if len(self._ids) >= self.capacity:
            self._ids.popitem(last=False)
        self._ids[item_id] = None
        return False

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class RedisIdCache(IdCache):
    """Shared cache for multi-instance deployments; entries expire after `ttl_seconds`.

    When Redis is unreachable the id is treated as unseen, so a delivery is
    processed rather than dropped.
    """

    def __init__(self, client, namespace: str, ttl_seconds: int):
        self.client = client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def _key(self, item_id: str) -> str:
        return f"invoice_bot:dedup:{self.namespace}:{item_id}"

    async def seen_or_add(self, item_id: str) -> bool:
        try:
            was_set = await self.client.set(self._key(item_id), "1", ex=self.ttl_seconds, nx=True)
        except Exception as e:
            logger.warning(
                f"Dedup redis unavailable, treating id as new: {e}",
                extra={"context": {"namespace": self.namespace, "item_id": item_id}},
            )
            return False
        return not was_set


class ExpiringIdSet:
    """Ids remembered for a fixed number of seconds after being added."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._expires: dict[str, float] = {}

    def _purge(self) -> None:
        now = self._clock()
        for item_id in [key for key, expires_at in self._expires.items() if expires_at <= now]:
            del self._expires[item_id]

    def __contains__(self, item_id: str) -> bool:
        self._purge()
        return item_id in self._expires

    def add(self, item_id: str) -> None:
        self._expires[item_id] = self._clock() + self.ttl_seconds

    def __len__(self) -> int:
        self._purge()
        return len(self._expires)


_redis_client = None


def _get_redis_client():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis_async.from_url(settings.redis_url, socket_timeout=0.3)
    return _redis_client


def build_id_cache(namespace: str, backend: Optional[str] = None) -> IdCache:
    backend = (backend or settings.dedup_backend).strip().lower()
    if backend == "redis":
        logger.info(
            "Using Redis dedup cache",
            extra={"context": {"namespace": namespace, "ttl_seconds": settings.dedup_ttl_seconds}},
        )
        return RedisIdCache(_get_redis_client(), namespace, settings.dedup_ttl_seconds)
    if backend != "memory":
        raise ValueError(f"Unknown dedup backend: {backend}")
    return BoundedIdCache(settings.dedup_capacity)


_event_cache: Optional[IdCache] = None
_message_cache: Optional[IdCache] = None


def get_event_cache() -> IdCache:
    global _event_cache
    if _event_cache is None:
        _event_cache = build_id_cache("event")
    return _event_cache


def get_message_cache() -> IdCache:
    global _message_cache
    if _message_cache is None:
        _message_cache = build_id_cache("message")
    return _message_cache
