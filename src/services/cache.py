"""Response cache for staff reads: Redis when reachable, process LRU otherwise.

Keys describe the query that produced the payload (:func:`cache_key`),
so two staff members of the same agency asking the same question share
an entry.  Payloads are JSON documents encoded with orjson.

Writers never update entries in place.  Every ticket mutation calls
:func:`invalidate_ticket_caches`, which drops all list, map, stats and
analytics entries plus the mutated ticket's detail entry.
"""

from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import orjson
import structlog

logger = structlog.get_logger(__name__)

# Families derived from the ticket table.  Detail entries are per ticket.
TICKET_CACHE_PATTERNS: tuple[str, ...] = ("stats:*", "tickets:*", "analytics:*", "map:*")


def cache_key(prefix: str, params: Mapping[str, Any] | None = None) -> str:
    """``prefix:k1=v1&k2=v2`` over the non-empty *params*, sorted by name.

    >>> cache_key("tickets", {"status": "PENDING", "agency": "all", "search": None})
    'tickets:agency=all&status=PENDING'
    """
    pairs = sorted((k, v) for k, v in (params or {}).items() if v is not None and v != "")
    if not pairs:
        return prefix
    return prefix + ":" + "&".join(f"{k}={v}" for k, v in pairs)


def detail_key(ticket_id: str) -> str:
    return f"ticket:{ticket_id}"


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class RedisCacheBackend:
    """Byte store on ``redis.asyncio`` with a bounded connection pool."""

    __slots__ = ("_client",)

    def __init__(self, url: str, *, max_connections: int = 20) -> None:
        import redis.asyncio as aioredis

        self._client = aioredis.Redis.from_url(
            url, max_connections=max_connections, decode_responses=False
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as exc:
            logger.warning("cache.redis_ping_failed", error=str(exc))
            return False

    async def get(self, key: str) -> bytes | None:
        return await self._client.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [key async for key in self._client.scan_iter(match=pattern, count=500)]
        return int(await self._client.delete(*doomed)) if doomed else 0

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCacheBackend:
    """Bounded LRU of ``key -> (payload, deadline)``.

    Expired entries are dropped lazily when read.  *clock* must be
    monotonic; tests pass a fake one.
    """

    __slots__ = ("_clock", "_entries", "_lock", "_max_size")

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[bytes, float | None]] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            payload, deadline = hit
            if deadline is not None and self._clock() >= deadline:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return payload

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        deadline = None if ttl_seconds is None else self._clock() + ttl_seconds
        async with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = (value, deadline)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._entries[key]
        return len(matched)


# ---------------------------------------------------------------------------
# CacheManager
# ---------------------------------------------------------------------------


class CacheManager:
    """JSON cache facade used by the routers and the ticket services.

    Parameters
    ----------
    redis_url:
        Redis connection string; empty keeps everything in process.
    namespace:
        Prefix for every key and delete pattern.
    inmemory_max_size:
        Capacity of the process-local LRU.
    clock:
        Time source for the process-local LRU.

    Redis is probed on first use.  After the first failed Redis call the
    manager stays on the local LRU for the life of the process.
    """

    __slots__ = ("_local", "_namespace", "_redis", "_redis_ok")

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        namespace: str = "",
        inmemory_max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._namespace = namespace
        self._local = InMemoryCacheBackend(max_size=inmemory_max_size, clock=clock)
        self._redis: RedisCacheBackend | None = None
        if redis_url:
            try:
                self._redis = RedisCacheBackend(redis_url)
            except ValueError:
                logger.warning("cache.redis_url_invalid")
        # None until the first probe.
        self._redis_ok: bool | None = None if self._redis is not None else False

    @property
    def backend(self) -> str:
        return "redis" if self._redis_ok else "memory"

    async def _backend(self) -> RedisCacheBackend | InMemoryCacheBackend:
        if self._redis is None:
            return self._local
        if self._redis_ok is None:
            self._redis_ok = await self._redis.ping()
            logger.info("cache.backend_selected", backend=self.backend)
        return self._redis if self._redis_ok else self._local

    async def _call(self, method: str, key: str, *args: Any) -> Any:
        backend = await self._backend()
        namespaced = f"{self._namespace}{key}"
        if backend is self._local:
            return await getattr(backend, method)(namespaced, *args)
        try:
            return await getattr(backend, method)(namespaced, *args)
        except Exception as exc:
            logger.warning("cache.redis_failed", method=method, error=str(exc))
            self._redis_ok = False
            return await getattr(self._local, method)(namespaced, *args)

    async def get(self, key: str) -> Any:
        """Decoded payload, or *None* on a miss or an undecodable entry."""
        raw = await self._call("get", key)
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("cache.corrupt_entry", key=key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._call("set", key, orjson.dumps(value), ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._call("delete", key)

    async def delete_pattern(self, pattern: str) -> int:
        return int(await self._call("delete_pattern", pattern))

    async def read_through(
        self,
        key: str,
        ttl_seconds: int,
        load: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """``(payload, hit)``: the cached payload, or *load()*'s result stored under *key*."""
        cached = await self.get(key)
        if cached is not None:
            return cached, True
        value = await load()
        await self.set(key, value, ttl_seconds)
        return value, False

    async def close(self) -> None:
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()


async def invalidate_ticket_caches(cache: CacheManager | None, ticket_id: str | None = None) -> None:
    """Drop every ticket-derived entry and, if given, one ticket's detail.

    Never raises: the mutation that triggered the call already succeeded.
    """
    if cache is None:
        return
    try:
        removed = 0
        for pattern in TICKET_CACHE_PATTERNS:
            removed += await cache.delete_pattern(pattern)
        if ticket_id:
            await cache.delete(detail_key(ticket_id))
        logger.debug("cache.ticket_invalidated", ticket_id=ticket_id, removed=removed)
    except Exception:
        logger.warning("cache.invalidate_failed", ticket_id=ticket_id, exc_info=True)
