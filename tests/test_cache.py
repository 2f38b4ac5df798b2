"""Tests for the response cache (in-memory LRU, CacheManager, invalidation)."""

from __future__ import annotations

from unittest.mock import AsyncMock

from src.services.cache import (
    CacheManager,
    InMemoryCacheBackend,
    cache_key,
    detail_key,
    invalidate_ticket_caches,
)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# -----------------------------------------------------------------------
# InMemoryCacheBackend
# -----------------------------------------------------------------------


class TestInMemoryCacheBackend:
    async def test_set_get_delete(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("stats:agency=all", b"{}")
        assert await cache.get("stats:agency=all") == b"{}"

        await cache.delete("stats:agency=all")
        assert await cache.get("stats:agency=all") is None
        assert await cache.get("never-set") is None

    async def test_lru_eviction(self) -> None:
        """At capacity the least recently read entry goes first."""
        cache = InMemoryCacheBackend(max_size=3)
        for key in ("a", "b", "c"):
            await cache.set(key, key.encode())
        await cache.get("a")

        await cache.set("d", b"d")
        assert len(cache) == 3
        assert await cache.get("b") is None, "LRU entry 'b' should have been evicted"
        assert await cache.get("a") == b"a", "recently read 'a' should survive"

    async def test_ttl_uses_injected_clock(self) -> None:
        clock = FakeClock()
        cache = InMemoryCacheBackend(clock=clock)
        await cache.set("k", b"v", ttl_seconds=30)

        clock.advance(29)
        assert await cache.get("k") == b"v"
        clock.advance(1)
        assert await cache.get("k") is None, "entry should expire exactly at its TTL"

    async def test_delete_pattern_leaves_detail_keys(self) -> None:
        cache = InMemoryCacheBackend()
        await cache.set("tickets:agency=public_works", b"1")
        await cache.set("tickets:agency=all", b"2")
        await cache.set("ticket:SP-20251203-0001", b"3")

        assert await cache.delete_pattern("tickets:*") == 2
        assert await cache.get("ticket:SP-20251203-0001") == b"3"


# -----------------------------------------------------------------------
# Keys
# -----------------------------------------------------------------------


class TestKeys:
    def test_sorted_and_empty_values_dropped(self) -> None:
        key = cache_key(
            "tickets",
            {"status": "PENDING", "agency": "public_works", "urgency": None, "search": ""},
        )
        assert key == "tickets:agency=public_works&status=PENDING"

    def test_no_params(self) -> None:
        assert cache_key("stats") == "stats"
        assert cache_key("stats", {"agency": None}) == "stats"

    def test_detail_key(self) -> None:
        assert detail_key("SP-20251203-0001") == "ticket:SP-20251203-0001"


# -----------------------------------------------------------------------
# CacheManager
# -----------------------------------------------------------------------


class TestCacheManager:
    async def test_memory_backend_without_redis(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.set("k", {"total": 3})
        assert await mgr.get("k") == {"total": 3}
        assert mgr.backend == "memory"

    async def test_namespace_applies_to_patterns(self) -> None:
        mgr = CacheManager(namespace="satupintu:")
        await mgr.set("map:agency=all", [1])
        assert await mgr.delete_pattern("map:*") == 1

    async def test_read_through(self) -> None:
        mgr = CacheManager()
        load = AsyncMock(return_value={"n": 1})

        first = await mgr.read_through("stats:agency=all", 30, load)
        second = await mgr.read_through("stats:agency=all", 30, load)

        assert first == ({"n": 1}, False)
        assert second == ({"n": 1}, True)
        load.assert_awaited_once()

    async def test_read_through_expires(self) -> None:
        clock = FakeClock()
        mgr = CacheManager(clock=clock)
        load = AsyncMock(side_effect=[{"total": 1}, {"total": 2}])

        await mgr.read_through("stats:agency=all", 30, load)
        clock.advance(30)
        assert await mgr.read_through("stats:agency=all", 30, load) == ({"total": 2}, False)

    async def test_redis_failure_falls_back_to_memory(self) -> None:
        mgr = CacheManager()
        broken = AsyncMock()
        broken.ping.return_value = True
        broken.set.side_effect = ConnectionError("redis down")
        mgr._redis = broken
        mgr._redis_ok = None

        await mgr.set("k", "v")
        assert mgr.backend == "memory"
        assert await mgr.get("k") == "v"
        broken.get.assert_not_awaited()

    async def test_unreachable_redis_is_never_used(self) -> None:
        mgr = CacheManager()
        down = AsyncMock()
        down.ping.return_value = False
        mgr._redis = down
        mgr._redis_ok = None

        await mgr.set("k", 1)
        await mgr.get("k")
        down.set.assert_not_awaited()
        down.ping.assert_awaited_once()


# -----------------------------------------------------------------------
# Ticket invalidation
# -----------------------------------------------------------------------


class TestInvalidateTicketCaches:
    async def test_wipes_aggregates_and_one_detail(self) -> None:
        mgr = CacheManager()
        aggregates = (
            "stats:agency=all",
            "tickets:agency=public_works&page=1",
            "analytics:agency=all&days=30",
            "map:agency=all",
        )
        for key in (*aggregates, "ticket:SP-20251203-0001", "ticket:SP-20251203-0002"):
            await mgr.set(key, 1)

        await invalidate_ticket_caches(mgr, "SP-20251203-0001")

        for key in aggregates:
            assert await mgr.get(key) is None, f"{key} should be invalidated"
        assert await mgr.get("ticket:SP-20251203-0001") is None
        assert await mgr.get("ticket:SP-20251203-0002") == 1, "other tickets' details stay cached"

    async def test_none_cache_is_noop(self) -> None:
        await invalidate_ticket_caches(None, "SP-20251203-0001")

    async def test_failures_are_swallowed(self) -> None:
        mgr = AsyncMock()
        mgr.delete_pattern.side_effect = RuntimeError("boom")
        await invalidate_ticket_caches(mgr, "SP-20251203-0001")
