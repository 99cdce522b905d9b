"""Tests for the idempotency cache and the rate limiter."""

import asyncio

import pytest

from photoglow.services.guards import (
    IdempotencyCache,
    SlidingWindowRateLimiter,
    client_id_from_headers,
)


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestIdempotencyCache:

    def test_replay_within_ttl(self):
        clock = Clock()
        cache = IdempotencyCache(ttl=60, clock=clock)
        cache.put("user-1", "k1", 200, {"ok": True, "image_url": "u"})

        clock.now += 59
        hit = cache.get("user-1", "k1")
        assert hit is not None
        assert hit.status_code == 200
        assert hit.body == {"ok": True, "image_url": "u"}

    def test_expired_entry_dropped(self):
        clock = Clock()
        cache = IdempotencyCache(ttl=60, clock=clock)
        cache.put("user-1", "k1", 200, {"ok": True})

        clock.now += 60
        assert cache.get("user-1", "k1") is None
        assert len(cache) == 0

    def test_scoped_per_caller(self):
        cache = IdempotencyCache()
        cache.put("user-1", "k1", 200, {"ok": True})
        assert cache.get("user-2", "k1") is None

    def test_missing_key_is_never_cached(self):
        cache = IdempotencyCache()
        cache.put("user-1", None, 200, {"ok": True})
        assert len(cache) == 0
        assert cache.get("user-1", None) is None

    def test_stored_body_is_a_copy(self):
        cache = IdempotencyCache()
        body = {"ok": True, "meta": {"seed": 1}}
        cache.put("user-1", "k1", 200, body)
        body["meta"]["seed"] = 2
        assert cache.get("user-1", "k1").body["meta"]["seed"] == 1

    def test_bounded_size(self):
        cache = IdempotencyCache(max_entries=2)
        for i in range(5):
            cache.put("user-1", f"k{i}", 200, {"i": i})
        assert len(cache) == 2
        assert cache.get("user-1", "k4") is not None


class TestRunOnce:

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_attempt(self):
        cache = IdempotencyCache()
        calls = []

        async def work():
            calls.append(1)
            await asyncio.sleep(0)
            return 200, {"n": len(calls)}

        first, second = await asyncio.gather(
            cache.run_once("user-1", "k1", work),
            cache.run_once("user-1", "k1", work),
        )

        assert calls == [1]
        assert first == second == (200, {"n": 1})
        assert cache.get("user-1", "k1") is not None

    @pytest.mark.asyncio
    async def test_waiter_runs_itself_after_failed_attempt(self):
        cache = IdempotencyCache()
        attempts = []

        async def work():
            attempts.append(1)
            await asyncio.sleep(0)
            if len(attempts) == 1:
                raise RuntimeError("provider down")
            return 200, {"ok": True}

        first, second = await asyncio.gather(
            cache.run_once("user-1", "k1", work),
            cache.run_once("user-1", "k1", work),
            return_exceptions=True,
        )

        assert isinstance(first, RuntimeError)
        assert second == (200, {"ok": True})
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_without_key_every_call_runs(self):
        cache = IdempotencyCache()
        calls = []

        async def work():
            calls.append(1)
            return 200, {}

        await cache.run_once("user-1", None, work)
        await cache.run_once("user-1", None, work)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unremembered_results_are_not_replayed(self):
        cache = IdempotencyCache()
        cache.put("user-1", "k1", 200, {"from": "cache"})

        async def work():
            return 202, {"from": "work"}

        assert await cache.run_once("user-1", "k1", work, remember=False) == (202, {"from": "work"})
        assert cache.get("user-1", "k1").body == {"from": "cache"}


class TestSlidingWindowRateLimiter:

    def test_limit_then_recover(self):
        clock = Clock()
        limiter = SlidingWindowRateLimiter(max_requests=3, window=10, clock=clock)

        assert [limiter.allow("1.2.3.4") for _ in range(4)] == [True, True, True, False]
        assert limiter.allow("5.6.7.8") is True

        clock.now += 10
        assert limiter.allow("1.2.3.4") is True

    def test_window_slides(self):
        clock = Clock()
        limiter = SlidingWindowRateLimiter(max_requests=2, window=10, clock=clock)
        limiter.allow("c")
        clock.now += 5
        limiter.allow("c")
        clock.now += 5
        # first hit left the window, second did not
        assert limiter.allow("c") is True
        assert limiter.allow("c") is False


class TestClientId:

    def test_forwarded_for_wins(self):
        assert client_id_from_headers({"x-forwarded-for": "9.9.9.9, 10.0.0.1"}, "10.0.0.1") == "9.9.9.9"

    def test_peer_fallback(self):
        assert client_id_from_headers({}, "10.0.0.1") == "10.0.0.1"
        assert client_id_from_headers({}) == "unknown"
