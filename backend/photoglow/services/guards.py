"""Process-local idempotency cache and sliding-window rate limiter.

Both live only as long as the worker process and are not shared between
processes.  They reduce duplicate work within one process; they do not
give cross-process guarantees (that needs a shared store such as Redis).
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    status_code: int
    body: dict[str, Any]
    expires_at: float


class IdempotencyCache:
    """(caller, key) → successful response, expiring after ``ttl`` seconds."""

    def __init__(
        self,
        ttl: float = 600.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[tuple[str, str], CachedResponse] = {}
        self._inflight: dict[tuple[str, str], asyncio.Future[None]] = {}

    def get(self, caller: str, key: str | None) -> CachedResponse | None:
        if not key:
            return None
        entry = self._entries.get((caller, key))
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop((caller, key), None)
            return None
        return entry

    def put(self, caller: str, key: str | None, status_code: int, body: dict[str, Any]) -> None:
        if not key:
            return
        if len(self._entries) >= self.max_entries:
            self._evict_expired()
            if len(self._entries) >= self.max_entries:
                self._entries.pop(next(iter(self._entries)))
        self._entries[(caller, key)] = CachedResponse(
            status_code=status_code,
            body=copy.deepcopy(body),
            expires_at=self._clock() + self.ttl,
        )

    async def run_once(
        self,
        caller: str,
        key: str | None,
        work: Callable[[], Awaitable[tuple[int, dict[str, Any]]]],
        *,
        remember: bool = True,
    ) -> tuple[int, dict[str, Any]]:
        """Run ``work`` for (caller, key) with at most one attempt in flight.

        A concurrent call with the same key waits for the running attempt,
        then replays its cached response.  If that attempt failed, nothing
        was cached and the waiter runs ``work`` itself.  With
        ``remember=False`` the cache is neither read nor written, so a waiter
        always re-runs ``work`` once the first attempt has finished.
        """
        if not key:
            return await work()
        slot = (caller, key)
        while True:
            cached = self.get(caller, key) if remember else None
            if cached is not None:
                logger.info("Idempotent replay for caller %s key %s", caller, key)
                return cached.status_code, copy.deepcopy(cached.body)
            running = self._inflight.get(slot)
            if running is None:
                break
            logger.info("Waiting on in-flight request for caller %s key %s", caller, key)
            await asyncio.shield(running)

        done = asyncio.get_running_loop().create_future()
        self._inflight[slot] = done
        try:
            status_code, body = await work()
            if remember and status_code == 200:
                self.put(caller, key, status_code, body)
            return status_code, body
        finally:
            self._inflight.pop(slot, None)
            done.set_result(None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_expired(self) -> None:
        now = self._clock()
        for k in [k for k, v in self._entries.items() if v.expires_at <= now]:
            del self._entries[k]


class SlidingWindowRateLimiter:
    """At most ``max_requests`` per ``window`` seconds per client id."""

    def __init__(
        self,
        max_requests: int = 10,
        window: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def allow(self, client_id: str) -> bool:
        now = self._clock()
        hits = self._hits.setdefault(client_id, deque())
        while hits and hits[0] <= now - self.window:
            hits.popleft()
        if len(hits) >= self.max_requests:
            logger.info("Rate limit hit for client %s", client_id)
            return False
        hits.append(now)
        return True

    def clear(self) -> None:
        self._hits.clear()


def client_id_from_headers(headers: Mapping[str, str], peer: str | None = None) -> str:
    """First ``x-forwarded-for`` address, else the peer address."""
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    return first or peer or "unknown"
