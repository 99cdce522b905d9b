"""Redis Pub/Sub bridge for job status notifications.

The API process and Celery tasks publish job updates to a per-job channel.
The WebSocket handler subscribes and relays them to connected clients.
Publishing is best-effort and never fails the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis

from photoglow.config import get_settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "photoglow:jobs:"


def job_message(job_id: str, status: str, **extra: Any) -> dict[str, Any]:
    message = {"type": "job_update", "job_id": job_id, "status": status}
    message.update({k: v for k, v in extra.items() if v is not None})
    return message


# ──────── Async client (API process and Celery tasks) ────────

_async_client: aioredis.Redis | None = None


def _get_async_client() -> aioredis.Redis:
    """Lazy-init a module-level async Redis client (singleton)."""
    global _async_client
    if _async_client is None:
        _async_client = aioredis.from_url(get_settings().REDIS_URL)
    return _async_client


async def publish_job_update(job_id: str, status: str, **extra: Any) -> None:
    """Publish one job update; failures are logged, never raised."""
    try:
        await _get_async_client().publish(
            f"{CHANNEL_PREFIX}{job_id}", json.dumps(job_message(job_id, status, **extra))
        )
    except Exception:
        logger.warning("Failed to publish update for job %s", job_id, exc_info=True)


async def subscribe_job(job_id: str) -> aioredis.client.PubSub:
    """Subscribe to one job's channel.

    Caller closes the returned pubsub, but NOT the shared client.
    """
    pubsub = _get_async_client().pubsub()
    await pubsub.subscribe(f"{CHANNEL_PREFIX}{job_id}")
    return pubsub


async def listen_pubsub(pubsub: aioredis.client.PubSub):
    """Async generator that yields parsed messages from a PubSub subscription."""
    async for raw_message in pubsub.listen():
        if raw_message["type"] == "message":
            try:
                yield json.loads(raw_message["data"])
            except (json.JSONDecodeError, TypeError):
                continue


async def close_pubsub() -> None:
    global _async_client
    if _async_client is not None:
        await _async_client.aclose()
    _async_client = None
