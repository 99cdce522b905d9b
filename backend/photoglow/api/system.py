"""System status endpoint: env presence and dependency health, no secrets."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from photoglow.api.deps import has_env
from photoglow.database import get_engine
from photoglow.services.errors import GenerationError
from photoglow.services.wiring import Services, get_services

router = APIRouter()


def _check_redis(url: str) -> dict[str, Any]:
    """Check Redis connectivity (sync, run in a thread)."""
    t0 = time.time()
    try:
        r = redis.Redis.from_url(url, socket_timeout=3)
        ping = r.ping()
        return {
            "key": "redis",
            "ok": bool(ping),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
    except redis.RedisError as e:
        return {"key": "redis", "ok": False, "error": str(e)}


async def _check_database() -> dict[str, Any]:
    t0 = time.time()
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        return {"key": "database", "ok": False, "error": str(e)}
    return {"key": "database", "ok": True, "latency_ms": round((time.time() - t0) * 1000, 1)}


async def _check_buckets(services: Services) -> list[dict[str, Any]]:
    s = services.settings
    try:
        names = await services.storage.list_buckets()
    except (GenerationError, httpx.HTTPError) as e:
        return [{"key": "buckets_list", "ok": False, "error": str(e)}]
    return [
        {"key": "bucket_uploads", "expected": s.BUCKET_UPLOADS, "ok": s.BUCKET_UPLOADS in names},
        {"key": "bucket_images", "expected": s.BUCKET_IMAGES, "ok": s.BUCKET_IMAGES in names},
        {"key": "bucket_videos", "expected": s.BUCKET_VIDEOS, "ok": s.BUCKET_VIDEOS in names},
    ]


@router.get("")
async def system_status(ping: bool = False, services: Services = Depends(get_services)):
    """Health descriptor.  ``?ping=1`` answers without touching dependencies."""
    if ping:
        return {"ok": True, "msg": "pong"}

    s = services.settings
    checks: list[dict[str, Any]] = [
        await asyncio.to_thread(_check_redis, s.REDIS_URL),
        await _check_database(),
    ]
    if s.SUPABASE_URL:
        checks.extend(await _check_buckets(services))

    return {
        "ok": all(c["ok"] for c in checks),
        "service": s.APP_NAME,
        "env": {
            "BUCKET_UPLOADS": s.BUCKET_UPLOADS,
            "BUCKET_IMAGES": s.BUCKET_IMAGES,
            "BUCKET_VIDEOS": s.BUCKET_VIDEOS,
            "OUTPUT_PUBLIC": s.OUTPUT_PUBLIC,
        },
        "has_env": has_env(services),
        "checks": checks,
    }
