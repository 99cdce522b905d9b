"""Asynchronous video generation: ``/api/v1/videos``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from photoglow.api.deps import current_user, has_env, idempotency_key
from photoglow.services.wiring import Services, get_services

router = APIRouter()


@router.get("")
async def videos_health(services: Services = Depends(get_services)):
    s = services.settings
    return {
        "ok": True,
        "endpoint": "v1-videos",
        "models": ["sora-2", "sora-2-pro"],
        "modes": ["text2video", "image2video", "storyboard"],
        "bucket": s.BUCKET_VIDEOS,
        "output_public": s.OUTPUT_PUBLIC,
        "has_env": has_env(services),
    }


@router.post("")
async def create_video(
    body: Any = Body(None),
    user_id: str = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    services: Services = Depends(get_services),
):
    status_code, payload = await services.orchestrator.generate(
        body,
        user_id=user_id,
        idempotency_key=key,
        default_mode="text2video",
        default_model="sora-2",
    )
    return JSONResponse(status_code=status_code, content=payload)
