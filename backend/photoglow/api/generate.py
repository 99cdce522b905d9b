"""Synchronous image generation and batches: ``/api/v1/jobs``."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from photoglow.api.deps import client_id, current_user, has_env, idempotency_key
from photoglow.schemas import JobRead
from photoglow.services.errors import JobNotFound
from photoglow.services.wiring import Services, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
async def jobs_health(services: Services = Depends(get_services)):
    """Capability descriptor; env presence only."""
    s = services.settings
    return {
        "ok": True,
        "endpoint": "v1-jobs",
        "models": ["flux", "gen4", "gen4-turbo"],
        "modes": ["text2img", "img2img"],
        "bucket": s.BUCKET_IMAGES,
        "output_public": s.OUTPUT_PUBLIC,
        "has_env": has_env(services),
    }


@router.post("")
async def create_job(
    body: Any = Body(None),
    user_id: str = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    client: str = Depends(client_id),
    services: Services = Depends(get_services),
):
    status_code, payload = await services.orchestrator.generate(
        body,
        user_id=user_id,
        idempotency_key=key,
        client_id=client,
        default_mode="text2img",
        default_model="flux",
    )
    return JSONResponse(status_code=status_code, content=payload)


@router.post("/batch")
async def create_batch(
    body: Any = Body(None),
    user_id: str = Depends(current_user),
    key: str | None = Depends(idempotency_key),
    client: str = Depends(client_id),
    services: Services = Depends(get_services),
):
    """``prompts`` x ``num_outputs`` (1..4) images; items fail independently."""
    status_code, payload = await services.orchestrator.generate_batch(
        body,
        user_id=user_id,
        idempotency_key=key,
        client_id=client,
    )
    return JSONResponse(status_code=status_code, content=payload)


@router.get("/{job_id}", response_model=JobRead)
async def get_job(
    job_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Read one job; only its owner can see it."""
    job = await services.store.get_job(job_id)
    if job is None or job.user_id != user_id:
        raise JobNotFound(details=job_id)
    return job
