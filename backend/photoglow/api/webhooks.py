"""Provider callbacks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from photoglow.schemas import KieCallback
from photoglow.services.webhook_driver import verify_callback
from photoglow.services.wiring import Services, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/kie-sora2")
async def kie_sora2_callback(
    callback: KieCallback,
    request: Request,
    services: Services = Depends(get_services),
):
    """Kie posts ``{taskId, status, videoUrl}``; the job id rides in the query."""
    params = dict(request.query_params)
    verify_callback(params, services.settings.WEBHOOK_SHARED_SECRET)
    logger.info("Kie callback job=%s task=%s status=%s", params.get("job_id"), callback.taskId, callback.status)
    return await services.webhooks.handle_callback(
        params.get("job_id"), callback.model_dump()
    )
