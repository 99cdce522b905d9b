"""WebSocket endpoint for live job status.

Relays Redis Pub/Sub job updates to the job's owner.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from photoglow.services.errors import GenerationError
from photoglow.services.pubsub import listen_pubsub, subscribe_job
from photoglow.services.wiring import Services, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/jobs/{job_id}")
async def ws_job(
    ws: WebSocket,
    job_id: str,
    token: str = "",
    services: Services = Depends(get_services),
):
    """Owner-only stream of ``job_update`` messages; answers ``ping`` with ``pong``."""
    try:
        user_id = await services.auth.get_user_id(token)
        job = await services.store.get_job(job_id)
    except GenerationError:
        await ws.close(code=4401)
        return
    if job is None or job.user_id != user_id:
        await ws.close(code=4404)
        return

    await ws.accept()
    await ws.send_json({"type": "job_update", "job_id": job_id, "status": job.status, "output_url": job.output_url})

    pubsub = None
    listener_task = None
    try:
        pubsub = await subscribe_job(job_id)
        listener_task = asyncio.create_task(_relay_pubsub_to_ws(pubsub, ws, job_id))
        while True:
            data = await ws.receive_text()
            if data == "ping":
                await ws.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("WS disconnected: job=%s", job_id)
    except Exception as exc:
        logger.warning("WS error for job=%s: %s", job_id, exc)
    finally:
        if listener_task:
            listener_task.cancel()
        if pubsub:
            await pubsub.unsubscribe()
            await pubsub.aclose()


async def _relay_pubsub_to_ws(pubsub, ws: WebSocket, job_id: str):
    """Background task: forward Pub/Sub messages to the client."""
    try:
        async for message in listen_pubsub(pubsub):
            await ws.send_json(message)
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        logger.warning("Pub/Sub relay error for job=%s: %s", job_id, exc)
