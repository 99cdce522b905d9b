"""Credit-free previews: ``/api/v1/preview``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import Response

from photoglow.api.deps import client_id, idempotency_key
from photoglow.services.providers.pollinations import PreviewImage
from photoglow.services.wiring import Services, get_services

router = APIRouter()


@router.post("")
async def create_preview(
    body: Any = Body(None),
    key: str | None = Depends(idempotency_key),
    client: str = Depends(client_id),
    services: Services = Depends(get_services),
):
    result = await services.preview.handle(body, client_id=client, idempotency_key=key)
    if isinstance(result, PreviewImage):
        return Response(
            content=result.data,
            media_type=result.content_type or "image/jpeg",
            headers={"Cache-Control": "no-store, max-age=0"},
        )
    return result
