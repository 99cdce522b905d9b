"""Model catalogue: ``/api/v1/models``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from photoglow.services.providers.router import list_models

router = APIRouter()


@router.get("")
async def get_models() -> dict[str, Any]:
    """Logical models accepted by the jobs and videos endpoints."""
    return {"ok": True, "models": list_models()}
