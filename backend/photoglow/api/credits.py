"""Caller credit balance."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from photoglow.api.deps import current_user
from photoglow.services.wiring import Services, get_services

router = APIRouter()


@router.get("")
async def get_balance(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    credits = await services.ledger.balance(user_id)
    return {"ok": True, "user_id": user_id, "credits": credits}
