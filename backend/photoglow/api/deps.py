"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends, Header, Request

from photoglow.services.auth import bearer_token
from photoglow.services.guards import client_id_from_headers
from photoglow.services.wiring import Services, get_services


async def current_user(
    authorization: str | None = Header(None),
    services: Services = Depends(get_services),
) -> str:
    """Resolve the bearer token to a user id; 401 otherwise."""
    return await services.auth.get_user_id(bearer_token(authorization))


def client_id(request: Request) -> str:
    peer = request.client.host if request.client else None
    return client_id_from_headers(request.headers, peer)


def idempotency_key(idempotency_key: str | None = Header(None, alias="Idempotency-Key")) -> str | None:
    return idempotency_key


def has_env(services: Services) -> dict[str, bool]:
    """Presence of each secret, never its value."""
    s = services.settings
    return {
        "SUPABASE_URL": bool(s.SUPABASE_URL),
        "SUPABASE_ANON_KEY": bool(s.SUPABASE_ANON_KEY),
        "SUPABASE_SERVICE_ROLE_KEY": bool(s.SUPABASE_SERVICE_ROLE_KEY),
        "REPLICATE_API_TOKEN": bool(s.REPLICATE_API_TOKEN),
        "KIE_API_KEY": bool(s.KIE_API_KEY),
        "KIE_WEBHOOK_URL": bool(s.KIE_WEBHOOK_URL),
        "WEBHOOK_SHARED_SECRET": bool(s.WEBHOOK_SHARED_SECRET),
    }
