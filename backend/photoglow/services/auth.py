"""Bearer token → caller identity, via the auth service ``/auth/v1/user``."""

from __future__ import annotations

import logging

import httpx

from photoglow.services.errors import AuthError

logger = logging.getLogger(__name__)


def bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("missing_bearer_token")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthError("missing_bearer_token")
    return token


class AuthGateway:

    def __init__(self, base_url: str, anon_key: str, http_client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self._http = http_client

    async def get_user_id(self, token: str) -> str:
        try:
            resp = await self._http.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("Auth service unreachable: %s", e)
            raise AuthError("invalid_token") from e

        if resp.status_code != 200:
            raise AuthError("invalid_token")
        user_id = (resp.json() or {}).get("id")
        if not user_id:
            raise AuthError("invalid_token")
        return str(user_id)
