"""Replicate predictions API.

Targets are either ``owner/name`` (official model endpoint) or
``owner/name:version`` (version-pinned ``/predictions``).
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from photoglow.services.errors import ProviderTransportError

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.replicate.com/v1"
_AUTH_HINT = re.compile(r"401|403|unauthori[sz]ed|auth", re.IGNORECASE)

TERMINAL = frozenset({"succeeded", "failed", "canceled"})


def extract_output_url(output: Any) -> str | None:
    """First usable URL from a prediction ``output`` (string, list or dict)."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, list):
        for item in output:
            url = extract_output_url(item)
            if url:
                return url
        return None
    if isinstance(output, dict):
        for key in ("url", "image", "video", "output"):
            url = extract_output_url(output.get(key))
            if url:
                return url
    return None


class ReplicateClient:

    def __init__(
        self,
        api_token: str,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
    ) -> None:
        self.api_token = api_token
        self.base_url = (base_url or _DEFAULT_BASE_URL).rstrip("/")
        self._http = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def create_prediction(self, target: str, input: dict[str, Any]) -> dict[str, Any]:
        """Submit a prediction; raises ``replicate_auth_error`` / ``replicate_model_error``."""
        if ":" in target:
            url = f"{self.base_url}/predictions"
            body: dict[str, Any] = {"version": target.split(":", 1)[1], "input": input}
        else:
            url = f"{self.base_url}/models/{target}/predictions"
            body = {"input": input}

        try:
            resp = await self._http.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderTransportError("replicate_model_error", details=str(e)) from e

        if resp.status_code in (401, 403):
            raise ProviderTransportError("replicate_auth_error", details=resp.text[:300])
        if resp.status_code >= 400:
            message = resp.text[:300]
            code = "replicate_auth_error" if _AUTH_HINT.search(message) else "replicate_model_error"
            raise ProviderTransportError(code, details=message)

        prediction = resp.json()
        logger.info("Replicate prediction created: %s (model=%s)", prediction.get("id"), target)
        return prediction

    async def get_prediction(self, prediction_id: str) -> dict[str, Any]:
        try:
            resp = await self._http.get(
                f"{self.base_url}/predictions/{prediction_id}", headers=self._headers()
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderTransportError("replicate_poll_error", details=str(e)) from e
        return resp.json()

    async def cancel_prediction(self, prediction_id: str) -> dict[str, Any]:
        try:
            resp = await self._http.post(
                f"{self.base_url}/predictions/{prediction_id}/cancel", headers=self._headers()
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderTransportError("replicate_cancel_error", details=str(e)) from e
        return resp.json()
