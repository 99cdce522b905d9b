"""Kie Sora-2 task API (async video provider).

Tasks are created with a ``callBackUrl``; Kie later POSTs
``{taskId, status: success|fail|generating, videoUrl}`` to it.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from photoglow.services.errors import ProviderTransportError

logger = logging.getLogger(__name__)


class KieClient:

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.kie.ai",
        create_path: str = "/api/v1/sora/createTask",
        detail_path: str = "/api/v1/sora/record-detail",
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.create_path = create_path
        self.detail_path = detail_path
        self._http = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def create_task(self, payload: dict[str, Any]) -> str:
        """Create a Sora-2 task and return its ``taskId``."""
        try:
            resp = await self._http.post(
                f"{self.base_url}{self.create_path}", json=payload, headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise ProviderTransportError("provider_error", details=str(e)) from e

        try:
            result = resp.json()
        except ValueError:
            result = None
        task_id = ((result or {}).get("data") or {}).get("taskId") if isinstance(result, dict) else None
        if resp.status_code >= 400 or not task_id:
            raise ProviderTransportError("provider_error", details=result or resp.text[:300])

        logger.info("Kie Sora-2 task created: %s (model=%s)", task_id, payload.get("model"))
        return str(task_id)

    async def get_record(self, task_id: str) -> dict[str, Any]:
        """Return the task record as ``{status, video_url, raw}``.

        ``status`` is normalized to success / fail / generating.
        """
        try:
            resp = await self._http.get(
                f"{self.base_url}{self.detail_path}",
                params={"taskId": task_id},
                headers=self._headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderTransportError("provider_error", details=str(e)) from e

        data = (resp.json() or {}).get("data") or {}
        state = str(data.get("state") or data.get("status") or "").lower()
        if state in ("success", "succeeded", "completed"):
            status = "success"
        elif state in ("fail", "failed", "error"):
            status = "fail"
        else:
            status = "generating"

        video_url = data.get("videoUrl")
        if not video_url:
            urls = data.get("resultUrls") or (data.get("response") or {}).get("resultUrls") or []
            video_url = urls[0] if urls else None
        return {"status": status, "video_url": video_url, "raw": data}
