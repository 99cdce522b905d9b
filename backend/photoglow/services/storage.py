"""Object storage gateway for a Supabase-compatible Storage REST API.

Covers the four operations the orchestrator needs:
  upload → public URL / signed URL → signed upload URL
plus a bucket listing for the health endpoint.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from photoglow.services.errors import StorageError

logger = logging.getLogger(__name__)


def _quote_path(path: str) -> str:
    return quote(path.lstrip("/"), safe="/")


class StorageClient:
    """Thin async client over ``<base>/storage/v1``."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._http = http_client

    @property
    def _api(self) -> str:
        return f"{self.base_url}/storage/v1"

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        headers.update(extra)
        return headers

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        cache_control: int | None = None,
        upsert: bool = False,
    ) -> str:
        """Store ``data`` at ``bucket/path`` and return the path."""
        headers = self._headers(**{
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        })
        if cache_control is not None:
            headers["cache-control"] = f"max-age={cache_control}"

        url = f"{self._api}/object/{bucket}/{_quote_path(path)}"
        try:
            resp = await self._http.post(url, content=data, headers=headers)
        except httpx.HTTPError as e:
            raise StorageError("upload_failed", details=str(e)) from e
        if resp.status_code >= 400:
            raise StorageError("upload_failed", details=_error_text(resp))

        logger.debug("Uploaded %d bytes to %s/%s", len(data), bucket, path)
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self._api}/object/public/{bucket}/{_quote_path(path)}"

    async def create_signed_url(self, bucket: str, path: str, ttl: int) -> str:
        """Return a time-limited read URL for a private object."""
        url = f"{self._api}/object/sign/{bucket}/{_quote_path(path)}"
        try:
            resp = await self._http.post(
                url, json={"expiresIn": int(ttl)}, headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise StorageError("signed_url_failed", details=str(e)) from e
        if resp.status_code >= 400:
            raise StorageError("signed_url_failed", details=_error_text(resp))

        body = resp.json()
        signed = body.get("signedURL") or body.get("signedUrl")
        if not signed:
            raise StorageError("signed_url_failed", details="empty signedURL")
        if signed.startswith("http"):
            return signed
        return f"{self._api}{signed}"

    async def create_signed_upload_url(self, bucket: str, path: str) -> dict[str, str]:
        """Return ``{"path", "signed_url", "token"}`` for a direct client upload."""
        url = f"{self._api}/object/upload/sign/{bucket}/{_quote_path(path)}"
        try:
            resp = await self._http.post(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise StorageError("signed_upload_failed", details=str(e)) from e
        if resp.status_code >= 400:
            raise StorageError("signed_upload_failed", details=_error_text(resp))

        signed = resp.json().get("url", "")
        token = httpx.URL(signed).params.get("token", "") if signed else ""
        return {
            "path": path,
            "signed_url": f"{self._api}{signed}" if signed.startswith("/") else signed,
            "token": token,
        }

    async def list_buckets(self) -> list[str]:
        resp = await self._http.get(f"{self._api}/bucket", headers=self._headers())
        resp.raise_for_status()
        return [b.get("name", "") for b in resp.json()]


def _error_text(resp: httpx.Response) -> str:
    try:
        body: Any = resp.json()
    except ValueError:
        return f"status {resp.status_code}: {resp.text[:200]}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]
