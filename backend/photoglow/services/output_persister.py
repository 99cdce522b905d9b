"""Output persister: provider output → durable object in our own bucket.

Only the URL issued here is ever returned to callers or stored; upstream
provider URLs are transient.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import httpx

from photoglow.config import Settings
from photoglow.services.errors import StorageError
from photoglow.services.normalizer import MEDIA_VIDEO
from photoglow.services.storage import StorageClient
from photoglow.services.storage_guard import sanitize_segment

logger = logging.getLogger(__name__)

# content-type fragment -> extension, checked in order
_EXTENSIONS = (
    ("png", ".png"),
    ("webp", ".webp"),
    ("jpeg", ".jpg"),
    ("jpg", ".jpg"),
    ("webm", ".webm"),
    ("mp4", ".mp4"),
)


def pick_extension(content_type: str | None, media: str) -> str:
    value = (content_type or "").lower()
    for fragment, ext in _EXTENSIONS:
        if fragment in value:
            return ext
    return ".mp4" if media == MEDIA_VIDEO else ".jpg"


def default_content_type(media: str) -> str:
    return "video/mp4" if media == MEDIA_VIDEO else "image/jpeg"


@dataclass(frozen=True)
class OutputAsset:
    bucket: str
    path: str
    url: str
    content_type: str
    size: int


class OutputPersister:

    def __init__(
        self,
        storage: StorageClient,
        http_client: httpx.AsyncClient,
        settings: Settings,
        today: Callable[[], str] | None = None,
    ) -> None:
        self.storage = storage
        self._http = http_client
        self.settings = settings
        self._today = today or (lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d"))

    def bucket_for(self, media: str) -> str:
        return self.settings.BUCKET_VIDEOS if media == MEDIA_VIDEO else self.settings.BUCKET_IMAGES

    def build_path(self, user_id: str, ext: str) -> str:
        owner = sanitize_segment(user_id)
        return f"{self.settings.OUTPUT_PREFIX}/{owner}/{self._today()}/{uuid.uuid4().hex}{ext}"

    async def download(self, source_url: str, media: str) -> tuple[bytes, str]:
        try:
            resp = await self._http.get(source_url)
        except httpx.HTTPError as e:
            raise StorageError("download_failed", details=str(e)) from e
        if resp.status_code >= 400:
            raise StorageError("download_failed", details=f"status {resp.status_code}")
        content_type = resp.headers.get("content-type") or default_content_type(media)
        return resp.content, content_type.split(";")[0].strip()

    async def persist_url(self, source_url: str, user_id: str, media: str) -> OutputAsset:
        """Download ``source_url`` and store it for ``user_id``."""
        data, content_type = await self.download(source_url, media)
        return await self.persist_bytes(data, content_type, user_id, media)

    async def persist_bytes(
        self,
        data: bytes,
        content_type: str,
        user_id: str,
        media: str,
    ) -> OutputAsset:
        bucket = self.bucket_for(media)
        path = self.build_path(user_id, pick_extension(content_type, media))

        await self.storage.upload(
            bucket,
            path,
            data,
            content_type,
            cache_control=self.settings.CACHE_CONTROL_S,
        )
        if self.settings.OUTPUT_PUBLIC:
            url = self.storage.get_public_url(bucket, path)
        else:
            url = await self.storage.create_signed_url(bucket, path, self.settings.OUTPUT_SIGNED_TTL_S)

        logger.info("Persisted %s output for user %s at %s/%s (%d bytes)", media, user_id, bucket, path, len(data))
        return OutputAsset(bucket=bucket, path=path, url=url, content_type=content_type, size=len(data))
