"""Reference resolver: classified references → fetchable URLs.

Direct URLs pass through untouched.  Storage locators go through the storage
guard first; rejected ones are dropped without ever reaching the storage
service.  Accepted locators receive a short-lived signed URL, or a public URL
when signing fails and the bucket is public.
"""

from __future__ import annotations

import logging

from photoglow.config import Settings
from photoglow.services.errors import StorageError
from photoglow.services.normalizer import (
    MAX_REFERENCES,
    REF_DIRECT_URL,
    ReferenceEntry,
)
from photoglow.services.storage import StorageClient
from photoglow.services.storage_guard import PathRejected, guard_locator

logger = logging.getLogger(__name__)


class ReferenceResolver:

    def __init__(self, storage: StorageClient, settings: Settings) -> None:
        self.storage = storage
        self.settings = settings

    async def resolve(self, entries: list[ReferenceEntry], user_id: str) -> list[str]:
        """Return at most three URLs, preserving input order."""
        urls: list[str] = []
        for entry in entries[:MAX_REFERENCES]:
            url = await self._resolve_one(entry, user_id)
            if url and url not in urls:
                urls.append(url)
        return urls

    async def _resolve_one(self, entry: ReferenceEntry, user_id: str) -> str | None:
        if entry.kind == REF_DIRECT_URL:
            return entry.raw

        try:
            locator = guard_locator(entry.bucket or "", entry.path or "", user_id, self.settings)
        except PathRejected as e:
            logger.warning("Reference rejected for user %s: %s", user_id, e)
            return None

        try:
            return await self.storage.create_signed_url(
                locator.bucket, locator.path, self.settings.REFERENCE_SIGNED_TTL_S
            )
        except StorageError as e:
            if locator.bucket in self.settings.public_buckets:
                logger.info("Signing failed for %s/%s, using public URL", locator.bucket, locator.path)
                return self.storage.get_public_url(locator.bucket, locator.path)
            logger.warning("Reference dropped, could not sign %s/%s: %s", locator.bucket, locator.path, e)
            return None
