"""Storage path sanitation and tenant isolation.

A storage locator is accepted only when:
  - its bucket is whitelisted,
  - every path segment survives sanitation (no empty, ``.`` or ``..``),
  - for tenant-scoped buckets, the sanitized path starts with the caller's
    own prefix.

Anything else raises ``PathRejected`` before the storage service is contacted.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from photoglow.config import Settings

_DISALLOWED = re.compile(r"[^A-Za-z0-9._-]")
_DASH_RUN = re.compile(r"-{2,}")
_DOT_RUN = re.compile(r"\.{2,}")
_FORBIDDEN_SEGMENTS = {"", ".", ".."}


class PathRejected(ValueError):
    """A storage locator failed sanitation or tenant checks."""


@dataclass(frozen=True)
class StorageLocator:
    bucket: str
    path: str


def sanitize_segment(segment: str) -> str:
    """Return a storage-safe version of one path segment.

    Raises PathRejected for empty, ``.`` or ``..`` segments, before or after
    sanitation.
    """
    if segment.strip() in _FORBIDDEN_SEGMENTS:
        raise PathRejected(f"forbidden path segment: {segment!r}")

    decomposed = unicodedata.normalize("NFKD", segment)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _DISALLOWED.sub("-", ascii_only)
    cleaned = _DASH_RUN.sub("-", cleaned)
    cleaned = _DOT_RUN.sub(".", cleaned)
    cleaned = cleaned.strip("-")

    if cleaned in _FORBIDDEN_SEGMENTS:
        raise PathRejected(f"segment sanitizes to nothing: {segment!r}")
    return cleaned


def sanitize_path(path: str) -> str:
    """Sanitize every segment of a ``/``-separated object path."""
    normalized = path.replace("\\", "/").strip()
    if normalized.startswith("/"):
        normalized = normalized[1:]
    if not normalized:
        raise PathRejected("empty path")
    return "/".join(sanitize_segment(seg) for seg in normalized.split("/"))


def tenant_prefix(bucket: str, user_id: str, settings: Settings) -> str | None:
    """Return the mandatory path prefix for ``bucket``, or None if unscoped."""
    owner = sanitize_segment(user_id)
    if bucket == settings.BUCKET_UPLOADS:
        return f"{settings.UPLOAD_PREFIX}/{owner}/"
    if bucket in (settings.BUCKET_IMAGES, settings.BUCKET_VIDEOS):
        return f"{settings.OUTPUT_PREFIX}/{owner}/"
    return None


def guard_locator(
    bucket: str,
    path: str,
    user_id: str,
    settings: Settings,
) -> StorageLocator:
    """Validate a raw (bucket, path) pair for ``user_id``."""
    bucket = bucket.strip()
    if bucket not in settings.resolvable_buckets:
        raise PathRejected(f"bucket not resolvable: {bucket!r}")

    clean_path = sanitize_path(path)
    prefix = tenant_prefix(bucket, user_id, settings)
    if prefix and not clean_path.startswith(prefix):
        raise PathRejected(f"path outside tenant prefix {prefix!r}")
    return StorageLocator(bucket=bucket, path=clean_path)
