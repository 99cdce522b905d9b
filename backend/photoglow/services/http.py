"""Shared httpx client used by every remote gateway."""

from __future__ import annotations

import httpx

# Module-level httpx client for connection reuse (lazy init)
_http_client: httpx.AsyncClient | None = None


def get_http_client(timeout: float = 60.0) -> httpx.AsyncClient:
    """Return a module-level httpx.AsyncClient, creating it on first use."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None
