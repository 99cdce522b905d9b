"""Credit-free preview path over Pollinations.

Modes:
  preview (default) → provider URL for direct display, nothing stored
  proxy             → image bytes relayed to the caller
  save              → image persisted to the output bucket, stored URL only
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from photoglow.services.errors import ProviderRejected, RateLimited, ValidationFailed
from photoglow.services.guards import IdempotencyCache, SlidingWindowRateLimiter
from photoglow.services.normalizer import MEDIA_IMAGE, is_truthy
from photoglow.services.output_persister import OutputPersister
from photoglow.services.providers.pollinations import (
    PollinationsClient,
    PreviewImage,
    build_prompt_from_attrs,
    clamp,
    dims_from,
    looks_sleeveless,
    sanitize_prompt_safe,
)

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


@dataclass
class PreviewOptions:
    prompt: str
    width: int
    height: int
    ratio: str
    fast: bool
    safe: bool
    seed: int | None
    sleeveless: bool
    mode: str

    @classmethod
    def from_body(cls, body: Any) -> PreviewOptions:
        if not isinstance(body, dict):
            raise ValidationFailed("invalid_body")

        fast = is_truthy(body["fast"]) if "fast" in body else True
        ratio = body.get("ratio") if isinstance(body.get("ratio"), str) else "1:1"
        px = clamp(body.get("px") if body.get("px") is not None else (384 if fast else 512), 128, 1024)
        width, height = dims_from(ratio, px)

        seed = body.get("seed")
        if isinstance(seed, bool) or not isinstance(seed, (int, float)) or not math.isfinite(seed):
            seed = None
        else:
            seed = int(math.floor(seed))

        given = body.get("prompt")
        prompt = given.strip() if isinstance(given, str) and len(given.strip()) >= 3 else build_prompt_from_attrs(body)

        if is_truthy(body.get("save")):
            mode = "save"
        elif is_truthy(body.get("proxy")):
            mode = "proxy"
        else:
            mode = "preview"

        return cls(
            prompt=prompt,
            width=width,
            height=height,
            ratio=ratio,
            fast=fast,
            safe=is_truthy(body["safe"]) if "safe" in body else True,
            seed=seed,
            sleeveless=looks_sleeveless(body, prompt),
            mode=mode,
        )


class PreviewService:

    def __init__(
        self,
        client: PollinationsClient,
        persister: OutputPersister,
        idempotency: IdempotencyCache,
        rate_limiter: SlidingWindowRateLimiter,
    ) -> None:
        self.client = client
        self.persister = persister
        self.idempotency = idempotency
        self.rate_limiter = rate_limiter

    async def handle(
        self,
        body: Any,
        *,
        client_id: str,
        idempotency_key: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any] | PreviewImage:
        """Returns a JSON payload, or raw image bytes in proxy mode."""
        caller = user_id or ANONYMOUS
        cached = self.idempotency.get(caller, idempotency_key)
        if cached is not None:
            return cached.body
        if not self.rate_limiter.allow(client_id):
            raise RateLimited()

        opts = PreviewOptions.from_body(body)
        timeout = 15.0 if opts.fast else 25.0

        if opts.mode == "proxy":
            return await self._proxy(opts)

        if opts.mode == "save":
            image = await self.client.render_with_retry(
                opts.prompt, opts.width, opts.height,
                safe=opts.safe, fast=opts.fast, seed=opts.seed,
                sleeveless=opts.sleeveless, timeout=timeout,
            )
            asset = await self.persister.persist_bytes(
                image.data, image.content_type or "image/jpeg", caller, MEDIA_IMAGE
            )
            result = {
                "ok": True,
                "mode": "save",
                "image_url": asset.url,
                "meta": {
                    "width": opts.width,
                    "height": opts.height,
                    "seed": opts.seed,
                    "ratio": opts.ratio,
                    "fast": opts.fast,
                    "safe": opts.safe,
                },
            }
        else:
            prompt = sanitize_prompt_safe(opts.prompt) if opts.safe else opts.prompt
            result = {
                "ok": True,
                "mode": "preview",
                "provider_url": self.client.provider_url(
                    prompt, opts.width, opts.height, safe=opts.safe, fast=opts.fast, seed=opts.seed
                ),
                "width": opts.width,
                "height": opts.height,
                "seed": opts.seed,
            }

        self.idempotency.put(caller, idempotency_key, 200, result)
        return result

    async def _proxy(self, opts: PreviewOptions) -> PreviewImage:
        timeout = 12.0 if opts.fast else 20.0
        try:
            return await self.client.render_with_retry(
                opts.prompt, opts.width, opts.height,
                safe=opts.safe, fast=opts.fast, seed=opts.seed,
                sleeveless=opts.sleeveless, timeout=timeout,
            )
        except ProviderRejected:
            # GET form as a last resort
            prompt = sanitize_prompt_safe(opts.prompt) if opts.safe else opts.prompt
            url = self.client.provider_url(
                prompt, opts.width, opts.height, safe=opts.safe, fast=opts.fast, seed=opts.seed
            )
            fetched = await self.client.fetch_url(url, timeout=timeout)
            if isinstance(fetched, PreviewImage):
                return fetched
            raise
