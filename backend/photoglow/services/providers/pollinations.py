"""Pollinations image API, used by the credit-free preview path."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from photoglow.services.errors import ProviderRejected

logger = logging.getLogger(__name__)

_DEFAULT_URL = "https://image.pollinations.ai/prompt"
_IMAGE_TYPE = re.compile(r"image/(jpeg|jpg|png|webp)", re.IGNORECASE)
_NSFW_HINT = re.compile(r"nsfw|safe mode|cannot be fulfilled", re.IGNORECASE)
_SLEEVELESS = re.compile(r"sleeveless|tank|strap")

_TRIGGERS = [
    re.compile(r"\bbalanced\s*chest\s*profile\b", re.IGNORECASE),
    re.compile(r"\bfuller\s*hips?\b", re.IGNORECASE),
    re.compile(r"\bcleavage\b", re.IGNORECASE),
    re.compile(r"\bbust(?:\s*size)?\b", re.IGNORECASE),
    re.compile(r"\bbutt(?:\s*size)?\b", re.IGNORECASE),
    re.compile(r"\bcurvy\b", re.IGNORECASE),
]

_BACKGROUNDS = {
    "studio": "white studio background",
    "office": "modern office background",
    "city": "urban daylight background",
    "nature": "outdoor nature background",
}
_HAIR_LENGTHS = {"short": "short", "medium": "medium-length", "long": "long", "bald": "bald"}


def clamp(value: Any, low: int, high: int) -> int:
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        number = 0.0
    if not math.isfinite(number):
        number = 0.0
    return max(low, min(high, int(math.floor(number))))


def dims_from(ratio: str = "1:1", px: Any = 384) -> tuple[int, int]:
    """(width, height) for a preview; only 3:4 is non-square."""
    size = clamp(px, 128, 1024)
    if ratio == "3:4":
        return max(64, round(0.75 * size)), size
    return size, size


def sanitize_prompt_safe(prompt: str) -> str:
    """Soften wording that commonly trips the provider's safety filter."""
    text = str(prompt or "")
    text = re.sub(r"\bfitted\b", "regular fit", text, flags=re.IGNORECASE)
    text = re.sub(r"\btank\s*top\b", "crew-neck tee", text, flags=re.IGNORECASE)
    for pattern in _TRIGGERS:
        text = pattern.sub("natural proportions", text)
    text = re.sub(r"shoulders-up\s*or\s*waist-up", "shoulders-up", text, flags=re.IGNORECASE)
    return text.strip()


def looks_sleeveless(attrs: dict[str, Any], prompt: str) -> bool:
    outfit = str(attrs.get("outfit") or "").lower()
    return bool(_SLEEVELESS.search(outfit) or _SLEEVELESS.search(str(prompt or "").lower()))


def build_prompt_from_attrs(attrs: dict[str, Any]) -> str:
    """Portrait prompt assembled from form attributes when no prompt is given."""
    gender = "man" if attrs.get("gender") == "man" else "woman"
    outfit = str(attrs.get("outfit") or "tee")
    outfit = re.sub(r"fitted", "regular fit", outfit, flags=re.IGNORECASE)
    outfit = re.sub(r"tank\s*top", "crew-neck tee", outfit, flags=re.IGNORECASE)

    hair_length = attrs.get("hair_length")
    hair_color = attrs.get("hair_color") or ""
    if hair_length:
        hair = f"{_HAIR_LENGTHS.get(hair_length, hair_length)} {hair_color} hair".replace("  ", " ")
    elif hair_color:
        hair = f"{hair_color} hair"
    else:
        hair = None

    parts = [
        "photorealistic portrait, instagram influencer aesthetic",
        f"youthful adult (25-35) {gender}",
        f"{attrs['skin_tone']} skin" if attrs.get("skin_tone") else None,
        f"{attrs['body_type']} build" if attrs.get("body_type") else None,
        hair,
        f"{attrs['eye_color']} eyes" if attrs.get("eye_color") else None,
        f"wearing {outfit}",
        f"{attrs['mood']} look" if attrs.get("mood") else None,
        "looking at camera",
        _BACKGROUNDS.get(attrs.get("background") or "studio", _BACKGROUNDS["studio"]),
        "soft beauty lighting, 85mm portrait look, shallow depth of field",
        "shoulders-up, clean framing",
        "natural skin texture, studio-quality retouching",
        "no watermark, no text, no celebrity likeness",
    ]
    return ", ".join(p for p in parts if p)


@dataclass
class PreviewImage:
    data: bytes
    content_type: str


@dataclass
class PollinationsFailure:
    status: int
    text: str

    @property
    def is_nsfw(self) -> bool:
        return bool(_NSFW_HINT.search(self.text or ""))


class PollinationsClient:

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
        token: str = "",
    ) -> None:
        self.base_url = (base_url or _DEFAULT_URL).rstrip("/")
        self.token = token
        self._http = http_client

    def provider_url(
        self,
        prompt: str,
        width: int,
        height: int,
        *,
        safe: bool = True,
        fast: bool = True,
        seed: int | None = None,
        model: str = "flux",
    ) -> str:
        params = {
            "model": model,
            "width": str(clamp(width, 64, 1792)),
            "height": str(clamp(height, 64, 1792)),
            "enhance": "false" if fast else "true",
            "nologo": "true",
            "nofeed": "true",
            "private": "true",
            "safe": "true" if safe else "false",
            "quality": "medium" if fast else "high",
        }
        if seed is not None:
            params["seed"] = str(seed)
        return f"{self.base_url}/{quote(prompt, safe='')}?{urlencode(params)}"

    async def render(
        self,
        prompt: str,
        width: int,
        height: int,
        *,
        safe: bool = True,
        fast: bool = True,
        seed: int | None = None,
        timeout: float = 15.0,
    ) -> PreviewImage | PollinationsFailure:
        """POST a render request; never raises on provider refusal."""
        body: dict[str, Any] = {
            "prompt": prompt,
            "width": clamp(width, 64, 1792),
            "height": clamp(height, 64, 1792),
            "model": "flux",
            "enhance": not fast,
            "nologo": True,
            "nofeed": True,
            "transparent": False,
            "safe": bool(safe),
            "quality": "medium" if fast else "high",
        }
        if seed is not None:
            body["seed"] = seed
        headers = {
            "Accept": "image/jpeg,image/png;q=0.9,application/json;q=0.5,*/*;q=0.8",
            "User-Agent": "Photoglow-Preview/1.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            resp = await self._http.post(self.base_url, json=body, headers=headers, timeout=timeout)
        except httpx.HTTPError as e:
            return PollinationsFailure(status=502, text=str(e))
        return _as_result(resp)

    async def fetch_url(self, url: str, timeout: float = 12.0) -> PreviewImage | PollinationsFailure:
        try:
            resp = await self._http.get(
                url, headers={"Accept": "image/jpeg,image/png,image/webp;q=0.9,*/*;q=0.8"}, timeout=timeout
            )
        except httpx.HTTPError as e:
            return PollinationsFailure(status=502, text=str(e))
        return _as_result(resp)

    async def render_with_retry(
        self,
        base_prompt: str,
        width: int,
        height: int,
        *,
        safe: bool,
        fast: bool,
        seed: int | None,
        sleeveless: bool,
        timeout: float,
    ) -> PreviewImage:
        """Render, retrying once with a softened prompt on an NSFW refusal.

        A sleeveless outfit gets one last unsafe attempt.  Raises
        ``pollinations_failed`` when every attempt fails.
        """
        first_prompt = sanitize_prompt_safe(base_prompt) if safe else base_prompt
        result = await self.render(first_prompt, width, height, safe=safe, fast=fast, seed=seed, timeout=timeout)

        if isinstance(result, PollinationsFailure) and safe and result.is_nsfw:
            softer = re.sub(r"\bsleeveless\b", "short-sleeve", sanitize_prompt_safe(base_prompt), flags=re.IGNORECASE)
            logger.info("Pollinations NSFW refusal, retrying with softened prompt")
            result = await self.render(softer, width, height, safe=True, fast=fast, seed=seed, timeout=timeout)
            if isinstance(result, PollinationsFailure) and result.is_nsfw and sleeveless:
                result = await self.render(softer, width, height, safe=False, fast=fast, seed=seed, timeout=timeout)

        if isinstance(result, PollinationsFailure):
            raise ProviderRejected(
                "pollinations_failed",
                details={"status": result.status, "text": result.text[:300], "safe_was": safe},
            )
        return result


def _as_result(resp: httpx.Response) -> PreviewImage | PollinationsFailure:
    content_type = resp.headers.get("content-type", "")
    if resp.status_code < 400 and _IMAGE_TYPE.search(content_type):
        return PreviewImage(data=resp.content, content_type=content_type or "image/jpeg")
    return PollinationsFailure(status=resp.status_code if resp.status_code >= 400 else 502, text=resp.text[:500])
