"""Request normalizer: raw JSON payload → canonical GenerationRequest.

All violations raise ``ValidationFailed`` subclasses with a stable code; the
normalizer performs no I/O, so nothing has been reserved or called yet when
it fails.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any

from photoglow.services.errors import ValidationFailed

logger = logging.getLogger(__name__)

MAX_REFERENCES = 3
MAX_STORYBOARD_SHOTS = 12

MODE_TEXT = "text2media"
MODE_IMAGE = "image2media"

MEDIA_IMAGE = "image"
MEDIA_VIDEO = "video"

# wire mode -> (canonical mode, media kind)
_MODES: dict[str, tuple[str, str]] = {
    "text2img": (MODE_TEXT, MEDIA_IMAGE),
    "img2img": (MODE_IMAGE, MEDIA_IMAGE),
    "text2video": (MODE_TEXT, MEDIA_VIDEO),
    "image2video": (MODE_IMAGE, MEDIA_VIDEO),
    "storyboard": (MODE_TEXT, MEDIA_VIDEO),
    "text2media": (MODE_TEXT, MEDIA_IMAGE),
    "image2media": (MODE_IMAGE, MEDIA_IMAGE),
}

_RATIO_RE = re.compile(r"^\s*(\d{1,2})\s*:\s*(\d{1,2})\s*$")
_RATIO_TOKENS = {"match_input_image", "landscape", "portrait"}

REF_DIRECT_URL = "direct-url"
REF_STORAGE = "storage-locator"


@dataclass(frozen=True)
class ReferenceEntry:
    """A caller-supplied reference image, classified but not yet resolved."""
    kind: str
    raw: str
    bucket: str | None = None
    path: str | None = None


@dataclass
class GenerationRequest:
    """Canonical request handed to the rest of the pipeline."""
    mode: str
    media: str
    wire_mode: str
    model: str
    prompt: str
    user_id: str
    model_path: str | None = None
    negative_prompt: str | None = None
    aspect_ratio: str | None = None
    seed: int | None = None
    guidance: float | None = None
    prompt_strength: float | None = None
    references: list[ReferenceEntry] = field(default_factory=list)
    idempotency_key: str | None = None
    test_mode: bool = False
    # video options
    duration: int | None = None
    quality: str | None = None
    remove_watermark: bool = False
    shots: list[Any] = field(default_factory=list)
    # passthrough metadata echoed back in responses
    preset_id: str | None = None
    preset_version: str | None = None


def is_truthy(value: Any) -> bool:
    return value is True or value in ("true", "1", 1)


def normalize_seed(value: Any) -> int | None:
    """Integer >= 0, or None when absent, negative or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return int(math.floor(number))


def normalize_float(value: Any) -> float | None:
    """Finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_aspect_ratio(value: Any) -> str | None:
    """Canonical ``W:H`` string, a known token, or None when absent.

    Raises ``invalid_aspect_ratio`` when the value is present but is not a
    ratio at all.  Whether the ratio is supported is decided later by the
    chosen provider variant, which falls back to its own default.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationFailed("invalid_aspect_ratio", details=str(value)[:40])
    token = value.strip().lower()
    if token in _RATIO_TOKENS:
        return token
    m = _RATIO_RE.match(token)
    if not m or int(m.group(1)) == 0 or int(m.group(2)) == 0:
        raise ValidationFailed("invalid_aspect_ratio", details=value[:40])
    return f"{int(m.group(1))}:{int(m.group(2))}"


def classify_reference(raw: Any) -> ReferenceEntry | None:
    """Classify one raw reference; returns None for unusable values."""
    if isinstance(raw, dict):
        bucket = str(raw.get("bucket") or "").strip()
        path = str(raw.get("path") or "").strip()
        if bucket and path:
            return ReferenceEntry(REF_STORAGE, f"{bucket}/{path}", bucket, path)
        url = raw.get("url")
        return classify_reference(url) if url else None

    if not isinstance(raw, str) or not raw.strip():
        return None
    value = raw.strip()

    if value.lower().startswith(("http://", "https://")):
        return ReferenceEntry(REF_DIRECT_URL, value)

    if value.startswith("storage://"):
        value = value[len("storage://"):]
    bucket, _, path = value.partition("/")
    if not bucket or not path:
        logger.debug("Unusable reference dropped: %r", raw)
        return None
    return ReferenceEntry(REF_STORAGE, raw.strip(), bucket, path)


def _collect_references(body: dict[str, Any]) -> list[ReferenceEntry]:
    raw_items: list[Any] = []
    for key in ("reference_images", "image_urls"):
        value = body.get(key)
        if isinstance(value, list):
            raw_items.extend(value)
        elif value:
            raw_items.append(value)
    if body.get("image_url"):
        raw_items.append(body["image_url"])
    if body.get("input_image"):
        raw_items.append(body["input_image"])

    entries: list[ReferenceEntry] = []
    seen: set[str] = set()
    for item in raw_items:
        entry = classify_reference(item)
        if entry is None or entry.raw in seen:
            continue
        seen.add(entry.raw)
        entries.append(entry)
        if len(entries) >= MAX_REFERENCES:
            break
    return entries


def _opt_str(value: Any, limit: int = 2000) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text[:limit] or None


def normalize_request(
    body: Any,
    *,
    user_id: str,
    idempotency_key: str | None = None,
    default_mode: str = "text2img",
    default_model: str = "flux",
    known_models: frozenset[str] | set[str] = frozenset(),
) -> GenerationRequest:
    """Validate and canonicalize an inbound generation payload."""
    if not isinstance(body, dict):
        raise ValidationFailed("invalid_body")

    wire_mode = str(body.get("mode") or default_mode).strip().lower()
    if wire_mode not in _MODES:
        raise ValidationFailed("invalid_mode", status_code=422)
    mode, media = _MODES[wire_mode]

    model = str(body.get("model") or default_model).strip()
    model_path = _opt_str(body.get("model_path"), 255)
    if not model_path and known_models and model not in known_models:
        if "/" in model:
            model_path = model
        else:
            raise ValidationFailed("invalid_model", details=model[:80], status_code=422)

    prompt = _opt_str(body.get("prompt_final")) or _opt_str(body.get("prompt")) or ""
    if mode == MODE_TEXT and not prompt:
        raise ValidationFailed("missing_prompt")

    shots: list[Any] = []
    if wire_mode == "storyboard":
        raw_shots = body.get("shots")
        shots = list(raw_shots)[:MAX_STORYBOARD_SHOTS] if isinstance(raw_shots, list) else []

    duration = normalize_seed(body.get("n_frames") if body.get("n_frames") is not None else body.get("duration"))

    return GenerationRequest(
        mode=mode,
        media=media,
        wire_mode=wire_mode,
        model=model,
        model_path=model_path,
        prompt=prompt,
        user_id=user_id,
        negative_prompt=_opt_str(body.get("negative_prompt")),
        aspect_ratio=normalize_aspect_ratio(body.get("aspect_ratio")),
        seed=normalize_seed(body.get("seed")),
        guidance=normalize_float(body.get("guidance")),
        prompt_strength=normalize_float(body.get("prompt_strength")),
        references=_collect_references(body),
        idempotency_key=(idempotency_key or "").strip()[:160] or None,
        test_mode=is_truthy(body.get("test_mode")),
        duration=duration,
        quality=_opt_str(body.get("size") or body.get("quality"), 20),
        remove_watermark=is_truthy(body.get("remove_watermark")),
        shots=shots,
        preset_id=_opt_str(body.get("preset_id"), 120),
        preset_version=_opt_str(body.get("preset_version"), 40),
    )
