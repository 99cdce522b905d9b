"""Closed set of provider variants.

Each variant owns its target, the input fields it accepts, the name its
provider uses for guidance, its aspect-ratio enumeration and its reference
requirement.  Shaping never performs I/O.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable

from photoglow.services.errors import ReferenceRequired
from photoglow.services.normalizer import (
    MODE_IMAGE,
    GenerationRequest,
)

logger = logging.getLogger(__name__)


class VariantKind(str, enum.Enum):
    FLUX_TEXT = "flux-text"
    FLUX_IMAGE = "flux-image"
    GEN4 = "gen4"
    GEN4_TURBO = "gen4-turbo"
    SORA2 = "sora2"
    REPLICATE_GENERIC = "replicate-generic"


DRIVER_SYNC = "sync"
DRIVER_ASYNC = "async"

# Reference requirement policies
REFS_OPTIONAL = "optional"
REFS_IN_IMAGE_MODE = "image-mode"
REFS_ALWAYS = "always"

_FLUX_RATIOS = ("1:1", "16:9", "3:2", "2:3", "4:5", "5:4", "9:16", "3:4", "4:3")
_KONTEXT_RATIOS = (
    "match_input_image", "1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3",
    "4:5", "5:4", "21:9", "9:21", "2:1", "1:2",
)
_GEN4_RATIOS = ("16:9", "9:16", "4:3", "3:4", "1:1", "21:9")


@dataclass(frozen=True)
class ProviderVariant:
    """Static descriptor for one provider family."""
    kind: VariantKind
    provider: str
    target: str | None
    driver: str
    allowed_fields: frozenset[str] | None   # None: pass everything through
    guidance_field: str | None
    aspect_ratios: tuple[str, ...] | None
    default_aspect_ratio: str | None
    references: str
    missing_reference_code: str
    place_references: Callable[[dict[str, Any], list[str]], None]

    def clamp_aspect_ratio(self, value: str | None) -> str | None:
        if self.aspect_ratios is None:
            return value or self.default_aspect_ratio
        if value in self.aspect_ratios:
            return value
        if value:
            logger.info(
                "Aspect ratio %s unsupported by %s, using %s",
                value, self.kind.value, self.default_aspect_ratio,
            )
        return self.default_aspect_ratio

    def check_references(self, request: GenerationRequest, refs: list[str]) -> None:
        if refs:
            return
        if self.references == REFS_ALWAYS or (
            self.references == REFS_IN_IMAGE_MODE and request.mode == MODE_IMAGE
        ):
            raise ReferenceRequired(self.missing_reference_code)

    def shape_input(self, request: GenerationRequest, refs: list[str]) -> dict[str, Any]:
        """Build the provider input, dropping fields this variant rejects."""
        self.check_references(request, refs)

        candidate: dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": self.clamp_aspect_ratio(request.aspect_ratio),
            "seed": request.seed,
            "negative_prompt": request.negative_prompt,
            "prompt_strength": request.prompt_strength,
        }
        if self.guidance_field and request.guidance is not None:
            candidate[self.guidance_field] = request.guidance
        if refs:
            self.place_references(candidate, refs)

        shaped = {k: v for k, v in candidate.items() if v is not None and v != ""}
        if self.allowed_fields is None:
            return shaped
        return {k: v for k, v in shaped.items() if k in self.allowed_fields}


# ---------------------------------------------------------------------------
# Reference placement per family
# ---------------------------------------------------------------------------

def _place_input_image(data: dict[str, Any], refs: list[str]) -> None:
    data["input_image"] = refs[0]


def _place_reference_images(data: dict[str, Any], refs: list[str]) -> None:
    data["reference_images"] = list(refs)


def _place_generic(data: dict[str, Any], refs: list[str]) -> None:
    data["image"] = refs[0]
    data["image_url"] = refs[0]
    if len(refs) > 1:
        data["image_urls"] = list(refs)


def _place_none(data: dict[str, Any], refs: list[str]) -> None:
    return None


# ---------------------------------------------------------------------------
# Variant table
# ---------------------------------------------------------------------------

FLUX_TEXT = ProviderVariant(
    kind=VariantKind.FLUX_TEXT,
    provider="replicate",
    target="black-forest-labs/flux-1.1-pro",
    driver=DRIVER_SYNC,
    allowed_fields=frozenset({
        "prompt", "aspect_ratio", "seed", "negative_prompt", "guidance",
        "output_format", "safety_tolerance", "prompt_upsampling",
    }),
    guidance_field="guidance",
    aspect_ratios=_FLUX_RATIOS,
    default_aspect_ratio="1:1",
    references=REFS_OPTIONAL,
    missing_reference_code="missing_image_url",
    place_references=_place_none,
)

FLUX_IMAGE = ProviderVariant(
    kind=VariantKind.FLUX_IMAGE,
    provider="replicate",
    target="black-forest-labs/flux-kontext-pro",
    driver=DRIVER_SYNC,
    allowed_fields=frozenset({
        "prompt", "input_image", "aspect_ratio", "seed", "prompt_strength",
        "guidance", "output_format", "safety_tolerance",
    }),
    guidance_field="guidance",
    aspect_ratios=_KONTEXT_RATIOS,
    default_aspect_ratio="match_input_image",
    references=REFS_ALWAYS,
    missing_reference_code="missing_image_url",
    place_references=_place_input_image,
)

GEN4 = ProviderVariant(
    kind=VariantKind.GEN4,
    provider="replicate",
    target="runwayml/gen4-image",
    driver=DRIVER_SYNC,
    allowed_fields=frozenset({
        "prompt", "aspect_ratio", "seed", "reference_images", "reference_tags",
        "resolution",
    }),
    guidance_field=None,
    aspect_ratios=_GEN4_RATIOS,
    default_aspect_ratio="16:9",
    references=REFS_IN_IMAGE_MODE,
    missing_reference_code="missing_reference_images",
    place_references=_place_reference_images,
)

GEN4_TURBO = ProviderVariant(
    kind=VariantKind.GEN4_TURBO,
    provider="replicate",
    target="runwayml/gen4-image-turbo",
    driver=DRIVER_SYNC,
    allowed_fields=GEN4.allowed_fields,
    guidance_field=None,
    aspect_ratios=_GEN4_RATIOS,
    default_aspect_ratio="16:9",
    references=REFS_ALWAYS,
    missing_reference_code="gen4_turbo_requires_reference_image",
    place_references=_place_reference_images,
)

REPLICATE_GENERIC = ProviderVariant(
    kind=VariantKind.REPLICATE_GENERIC,
    provider="replicate",
    target=None,
    driver=DRIVER_SYNC,
    allowed_fields=None,
    guidance_field="guidance",
    aspect_ratios=None,
    default_aspect_ratio="1:1",
    references=REFS_IN_IMAGE_MODE,
    missing_reference_code="missing_image_url",
    place_references=_place_generic,
)


class Sora2Variant(ProviderVariant):
    """Kie Sora-2 video tasks; the payload uses Kie's camelCase fields."""

    def shape_input(self, request: GenerationRequest, refs: list[str]) -> dict[str, Any]:
        self.check_references(request, refs)

        portrait = request.aspect_ratio in ("portrait", "9:16")
        payload: dict[str, Any] = {
            "model": request.model if request.model.startswith("sora-2") else "sora-2",
            "prompt": request.prompt,
            "aspectRatio": "9:16" if portrait else "16:9",
            "duration": request.duration or 10,
            "quality": "1080p" if request.quality == "high" else "720p",
            "removeWatermark": bool(request.remove_watermark),
        }
        if refs:
            payload["imageUrl"] = refs[0]
            if len(refs) > 1:
                payload["image_urls"] = list(refs[:3])
        if request.wire_mode == "storyboard":
            payload["shots"] = list(request.shots)
            payload["duration"] = request.duration or 25
        return payload


SORA2 = Sora2Variant(
    kind=VariantKind.SORA2,
    provider="kie-sora2",
    target=None,
    driver=DRIVER_ASYNC,
    allowed_fields=None,
    guidance_field=None,
    aspect_ratios=None,
    default_aspect_ratio="16:9",
    references=REFS_IN_IMAGE_MODE,
    missing_reference_code="missing_reference_images",
    place_references=_place_none,
)

ALL_VARIANTS: tuple[ProviderVariant, ...] = (
    FLUX_TEXT, FLUX_IMAGE, GEN4, GEN4_TURBO, SORA2, REPLICATE_GENERIC,
)
