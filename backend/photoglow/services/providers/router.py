"""Provider router: logical model + resolved references → provider call.

Routing is pure.  It runs after the credit reservation, so every error it
raises is refunded by the reservation scope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from photoglow.services.errors import ValidationFailed
from photoglow.services.normalizer import MODE_IMAGE, GenerationRequest
from photoglow.services.providers.variants import (
    ALL_VARIANTS,
    DRIVER_ASYNC,
    FLUX_IMAGE,
    FLUX_TEXT,
    GEN4,
    GEN4_TURBO,
    REPLICATE_GENERIC,
    SORA2,
    ProviderVariant,
)

# logical model -> variant family head
MODEL_TABLE: dict[str, ProviderVariant] = {
    "flux": FLUX_TEXT,
    "gen4": GEN4,
    "gen4-turbo": GEN4_TURBO,
    "turbo": GEN4_TURBO,
    "sora-2": SORA2,
    "sora-2-pro": SORA2,
}

KNOWN_MODELS = frozenset(MODEL_TABLE)

_BY_TARGET = {v.target: v for v in ALL_VARIANTS if v.target}


# public catalogue; aliases such as "turbo" are accepted but not listed
MODEL_NAMES: dict[str, str] = {
    "flux": "Flux 1.1 Pro",
    "gen4": "Runway Gen-4",
    "gen4-turbo": "Gen-4 Turbo",
    "sora-2": "Sora 2",
    "sora-2-pro": "Sora 2 Pro",
}


def list_models() -> list[dict[str, Any]]:
    models = []
    for model_id, name in MODEL_NAMES.items():
        variant = MODEL_TABLE[model_id]
        models.append({
            "id": model_id,
            "name": name,
            "value": variant.target or model_id,
            "media": "video" if variant.driver == DRIVER_ASYNC else "image",
        })
    return models


@dataclass(frozen=True)
class RoutedCall:
    variant: ProviderVariant
    target: str
    input: dict[str, Any]

    @property
    def is_async(self) -> bool:
        return self.variant.driver == DRIVER_ASYNC


def select_variant(request: GenerationRequest, refs: list[str] | None = None) -> ProviderVariant:
    """Pick the variant; ``refs=None`` selects the family without reference checks."""
    if request.model_path:
        base = request.model_path.split(":", 1)[0]
        variant = _BY_TARGET.get(base, REPLICATE_GENERIC)
    else:
        try:
            variant = MODEL_TABLE[request.model]
        except KeyError:
            if "/" not in request.model:
                raise ValidationFailed("invalid_model", details=request.model, status_code=422) from None
            variant = _BY_TARGET.get(request.model.split(":", 1)[0], REPLICATE_GENERIC)

    # flux family: references decide text vs image
    if variant in (FLUX_TEXT, FLUX_IMAGE) and refs is not None and not request.model_path:
        if refs:
            return FLUX_IMAGE
        if request.mode == MODE_IMAGE:
            return FLUX_IMAGE   # fails missing_image_url on shaping
        return FLUX_TEXT
    return variant


def route(request: GenerationRequest, refs: list[str]) -> RoutedCall:
    """Resolve the variant and shape the provider input."""
    variant = select_variant(request, refs)
    target = request.model_path or variant.target or request.model
    return RoutedCall(
        variant=variant,
        target=target,
        input=variant.shape_input(request, refs),
    )


def is_async_model(request: GenerationRequest) -> bool:
    return select_variant(request).driver == DRIVER_ASYNC
