"""Tests for provider routing and input shaping."""

import pytest

from photoglow.services.errors import ReferenceRequired, ValidationFailed
from photoglow.services.normalizer import normalize_request
from photoglow.services.providers.router import (
    KNOWN_MODELS,
    MODEL_NAMES,
    MODEL_TABLE,
    is_async_model,
    list_models,
    route,
    select_variant,
)
from photoglow.services.providers.variants import (
    FLUX_IMAGE,
    FLUX_TEXT,
    GEN4,
    GEN4_TURBO,
    REPLICATE_GENERIC,
    SORA2,
)

REF = "https://cdn.test/ref.png"


def _request(body, **kwargs):
    kwargs.setdefault("default_mode", "text2img")
    kwargs.setdefault("default_model", "flux")
    return normalize_request(body, user_id="user-1", known_models=KNOWN_MODELS, **kwargs)


class TestSelectVariant:

    def test_flux_without_refs_is_text(self):
        assert select_variant(_request({"prompt": "x"}), []) is FLUX_TEXT

    def test_flux_with_refs_is_image(self):
        assert select_variant(_request({"prompt": "x"}), [REF]) is FLUX_IMAGE

    def test_flux_image_mode_without_refs_fails_on_shaping(self):
        request = _request({"mode": "img2img", "prompt": "x"})
        assert select_variant(request, []) is FLUX_IMAGE
        with pytest.raises(ReferenceRequired) as exc:
            route(request, [])
        assert exc.value.code == "missing_image_url"

    def test_turbo_aliases(self):
        assert select_variant(_request({"model": "turbo", "prompt": "x"}), [REF]) is GEN4_TURBO
        assert select_variant(_request({"model": "gen4-turbo", "prompt": "x"}), [REF]) is GEN4_TURBO

    def test_model_path_matching_known_target(self):
        request = _request({"model_path": "runwayml/gen4-image", "prompt": "x"})
        assert select_variant(request, []) is GEN4

    def test_model_path_unknown_is_generic(self):
        request = _request({"model_path": "acme/painter:abc123", "prompt": "x"})
        assert select_variant(request, []) is REPLICATE_GENERIC

    def test_sora_is_async(self):
        request = _request({"prompt": "x"}, default_mode="text2video", default_model="sora-2")
        assert select_variant(request) is SORA2
        assert is_async_model(request) is True
        assert is_async_model(_request({"prompt": "x"})) is False

    def test_unknown_model_without_known_set(self):
        request = normalize_request({"model": "dalle", "prompt": "x"}, user_id="user-1")
        with pytest.raises(ValidationFailed) as exc:
            select_variant(request, [])
        assert exc.value.code == "invalid_model"


class TestShaping:

    def test_flux_text_unsupported_ratio_falls_back(self):
        """21:9 is well-formed but not in flux-1.1-pro's list."""
        routed = route(_request({"prompt": "x", "aspect_ratio": "21:9"}), [])
        assert routed.target == "black-forest-labs/flux-1.1-pro"
        assert routed.input["aspect_ratio"] == "1:1"

    def test_flux_text_keeps_supported_ratio(self):
        routed = route(_request({"prompt": "a lighthouse", "aspect_ratio": "16:9", "guidance": 3}), [])
        assert routed.input == {"prompt": "a lighthouse", "aspect_ratio": "16:9", "guidance": 3.0}

    def test_flux_image_places_input_image_and_drops_negative_prompt(self):
        routed = route(
            _request({"prompt": "x", "negative_prompt": "blur", "prompt_strength": 0.8}), [REF]
        )
        assert routed.target == "black-forest-labs/flux-kontext-pro"
        assert routed.input["input_image"] == REF
        assert routed.input["aspect_ratio"] == "match_input_image"
        assert routed.input["prompt_strength"] == 0.8
        assert "negative_prompt" not in routed.input

    def test_gen4_strips_guidance_and_negative_prompt(self):
        routed = route(
            _request({"model": "gen4", "prompt": "x", "guidance": 5, "negative_prompt": "n"}), [REF]
        )
        assert routed.input["reference_images"] == [REF]
        assert "guidance" not in routed.input
        assert "negative_prompt" not in routed.input
        assert routed.input["aspect_ratio"] == "16:9"

    def test_gen4_text_mode_without_refs_allowed(self):
        routed = route(_request({"model": "gen4", "prompt": "x"}), [])
        assert "reference_images" not in routed.input

    def test_gen4_image_mode_requires_refs(self):
        with pytest.raises(ReferenceRequired) as exc:
            route(_request({"model": "gen4", "mode": "img2img", "prompt": "x"}), [])
        assert exc.value.code == "missing_reference_images"

    def test_turbo_always_requires_refs(self):
        with pytest.raises(ReferenceRequired) as exc:
            route(_request({"model": "gen4-turbo", "prompt": "x"}), [])
        assert exc.value.code == "gen4_turbo_requires_reference_image"
        assert exc.value.status_code == 400

    def test_generic_passes_references_through(self):
        routed = route(
            _request({"model_path": "acme/painter", "mode": "img2img", "prompt": "x"}),
            [REF, "https://cdn.test/2.png"],
        )
        assert routed.target == "acme/painter"
        assert routed.input["image"] == REF
        assert routed.input["image_urls"] == [REF, "https://cdn.test/2.png"]

    def test_sora2_payload(self):
        request = _request(
            {"prompt": "surf", "aspect_ratio": "portrait", "size": "high", "remove_watermark": True},
            default_mode="image2video",
            default_model="sora-2-pro",
        )
        routed = route(request, [REF])

        assert routed.is_async is True
        assert routed.input == {
            "model": "sora-2-pro",
            "prompt": "surf",
            "aspectRatio": "9:16",
            "duration": 10,
            "quality": "1080p",
            "removeWatermark": True,
            "imageUrl": REF,
        }

    def test_sora2_storyboard(self):
        request = _request(
            {"mode": "storyboard", "prompt": "s", "shots": [{"Scene": "a"}]},
            default_model="sora-2",
        )
        routed = route(request, [])
        assert routed.input["shots"] == [{"Scene": "a"}]
        assert routed.input["duration"] == 25
        assert routed.input["aspectRatio"] == "16:9"


class TestCatalogue:

    def test_every_listed_model_is_routable(self):
        assert set(MODEL_NAMES) <= set(MODEL_TABLE)
        assert [m["id"] for m in list_models()] == list(MODEL_NAMES)

    def test_sync_models_expose_their_target(self):
        values = {m["id"]: m["value"] for m in list_models()}
        assert values["gen4"] == "runwayml/gen4-image"
        assert values["sora-2-pro"] == "sora-2-pro"
