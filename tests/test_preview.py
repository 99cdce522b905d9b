"""Tests for the credit-free preview path."""

import pytest

from photoglow.services.errors import ProviderRejected, RateLimited, ValidationFailed
from photoglow.services.preview import PreviewOptions
from photoglow.services.providers.pollinations import (
    PreviewImage,
    build_prompt_from_attrs,
    dims_from,
    sanitize_prompt_safe,
)


class TestPreviewOptions:

    def test_defaults(self):
        opts = PreviewOptions.from_body({"prompt": "a portrait"})
        assert opts.mode == "preview"
        assert opts.fast is True
        assert opts.safe is True
        assert (opts.width, opts.height) == (384, 384)

    def test_ratio_and_px(self):
        opts = PreviewOptions.from_body({"prompt": "x y z", "ratio": "3:4", "px": 5000, "fast": False})
        assert (opts.width, opts.height) == (768, 1024)

    def test_short_prompt_uses_attributes(self):
        opts = PreviewOptions.from_body({"prompt": "x", "gender": "man", "outfit": "tank top"})
        assert "youthful adult (25-35) man" in opts.prompt
        assert "crew-neck tee" in opts.prompt
        assert opts.sleeveless is True

    def test_mode_flags(self):
        assert PreviewOptions.from_body({"save": True}).mode == "save"
        assert PreviewOptions.from_body({"proxy": "1"}).mode == "proxy"

    def test_invalid_body(self):
        with pytest.raises(ValidationFailed):
            PreviewOptions.from_body("prompt")


class TestPromptHelpers:

    def test_sanitize_prompt_safe(self):
        assert sanitize_prompt_safe("fitted tank top, cleavage") == "regular fit crew-neck tee, natural proportions"

    def test_dims_from(self):
        assert dims_from("1:1", 512) == (512, 512)
        assert dims_from("3:4", 100) == (96, 128)

    def test_build_prompt_defaults_to_studio(self):
        prompt = build_prompt_from_attrs({})
        assert "white studio background" in prompt
        assert "woman" in prompt


class TestPreviewService:

    @pytest.mark.asyncio
    async def test_preview_returns_provider_url_without_storing(self, services, remote):
        result = await services.preview.handle({"prompt": "a portrait", "seed": 7}, client_id="c1")

        assert result["mode"] == "preview"
        assert result["provider_url"].startswith("https://pollinations.test/prompt/a%20portrait?")
        assert "seed=7" in result["provider_url"]
        assert remote.objects == {}
        assert remote.pollinations_bodies == []

    @pytest.mark.asyncio
    async def test_proxy_returns_bytes(self, services):
        result = await services.preview.handle({"prompt": "a portrait", "proxy": True}, client_id="c1")
        assert isinstance(result, PreviewImage)
        assert result.data == b"\xff\xd8jpeg"

    @pytest.mark.asyncio
    async def test_nsfw_refusal_retried_with_softer_prompt(self, services, remote):
        remote.pollinations_script = ["nsfw", "image"]
        result = await services.preview.handle(
            {"prompt": "sleeveless summer look", "proxy": True}, client_id="c1"
        )

        assert isinstance(result, PreviewImage)
        assert len(remote.pollinations_bodies) == 2
        assert "short-sleeve" in remote.pollinations_bodies[1]["prompt"]

    @pytest.mark.asyncio
    async def test_save_persists_to_output_bucket(self, services, remote):
        result = await services.preview.handle({"prompt": "a portrait", "save": True}, client_id="c1")

        assert result["mode"] == "save"
        assert "/generated_images/gen/anonymous/" in result["image_url"]
        assert "pollinations" not in result["image_url"]
        assert len(remote.objects) == 1

    @pytest.mark.asyncio
    async def test_save_failure_raises(self, services, remote):
        remote.pollinations_script = ["error"]
        with pytest.raises(ProviderRejected) as exc:
            await services.preview.handle({"prompt": "a portrait", "save": True}, client_id="c1")
        assert exc.value.code == "pollinations_failed"
        assert remote.objects == {}

    @pytest.mark.asyncio
    async def test_proxy_falls_back_to_get(self, services, remote):
        remote.pollinations_script = ["error", "image"]
        result = await services.preview.handle({"prompt": "a portrait", "proxy": True}, client_id="c1")
        assert isinstance(result, PreviewImage)
        assert [r.method for r in remote.calls_to("pollinations.test")] == ["POST", "GET"]

    @pytest.mark.asyncio
    async def test_idempotent_save(self, services, remote):
        body = {"prompt": "a portrait", "save": True}
        first = await services.preview.handle(body, client_id="c1", idempotency_key="p-1")
        second = await services.preview.handle(body, client_id="c1", idempotency_key="p-1")

        assert second == first
        assert len(remote.objects) == 1

    @pytest.mark.asyncio
    async def test_rate_limited(self, services, settings):
        for _ in range(settings.RATE_LIMIT_MAX):
            await services.preview.handle({"prompt": "a portrait"}, client_id="flood")
        with pytest.raises(RateLimited) as exc:
            await services.preview.handle({"prompt": "a portrait"}, client_id="flood")
        assert exc.value.status_code == 429
        await services.preview.handle({"prompt": "a portrait"}, client_id="other")
