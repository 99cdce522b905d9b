"""Tests for durable output persistence."""

import pytest

from photoglow.services.errors import StorageError
from photoglow.services.normalizer import MEDIA_IMAGE, MEDIA_VIDEO
from photoglow.services.output_persister import OutputPersister, pick_extension
from photoglow.services.storage import StorageClient


@pytest.fixture
def persister(settings, http_client):
    storage = StorageClient(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, http_client)
    return OutputPersister(storage, http_client, settings, today=lambda: "2026-10-19")


class TestPickExtension:

    @pytest.mark.parametrize("content_type,media,ext", [
        ("image/png", MEDIA_IMAGE, ".png"),
        ("image/webp", MEDIA_IMAGE, ".webp"),
        ("image/jpeg; charset=binary", MEDIA_IMAGE, ".jpg"),
        ("video/webm", MEDIA_VIDEO, ".webm"),
        ("application/octet-stream", MEDIA_VIDEO, ".mp4"),
        (None, MEDIA_IMAGE, ".jpg"),
    ])
    def test_extensions(self, content_type, media, ext):
        assert pick_extension(content_type, media) == ext


class TestOutputPersister:

    @pytest.mark.asyncio
    async def test_image_persisted_under_caller_prefix(self, persister, remote):
        asset = await persister.persist_url("https://replicate.delivery/out/abc.png", "user-1", MEDIA_IMAGE)

        assert asset.bucket == "generated_images"
        assert asset.path.startswith("gen/user-1/2026-10-19/")
        assert asset.path.endswith(".png")
        assert asset.url == f"https://sb.test/storage/v1/object/public/generated_images/{asset.path}"
        assert "replicate.delivery" not in asset.url
        assert remote.objects[("generated_images", asset.path)].startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_upload_sets_cache_control(self, persister, remote):
        await persister.persist_bytes(b"data", "image/png", "user-1", MEDIA_IMAGE)
        upload = [r for r in remote.storage_calls if r.method == "POST"][-1]
        assert upload.headers["cache-control"] == "max-age=31536000"
        assert upload.headers["content-type"] == "image/png"

    @pytest.mark.asyncio
    async def test_video_goes_to_video_bucket(self, persister):
        asset = await persister.persist_url("https://kie.cdn/v/1.mp4", "user-1", MEDIA_VIDEO)
        assert asset.bucket == "videos"
        assert asset.path.endswith(".mp4")

    @pytest.mark.asyncio
    async def test_private_output_gets_signed_url(self, persister, settings):
        settings.OUTPUT_PUBLIC = False
        asset = await persister.persist_bytes(b"data", "image/png", "user-1", MEDIA_IMAGE)
        assert asset.url.startswith("https://sb.test/storage/v1/object/sign/generated_images/gen/user-1/")

    @pytest.mark.asyncio
    async def test_download_failure(self, persister, remote):
        remote.download_fails = True
        with pytest.raises(StorageError) as exc:
            await persister.persist_url("https://replicate.delivery/out/abc.png", "user-1", MEDIA_IMAGE)
        assert exc.value.code == "download_failed"
        assert remote.objects == {}

    @pytest.mark.asyncio
    async def test_upload_failure(self, persister, remote):
        remote.upload_fails = True
        with pytest.raises(StorageError) as exc:
            await persister.persist_bytes(b"data", "image/png", "user-1", MEDIA_IMAGE)
        assert exc.value.code == "upload_failed"

    def test_owner_segment_sanitized(self, persister):
        path = persister.build_path("evil/../user", ".png")
        assert path.split("/")[1] == "evil-.-user"
        assert path.count("/") == 3
