"""Tests for storage path sanitation and tenant isolation."""

import pytest

from photoglow.services.storage_guard import (
    PathRejected,
    guard_locator,
    sanitize_path,
    sanitize_segment,
    tenant_prefix,
)


class TestSanitize:

    def test_segment_replaces_disallowed_characters(self):
        assert sanitize_segment("my photo (1).png") == "my-photo-1-.png"

    def test_segment_strips_accents(self):
        assert sanitize_segment("café.jpg") == "cafe.jpg"

    @pytest.mark.parametrize("segment", ["", ".", "..", "  ", "///"])
    def test_forbidden_segments(self, segment):
        with pytest.raises(PathRejected):
            sanitize_segment(segment)

    def test_dot_runs_collapsed(self):
        assert sanitize_segment("a...b") == "a.b"

    def test_path_rejects_traversal(self):
        with pytest.raises(PathRejected):
            sanitize_path("uploads/user-1/../user-2/a.png")

    def test_path_rejects_empty_segment(self):
        with pytest.raises(PathRejected):
            sanitize_path("uploads//a.png")

    def test_path_normalizes_backslashes_and_leading_slash(self):
        assert sanitize_path("/uploads\\user-1\\a.png") == "uploads/user-1/a.png"


class TestGuardLocator:

    def test_own_upload_accepted(self, settings):
        locator = guard_locator("photos", "uploads/user-1/a.png", "user-1", settings)
        assert locator.bucket == "photos"
        assert locator.path == "uploads/user-1/a.png"

    def test_other_tenant_rejected(self, settings):
        with pytest.raises(PathRejected):
            guard_locator("photos", "uploads/user-2/a.png", "user-1", settings)

    def test_prefix_must_match_whole_segment(self, settings):
        with pytest.raises(PathRejected):
            guard_locator("photos", "uploads/user-10/a.png", "user-1", settings)

    def test_unlisted_bucket_rejected(self, settings):
        with pytest.raises(PathRejected):
            guard_locator("secrets", "uploads/user-1/a.png", "user-1", settings)

    def test_output_bucket_uses_output_prefix(self, settings):
        locator = guard_locator("generated_images", "gen/user-1/2026-01-01/x.png", "user-1", settings)
        assert locator.path.startswith("gen/user-1/")

    def test_tenant_prefix(self, settings):
        assert tenant_prefix("photos", "user-1", settings) == "uploads/user-1/"
        assert tenant_prefix("videos", "user-1", settings) == "gen/user-1/"
        assert tenant_prefix("elsewhere", "user-1", settings) is None
