# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for media locator resolution."""

import pytest

from gateway.services.matrix.media import MediaResolver, split_locator


class TestMediaResolver:
    """Tests for MediaResolver."""

    @pytest.fixture
    def resolver(self):
        return MediaResolver("https://hs.example/")

    def test_resolve_download_url(self, resolver):
        """Test a locator maps to the media download path."""
        assert (
            resolver.resolve_download_url("mxc://example.org/abc123")
            == "https://hs.example/_matrix/media/v3/download/example.org/abc123"
        )

    @pytest.mark.parametrize(
        "value",
        [None, "", "https://cdn.example/a.png", "mxc://example.org", "mxc:///abc", 42],
    )
    def test_non_locators_pass_through(self, resolver, value):
        assert resolver.resolve_download_url(value) == value

    def test_resolve_thumbnail_url_defaults(self, resolver):
        assert resolver.resolve_thumbnail_url("mxc://example.org/abc123") == (
            "https://hs.example/_matrix/media/v3/thumbnail/example.org/abc123"
            "?width=800&height=600&method=scale"
        )

    def test_resolve_thumbnail_url_crop(self, resolver):
        url = resolver.resolve_thumbnail_url("mxc://example.org/abc123", 96, 96, "crop")
        assert url.endswith("?width=96&height=96&method=crop")

    def test_enrich_image_content(self, resolver):
        """Test images get a download URL and a preview thumbnail."""
        content = {"msgtype": "m.image", "body": "cat.png", "url": "mxc://example.org/cat"}

        enriched = resolver.enrich_content(content)

        assert enriched["file_url"] == "https://hs.example/_matrix/media/v3/download/example.org/cat"
        assert enriched["thumbnail_url"].endswith("?width=400&height=300&method=scale")
        assert "file_url" not in content

    def test_enrich_file_content_has_no_thumbnail(self, resolver):
        enriched = resolver.enrich_content(
            {"msgtype": "m.file", "body": "a.pdf", "url": "mxc://example.org/pdf"}
        )
        assert "file_url" in enriched
        assert "thumbnail_url" not in enriched

    def test_enrich_text_content_unchanged(self, resolver):
        content = {"msgtype": "m.text", "body": "hello"}
        assert resolver.enrich_content(content) == content

    def test_split_locator(self):
        assert split_locator("mxc://example.org/abc") == ("example.org", "abc")
        assert split_locator("mxc://example.org/a/b") is None
