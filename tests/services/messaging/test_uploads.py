# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for outgoing file uploaders.
"""

import hashlib
import io
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from PIL import Image

from gateway.core.exceptions import MediaUploadFailed, ProtocolError
from gateway.schemas.message import OutgoingFile
from gateway.services.messaging.uploads import (
    CloudinaryUploader,
    FallbackUploader,
    MatrixMediaUploader,
    describe_file,
)


def _png(width=4, height=3):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "red").save(buffer, format="PNG")
    return buffer.getvalue()


class TestDescribeFile:
    """Tests for msgtype and info detection."""

    def test_image_dimensions(self):
        msgtype, info = describe_file(
            OutgoingFile(filename="a.png", content_type="image/png", data=_png(4, 3))
        )

        assert msgtype == "m.image"
        assert info["w"] == 4
        assert info["h"] == 3
        assert info["mimetype"] == "image/png"

    def test_unreadable_image_still_an_image(self):
        msgtype, info = describe_file(
            OutgoingFile(filename="a.png", content_type="image/png", data=b"not a png")
        )

        assert msgtype == "m.image"
        assert "w" not in info
        assert info["size"] == 9

    @pytest.mark.parametrize(
        "content_type,msgtype",
        [("video/mp4", "m.video"), ("audio/ogg", "m.audio"), ("application/pdf", "m.file")],
    )
    def test_other_types(self, content_type, msgtype):
        file = OutgoingFile(filename="f", content_type=content_type, data=b"x")
        assert describe_file(file)[0] == msgtype


class TestUploaders:
    """Tests for the uploaders and the fallback chain."""

    @pytest.fixture
    def file(self):
        return OutgoingFile(filename="doc.pdf", content_type="application/pdf", data=b"%PDF")

    @pytest.mark.asyncio
    async def test_matrix_uploader(self, file):
        client = MagicMock()
        client.upload = AsyncMock(return_value="mxc://hs.example/doc")

        assert await MatrixMediaUploader(client).upload(file) == "mxc://hs.example/doc"
        client.upload.assert_awaited_once_with(b"%PDF", "application/pdf", "doc.pdf")

    @pytest.mark.asyncio
    async def test_matrix_uploader_wraps_errors(self, file):
        client = MagicMock()
        client.upload = AsyncMock(side_effect=ProtocolError(413, {"error": "Too large"}))

        with pytest.raises(MediaUploadFailed) as exc_info:
            await MatrixMediaUploader(client).upload(file)

        assert "Too large" in exc_info.value.message

    def test_cloudinary_signature(self):
        uploader = CloudinaryUploader("demo", "key", "secret")

        signature = uploader.sign({"timestamp": 100, "folder": "gw"})

        expected = hashlib.sha1(b"folder=gw&timestamp=100secret").hexdigest()
        assert signature == expected

    @pytest.mark.asyncio
    async def test_cloudinary_upload(self, file):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/doc.pdf"})

        uploader = CloudinaryUploader(
            "demo", "key", "secret", folder="gw", transport=httpx.MockTransport(handler)
        )

        url = await uploader.upload(file)

        assert url == "https://res.cloudinary.com/demo/doc.pdf"
        assert str(requests[0].url) == "https://api.cloudinary.com/v1_1/demo/auto/upload"
        assert b'name="api_key"' in requests[0].content

    @pytest.mark.asyncio
    async def test_cloudinary_http_error(self, file):
        uploader = CloudinaryUploader(
            "demo",
            "key",
            "secret",
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad key")),
        )

        with pytest.raises(MediaUploadFailed) as exc_info:
            await uploader.upload(file)

        assert "401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_fallback_uses_next_uploader(self, file):
        """Test a failing homeserver upload falls back to the next uploader."""
        first = MagicMock()
        first.name = "matrix"
        first.upload = AsyncMock(side_effect=MediaUploadFailed("doc.pdf", "down"))
        second = MagicMock()
        second.name = "cloudinary"
        second.upload = AsyncMock(return_value="https://cdn.example/doc.pdf")

        url, provider = await FallbackUploader([first, second]).upload(file)

        assert (url, provider) == ("https://cdn.example/doc.pdf", "cloudinary")

    @pytest.mark.asyncio
    async def test_fallback_all_failed(self, file):
        first = MagicMock()
        first.name = "matrix"
        first.upload = AsyncMock(side_effect=MediaUploadFailed("doc.pdf", "down"))

        with pytest.raises(MediaUploadFailed) as exc_info:
            await FallbackUploader([first]).upload(file)

        assert exc_info.value.message == "matrix: down"
