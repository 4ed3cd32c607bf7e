# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Media uploaders for outgoing files.

Files go to the homeserver's media repository first. When that fails and a
Cloudinary account is configured, Cloudinary is tried next. Only when every
uploader failed is MediaUploadFailed raised.
"""

import hashlib
import io
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from gateway.core.exceptions import MediaUploadFailed
from gateway.schemas.message import OutgoingFile
from gateway.services.matrix.client import MatrixClient

logger = logging.getLogger(__name__)

CLOUDINARY_API_URL = "https://api.cloudinary.com/v1_1"


def describe_file(file: OutgoingFile) -> Tuple[str, Dict[str, Any]]:
    """
    Pick the message type of a file and build its info block.

    Returns:
        (msgtype, info) where info carries mimetype, size and, for
        images, the pixel dimensions
    """
    mimetype = file.content_type or "application/octet-stream"
    info: Dict[str, Any] = {"mimetype": mimetype, "size": len(file.data)}

    if mimetype.startswith("image/"):
        try:
            with Image.open(io.BytesIO(file.data)) as image:
                info["w"], info["h"] = image.size
        except (UnidentifiedImageError, OSError) as e:
            logger.debug(f"Could not read image size of {file.filename}: {e}")
        return "m.image", info
    if mimetype.startswith("video/"):
        return "m.video", info
    if mimetype.startswith("audio/"):
        return "m.audio", info
    return "m.file", info


class MediaUploader(ABC):
    """Stores a file somewhere it can be fetched from and returns its URL."""

    name = "uploader"

    @abstractmethod
    async def upload(self, file: OutgoingFile) -> str:
        """
        Upload a file.

        Raises:
            MediaUploadFailed: If the upload did not succeed
        """


class MatrixMediaUploader(MediaUploader):
    """Homeserver media repository, returns mxc:// locators."""

    name = "matrix"

    def __init__(self, client: MatrixClient):
        self.client = client

    async def upload(self, file: OutgoingFile) -> str:
        try:
            return await self.client.upload(file.data, file.content_type, file.filename)
        except Exception as e:
            raise MediaUploadFailed(file.filename, str(e), e) from e


class CloudinaryUploader(MediaUploader):
    """Signed Cloudinary upload, returns the https delivery URL."""

    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout
        self._transport = transport

    def sign(self, params: Dict[str, Any]) -> str:
        """Cloudinary signature: sha1 of sorted params plus the secret"""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    async def upload(self, file: OutgoingFile) -> str:
        params: Dict[str, Any] = {"timestamp": int(time.time())}
        if self.folder:
            params["folder"] = self.folder
        data = dict(params, api_key=self.api_key, signature=self.sign(params))
        url = f"{CLOUDINARY_API_URL}/{self.cloud_name}/auto/upload"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    data=data,
                    files={"file": (file.filename, file.data, file.content_type)},
                )
                response.raise_for_status()
                return response.json()["secure_url"]
        except httpx.HTTPStatusError as e:
            raise MediaUploadFailed(
                file.filename,
                f"Cloudinary HTTP {e.response.status_code}: {e.response.text}",
                e,
            ) from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise MediaUploadFailed(file.filename, f"Cloudinary upload error: {e}", e) from e


class FallbackUploader:
    """Tries each uploader in order until one succeeds."""

    def __init__(self, uploaders: Sequence[MediaUploader]):
        self.uploaders: List[MediaUploader] = list(uploaders)

    async def upload(self, file: OutgoingFile) -> Tuple[str, str]:
        """
        Returns:
            (url, uploader name)

        Raises:
            MediaUploadFailed: When every uploader failed
        """
        errors = []
        for uploader in self.uploaders:
            try:
                url = await uploader.upload(file)
                return url, uploader.name
            except MediaUploadFailed as e:
                logger.warning(
                    f"[FallbackUploader] {uploader.name} failed for {file.filename}: {e.message}"
                )
                errors.append(f"{uploader.name}: {e.message}")
        raise MediaUploadFailed(file.filename, "; ".join(errors) or "No uploader configured")
