# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Media locator resolution.

Turns ``mxc://server/media_id`` locators into fetchable homeserver URLs.
Anything that does not look like a locator is returned unchanged.
"""

from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

MXC_SCHEME = "mxc://"
MEDIA_PREFIX = "/_matrix/media/v3"

DEFAULT_THUMBNAIL_WIDTH = 800
DEFAULT_THUMBNAIL_HEIGHT = 600
PREVIEW_THUMBNAIL_WIDTH = 400
PREVIEW_THUMBNAIL_HEIGHT = 300

# msgtypes that get a preview thumbnail
THUMBNAIL_MSGTYPES = ("m.image", "m.video")


def split_locator(locator: Any) -> Optional[Tuple[str, str]]:
    """Return (server, media_id) or None when the input is not a locator"""
    if not isinstance(locator, str) or not locator.startswith(MXC_SCHEME):
        return None
    parts = locator[len(MXC_SCHEME):].split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


class MediaResolver:
    """Renders media URLs against one homeserver origin."""

    def __init__(self, homeserver_url: str):
        self.homeserver_url = homeserver_url.rstrip("/")

    def resolve_download_url(self, locator: Any) -> Any:
        """
        Map a media locator to its download URL.

        Args:
            locator: Usually ``mxc://server/id``; anything else passes through

        Returns:
            Download URL, or the input unchanged
        """
        parts = split_locator(locator)
        if parts is None:
            return locator
        server, media_id = parts
        return f"{self.homeserver_url}{MEDIA_PREFIX}/download/{server}/{media_id}"

    def resolve_thumbnail_url(
        self,
        locator: Any,
        width: int = DEFAULT_THUMBNAIL_WIDTH,
        height: int = DEFAULT_THUMBNAIL_HEIGHT,
        method: str = "scale",
    ) -> Any:
        """
        Map a media locator to a thumbnail URL.

        Args:
            locator: Usually ``mxc://server/id``; anything else passes through
            width: Desired thumbnail width
            height: Desired thumbnail height
            method: "scale" or "crop"

        Returns:
            Thumbnail URL, or the input unchanged
        """
        parts = split_locator(locator)
        if parts is None:
            return locator
        server, media_id = parts
        query = urlencode({"width": width, "height": height, "method": method})
        return f"{self.homeserver_url}{MEDIA_PREFIX}/thumbnail/{server}/{media_id}?{query}"

    def enrich_content(self, content: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of an event content with file_url / thumbnail_url added"""
        enriched = dict(content or {})
        url = enriched.get("url")
        if not url:
            return enriched
        enriched["file_url"] = self.resolve_download_url(url)
        if enriched.get("msgtype") in THUMBNAIL_MSGTYPES:
            enriched["thumbnail_url"] = self.resolve_thumbnail_url(
                url, PREVIEW_THUMBNAIL_WIDTH, PREVIEW_THUMBNAIL_HEIGHT
            )
        return enriched
