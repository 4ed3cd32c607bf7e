# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Platform identifiers and the human labels attached to rooms and events.
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel


class Platform(str, Enum):
    """Bridged chat platforms."""

    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"

    @property
    def label(self) -> "PlatformLabel":
        return PLATFORM_LABELS[self]


class PlatformLabel(BaseModel):
    """Display label and short code of a room's platform."""

    platform: str  # e.g. "Whatsapp"
    platform_code: str  # e.g. "WA"

    model_config = {"frozen": True}

    @property
    def is_bridged(self) -> bool:
        return self.platform_code != DEFAULT_PLATFORM_LABEL.platform_code


PLATFORM_LABELS: Dict[Platform, PlatformLabel] = {
    Platform.WHATSAPP: PlatformLabel(platform="Whatsapp", platform_code="WA"),
    Platform.TELEGRAM: PlatformLabel(platform="Telegram", platform_code="TG"),
    Platform.INSTAGRAM: PlatformLabel(platform="Instagram", platform_code="IG"),
    Platform.TWITTER: PlatformLabel(platform="Twitter", platform_code="TW"),
}

# Rooms that no bridge claims belong to the base protocol itself
DEFAULT_PLATFORM_LABEL = PlatformLabel(platform="Matrix", platform_code="MX")
