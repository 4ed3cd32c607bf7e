# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Platform classification of Matrix rooms.

A room's platform is derived with an ordered strategy, first match wins:

1. Admin identity: users holding the room's maximum power level are matched
   against known bridge bot identities.
2. Bridge metadata: bridge state events (MSC2346 ``m.bridge`` and friends)
   naming the bridge bot or the remote protocol.
3. Name pattern: platform abbreviations or names in the room's display name.
4. Default: the base protocol itself (Matrix / MX).

Each step that needs the homeserver tolerates failures by falling through,
so classification never raises.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from gateway.schemas.platform import (
    DEFAULT_PLATFORM_LABEL,
    Platform,
    PlatformLabel,
)
from gateway.services.matrix.client import MatrixClient

logger = logging.getLogger(__name__)

BRIDGE_STATE_TYPES = ("m.bridge", "uk.half-shot.bridge", "m.room.bridge")

# Name patterns, checked in order
NAME_PATTERNS: List[Tuple[re.Pattern, Platform]] = [
    (re.compile(r"\bWA\b|whatsapp", re.IGNORECASE), Platform.WHATSAPP),
    (re.compile(r"\bTG\b|telegram", re.IGNORECASE), Platform.TELEGRAM),
    (re.compile(r"\bIG\b|instagram", re.IGNORECASE), Platform.INSTAGRAM),
    (re.compile(r"\bTW\b|twitter", re.IGNORECASE), Platform.TWITTER),
]

# Remote protocol names used in bridge metadata
PROTOCOL_ALIASES: Dict[str, Platform] = {
    "whatsapp": Platform.WHATSAPP,
    "telegram": Platform.TELEGRAM,
    "instagram": Platform.INSTAGRAM,
    "meta": Platform.INSTAGRAM,
    "twitter": Platform.TWITTER,
}

PLACEHOLDER_NAMES = ("", "Unknown Room", "Empty Room")
MAX_NAMED_PARTICIPANTS = 3


def classify_by_name(name: Optional[str]) -> Optional[PlatformLabel]:
    if not name:
        return None
    for pattern, platform in NAME_PATTERNS:
        if pattern.search(name):
            return platform.label
    return None


def is_placeholder_name(name: Optional[str], room_id: str) -> bool:
    return not name or name.strip() in PLACEHOLDER_NAMES or name == room_id


def localpart(user_id: str) -> str:
    return user_id.lstrip("@").split(":", 1)[0]


class PlatformClassifier:
    """Labels rooms with the platform they are bridged from."""

    def __init__(
        self,
        client: MatrixClient,
        bot_markers: Sequence[Tuple[str, Platform]],
    ):
        """
        Args:
            client: Protocol client for power level / member lookups
            bot_markers: (identity substring, platform) pairs in match order
        """
        self.client = client
        self.bot_markers = [(marker.lower(), platform) for marker, platform in bot_markers]

    def match_bot_identity(self, user_id: Optional[str]) -> Optional[Platform]:
        if not user_id:
            return None
        lowered = user_id.lower()
        for marker, platform in self.bot_markers:
            if marker in lowered:
                return platform
        return None

    def is_bridge_bot(self, user_id: str) -> bool:
        return self.match_bot_identity(user_id) is not None or localpart(
            user_id
        ).lower().endswith("bot")

    async def classify_by_admins(self, room_id: str) -> Optional[PlatformLabel]:
        power_levels = await self.client.power_levels(room_id)
        users: Dict[str, Any] = power_levels.get("users") or {}
        levels = {
            user_id: level for user_id, level in users.items() if isinstance(level, int)
        }
        if not levels:
            return None
        top = max(levels.values())
        admins = sorted(user_id for user_id, level in levels.items() if level == top)
        for marker, platform in self.bot_markers:
            if any(marker in admin.lower() for admin in admins):
                return platform.label
        return None

    def classify_by_bridge_metadata(
        self, state_events: Iterable[Dict[str, Any]]
    ) -> Optional[PlatformLabel]:
        for event in state_events:
            event_type = event.get("type") or ""
            content = event.get("content") or {}
            if not (
                event_type in BRIDGE_STATE_TYPES
                or "bridge" in event_type
                or "bridge" in content
            ):
                continue

            bridge = content.get("bridge")
            identities = [content.get("bridgebot"), content.get("creator")]
            if isinstance(bridge, str):
                identities.append(bridge)
            for identity in identities:
                platform = self.match_bot_identity(identity)
                if platform:
                    return platform.label

            names = [
                (content.get("protocol") or {}).get("id"),
                (content.get("channel") or {}).get("platform"),
                (bridge or {}).get("platform") if isinstance(bridge, dict) else None,
            ]
            for name in names:
                if isinstance(name, str) and name.lower() in PROTOCOL_ALIASES:
                    return PROTOCOL_ALIASES[name.lower()].label
        return None

    async def classify_room(
        self,
        room_id: str,
        state_events: Optional[List[Dict[str, Any]]] = None,
        room_name: Optional[str] = None,
    ) -> PlatformLabel:
        """
        Classify a room.

        Args:
            room_id: Matrix room id
            state_events: Known state events of the room
            room_name: Display name of the room

        Returns:
            PlatformLabel of the room, Matrix/MX when nothing matches
        """
        try:
            label = await self.classify_by_admins(room_id)
            if label:
                return label
        except Exception as e:
            logger.debug(f"[PlatformClassifier] Admin lookup failed for {room_id}: {e}")

        try:
            label = self.classify_by_bridge_metadata(state_events or [])
            if label:
                return label
        except Exception as e:
            logger.debug(f"[PlatformClassifier] Bridge metadata failed for {room_id}: {e}")

        label = classify_by_name(room_name)
        if label:
            return label
        return DEFAULT_PLATFORM_LABEL

    async def synthesize_room_name(self, room_id: str, label: PlatformLabel) -> str:
        """
        Build a name for a bridged room that only has a placeholder name.

        Uses the display names of the non-bot, non-self participants.
        Falls back to "<Platform> Chat".
        """
        fallback = f"{label.platform} Chat"
        try:
            members = await self.client.joined_members(room_id)
        except Exception as e:
            logger.debug(f"[PlatformClassifier] Member lookup failed for {room_id}: {e}")
            return fallback

        names = []
        for user_id, profile in members.items():
            if user_id == self.client.user_id or self.is_bridge_bot(user_id):
                continue
            display_name = (profile or {}).get("display_name") or ""
            # Bridges append the platform in parentheses, e.g. "Alice (Telegram)"
            display_name = display_name.split(" (", 1)[0].strip()
            names.append(display_name or localpart(user_id))

        if not names:
            return fallback
        shown = ", ".join(names[:MAX_NAMED_PARTICIPANTS])
        if len(names) > MAX_NAMED_PARTICIPANTS:
            shown = f"{shown} and {len(names) - MAX_NAMED_PARTICIPANTS} more"
        return shown


def default_bot_markers(
    whatsapp: str, telegram: str, instagram: str, twitter: str
) -> List[Tuple[str, Platform]]:
    """Identity markers in the order admin sets are checked"""
    return [
        (telegram, Platform.TELEGRAM),
        (whatsapp, Platform.WHATSAPP),
        (instagram, Platform.INSTAGRAM),
        ("instagram", Platform.INSTAGRAM),
        (twitter, Platform.TWITTER),
    ]

