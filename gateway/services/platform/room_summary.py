# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Room summary extraction from sync room blocks.
"""

import logging
from typing import Any, Dict, List, Optional

from gateway.schemas.room import RoomSummary
from gateway.services.matrix.media import MediaResolver
from gateway.services.platform.classifier import PlatformClassifier, is_placeholder_name

logger = logging.getLogger(__name__)

UNKNOWN_ROOM_NAME = "Unknown Room"


def room_state_events(room_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """State events of a joined (state + timeline) or invited (invite_state) room"""
    events: List[Dict[str, Any]] = []
    events.extend((room_data.get("state") or {}).get("events") or [])
    events.extend((room_data.get("invite_state") or {}).get("events") or [])
    for event in (room_data.get("timeline") or {}).get("events") or []:
        if "state_key" in event:
            events.append(event)
    return events


def latest_state_content(
    events: List[Dict[str, Any]], event_type: str
) -> Optional[Dict[str, Any]]:
    content = None
    for event in events:
        if event.get("type") == event_type and event.get("state_key", "") == "":
            content = event.get("content") or {}
    return content


class RoomSummaryBuilder:
    """Builds RoomSummary objects; nothing is cached between calls."""

    def __init__(self, classifier: PlatformClassifier, media: MediaResolver):
        self.classifier = classifier
        self.media = media

    async def build(
        self, room_id: str, room_data: Dict[str, Any], invited: bool = False
    ) -> RoomSummary:
        """
        Build the summary of one room.

        Args:
            room_id: Matrix room id
            room_data: The room's block from a sync response
            invited: Whether the room came from rooms.invite

        Returns:
            RoomSummary with platform label and synthesized name if needed
        """
        state_events = room_state_events(room_data)

        name_content = latest_state_content(state_events, "m.room.name") or {}
        alias_content = latest_state_content(state_events, "m.room.canonical_alias") or {}
        name = name_content.get("name") or alias_content.get("alias") or UNKNOWN_ROOM_NAME

        avatar_content = latest_state_content(state_events, "m.room.avatar") or {}
        avatar = self.media.resolve_download_url(avatar_content.get("url")) or None

        create_content = latest_state_content(state_events, "m.room.create") or {}
        joined_count = (room_data.get("summary") or {}).get("m.joined_member_count", 0)
        is_group = (
            create_content.get("type") == "group"
            or create_content.get("room_type") == "group"
            or joined_count > 2
        )

        last_message = None
        last_message_ts = 0
        timeline = (room_data.get("timeline") or {}).get("events") or []
        for event in reversed(timeline):
            if event.get("type") == "m.room.message":
                last_message = (event.get("content") or {}).get("body")
                last_message_ts = event.get("origin_server_ts", 0)
                break

        unread = (room_data.get("unread_notifications") or {}).get(
            "notification_count", 0
        )

        label = await self.classifier.classify_room(room_id, state_events, name)
        if label.is_bridged and is_placeholder_name(name, room_id):
            name = await self.classifier.synthesize_room_name(room_id, label)

        return RoomSummary(
            room_id=room_id,
            name=name,
            avatar=avatar,
            type="group" if is_group else "direct",
            platform=label.platform,
            platform_code=label.platform_code,
            last_message=last_message,
            last_message_ts=last_message_ts or 0,
            unread_count=unread or 0,
            invited=invited,
        )


def sort_rooms(rooms: List[RoomSummary]) -> List[RoomSummary]:
    """Most recent activity first"""
    return sorted(rooms, key=lambda room: room.last_message_ts, reverse=True)
