# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Realtime event names and payload builders.
"""

from typing import Any, Dict

from gateway.services.matrix.media import MediaResolver

# Server -> client events
PLATFORM_STATUS = "platform_status"
ROOMS_UPDATED = "rooms_updated"
NEW_MESSAGE = "new_message"
REACTION_ADDED = "reaction_added"
SYNC_ERROR = "sync_error"
MESSAGE_SENT = "message_sent"
SYNC_UPDATE = "sync_update"
SYNC_COMPLETE = "sync_complete"


def message_payload(
    event: Dict[str, Any],
    room_id: str,
    room_name: str,
    platform: str,
    media: MediaResolver,
) -> Dict[str, Any]:
    content = event.get("content") or {}
    return {
        "event_id": event.get("event_id"),
        "room_id": room_id,
        "room_name": room_name,
        "sender": event.get("sender"),
        "msgtype": content.get("msgtype"),
        "body": content.get("body", ""),
        "content": media.enrich_content(content),
        "timestamp": event.get("origin_server_ts", 0),
        "platform": platform.lower(),
    }


def reaction_payload(
    event: Dict[str, Any], room_id: str, platform: str
) -> Dict[str, Any]:
    relates = (event.get("content") or {}).get("m.relates_to") or {}
    return {
        "event_id": event.get("event_id"),
        "room_id": room_id,
        "sender": event.get("sender"),
        "type": "reaction",
        "related_event_id": relates.get("event_id"),
        "reaction_key": relates.get("key"),
        "timestamp": event.get("origin_server_ts", 0),
        "platform": platform.lower(),
    }


def is_annotation(event: Dict[str, Any]) -> bool:
    relates = (event.get("content") or {}).get("m.relates_to") or {}
    return event.get("type") == "m.reaction" and relates.get("rel_type") == "m.annotation"
