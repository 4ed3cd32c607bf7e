# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Room and message schemas returned to route handlers and realtime subscribers.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RoomSummary(BaseModel):
    """Summary of a room, rebuilt from the homeserver on every request."""

    room_id: str
    name: str
    avatar: Optional[str] = None
    type: Literal["direct", "group"] = "direct"
    platform: str
    platform_code: str
    last_message: Optional[str] = None
    last_message_ts: int = 0  # milliseconds since epoch
    unread_count: int = 0
    invited: bool = False


class ReactionSummary(BaseModel):
    """Reactions with the same key on one message."""

    emoji: str
    count: int
    senders: List[str] = Field(default_factory=list)


class EnrichedMessage(BaseModel):
    """A timeline message with resolved media, sender metadata and reactions."""

    event_id: str
    room_id: str
    sender: str
    sender_name: str
    sender_avatar: Optional[str] = None
    msgtype: Optional[str] = None
    body: str = ""
    content: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int = 0
    reply_to: Optional[str] = None
    reactions: List[ReactionSummary] = Field(default_factory=list)


class RoomHistory(BaseModel):
    """Messages and reactions of a room within a time window."""

    room_id: str
    since_ts: int
    messages: List[EnrichedMessage] = Field(default_factory=list)
    reactions: Dict[str, List[ReactionSummary]] = Field(default_factory=dict)


class CreateGroupRequest(BaseModel):
    name: str
    invitees: List[str] = Field(default_factory=list)
    topic: Optional[str] = None


class ReactionRequest(BaseModel):
    event_id: str
    emoji: str
