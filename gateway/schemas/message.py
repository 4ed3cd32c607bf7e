# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Outbound message schemas.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field


class OutgoingFile(BaseModel):
    """A file to be sent into a room."""

    filename: str
    content_type: str = "application/octet-stream"
    data: bytes


class SendItemResult(BaseModel):
    """Result of sending one part (text or one file) of a message."""

    type: Literal["text", "file"]
    success: bool
    event_id: Optional[str] = None
    filename: Optional[str] = None
    msgtype: Optional[str] = None
    url: Optional[str] = None
    provider: Optional[str] = None  # uploader that stored the file
    error: Optional[str] = None


class SendMessageResult(BaseModel):
    room_id: str
    results: List[SendItemResult] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        return bool(self.results) and all(item.success for item in self.results)


class ReactionResult(BaseModel):
    event_id: str
    room_id: str
    target_event_id: str
    emoji: str


class UserSearchResult(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
