# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Messaging operations on Matrix rooms: room lists, message pages with
enrichment, sending text / files / reactions, groups and user search.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from gateway.core.exceptions import MediaUploadFailed, ProtocolError
from gateway.schemas.message import (
    OutgoingFile,
    ReactionResult,
    SendItemResult,
    SendMessageResult,
    UserSearchResult,
)
from gateway.schemas.room import EnrichedMessage, ReactionSummary, RoomHistory, RoomSummary
from gateway.services.matrix.client import MatrixClient
from gateway.services.matrix.media import MediaResolver
from gateway.services.messaging.reactions import aggregate_reactions
from gateway.services.messaging.uploads import FallbackUploader, describe_file
from gateway.services.platform.classifier import PlatformClassifier, localpart
from gateway.services.realtime import events
from gateway.services.realtime.dispatcher import RealtimeDispatcher
from gateway.services.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 100
HISTORY_MAX_PAGES = 50
DAY_MS = 24 * 60 * 60 * 1000


class MessagingService:
    """Room and message operations exposed to route handlers."""

    def __init__(
        self,
        client: MatrixClient,
        media: MediaResolver,
        classifier: PlatformClassifier,
        sync_engine: SyncEngine,
        dispatcher: RealtimeDispatcher,
        uploader: FallbackUploader,
        messages_limit: int = 100,
        history_days: int = 15,
        search_limit: int = 10,
        clock=time.time,
    ):
        self.client = client
        self.media = media
        self.classifier = classifier
        self.sync_engine = sync_engine
        self.dispatcher = dispatcher
        self.uploader = uploader
        self.messages_limit = messages_limit
        self.history_days = history_days
        self.search_limit = search_limit
        self._clock = clock

    async def list_rooms(self, user_id: Optional[str] = None) -> List[RoomSummary]:
        """All joined and invited rooms, most recent first"""
        rooms = await self.sync_engine.list_rooms()
        logger.info(f"[MessagingService] Listed {len(rooms)} rooms for {user_id}")
        return rooms

    async def _member_map(self, room_id: str) -> Dict[str, Dict[str, Optional[str]]]:
        try:
            members = await self.client.members(room_id)
        except ProtocolError as e:
            logger.warning(f"[MessagingService] Member lookup failed for {room_id}: {e}")
            return {}
        result = {}
        for event in members:
            content = event.get("content") or {}
            result[event.get("state_key")] = {
                "name": content.get("displayname"),
                "avatar": self.media.resolve_download_url(content.get("avatar_url")),
            }
        return result

    def _enrich(
        self,
        event: Dict[str, Any],
        room_id: str,
        members: Dict[str, Dict[str, Optional[str]]],
        reactions: Dict[str, List[ReactionSummary]],
    ) -> EnrichedMessage:
        content = event.get("content") or {}
        sender = event.get("sender", "")
        profile = members.get(sender) or {}
        in_reply_to = (content.get("m.relates_to") or {}).get("m.in_reply_to") or {}
        return EnrichedMessage(
            event_id=event.get("event_id", ""),
            room_id=room_id,
            sender=sender,
            sender_name=profile.get("name") or localpart(sender),
            sender_avatar=profile.get("avatar"),
            msgtype=content.get("msgtype"),
            body=content.get("body", ""),
            content=self.media.enrich_content(content),
            timestamp=event.get("origin_server_ts", 0),
            reply_to=in_reply_to.get("event_id"),
            reactions=reactions.get(event.get("event_id"), []),
        )

    async def get_room_messages(
        self,
        room_id: str,
        limit: Optional[int] = None,
        from_token: Optional[str] = None,
    ) -> List[EnrichedMessage]:
        """
        Latest messages of a room, oldest first.

        Args:
            room_id: Matrix room id
            limit: Page size, defaults to the configured limit
            from_token: Pagination token to continue backwards from

        Returns:
            Messages with resolved media, sender metadata and reactions
        """
        page = await self.client.messages(
            room_id, limit=limit or self.messages_limit, from_token=from_token
        )
        chunk = page.get("chunk", [])
        members = await self._member_map(room_id)
        reactions = aggregate_reactions(chunk)
        messages = [
            self._enrich(event, room_id, members, reactions)
            for event in chunk
            if event.get("type") == "m.room.message"
        ]
        return sorted(messages, key=lambda message: message.timestamp)

    async def get_room_history(self, room_id: str, days: Optional[int] = None) -> RoomHistory:
        """Messages and reactions of the last N days, paging backwards"""
        days = days or self.history_days
        since_ts = int(self._clock() * 1000) - days * DAY_MS

        collected: List[Dict[str, Any]] = []
        from_token = None
        for _ in range(HISTORY_MAX_PAGES):
            page = await self.client.messages(
                room_id, limit=HISTORY_PAGE_SIZE, from_token=from_token
            )
            chunk = page.get("chunk", [])
            collected.extend(
                event for event in chunk if event.get("origin_server_ts", 0) >= since_ts
            )
            reached_window_start = any(
                event.get("origin_server_ts", 0) < since_ts for event in chunk
            )
            from_token = page.get("end")
            if not chunk or reached_window_start or not from_token:
                break

        members = await self._member_map(room_id)
        reactions = aggregate_reactions(collected)
        messages = sorted(
            (
                self._enrich(event, room_id, members, reactions)
                for event in collected
                if event.get("type") == "m.room.message"
            ),
            key=lambda message: message.timestamp,
        )
        return RoomHistory(
            room_id=room_id, since_ts=since_ts, messages=messages, reactions=reactions
        )

    async def _send_file(self, room_id: str, file: OutgoingFile) -> SendItemResult:
        msgtype, info = describe_file(file)
        try:
            url, provider = await self.uploader.upload(file)
        except MediaUploadFailed as e:
            logger.error(f"[MessagingService] {e}")
            return SendItemResult(
                type="file",
                success=False,
                filename=file.filename,
                msgtype=msgtype,
                error=e.message,
            )

        if url.startswith("mxc://"):
            content = {"msgtype": msgtype, "body": file.filename, "url": url, "info": info}
        else:
            # Externally hosted files are sent as a link
            content = {
                "msgtype": "m.text",
                "body": f"{file.filename}: {url}",
                "external_url": url,
            }

        try:
            event_id = await self.client.send_event(room_id, "m.room.message", content)
        except ProtocolError as e:
            return SendItemResult(
                type="file",
                success=False,
                filename=file.filename,
                msgtype=msgtype,
                url=url,
                provider=provider,
                error=e.message,
            )
        return SendItemResult(
            type="file",
            success=True,
            event_id=event_id,
            filename=file.filename,
            msgtype=msgtype,
            url=self.media.resolve_download_url(url),
            provider=provider,
        )

    async def send_message(
        self,
        room_id: str,
        text: Optional[str] = None,
        files: Sequence[OutgoingFile] = (),
        reply_to: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SendMessageResult:
        """
        Send text and files to a room, each part independently.

        A failed part never prevents the others from being sent.

        Returns:
            SendMessageResult with one entry per part, text first
        """
        result = SendMessageResult(room_id=room_id)

        if text:
            try:
                event_id = await self.client.send_text(room_id, text, reply_to=reply_to)
                result.results.append(SendItemResult(type="text", success=True, event_id=event_id))
            except ProtocolError as e:
                logger.error(f"[MessagingService] Text send to {room_id} failed: {e}")
                result.results.append(SendItemResult(type="text", success=False, error=e.message))

        for file in files:
            result.results.append(await self._send_file(room_id, file))

        if user_id:
            await self.dispatcher.emit_to_user(
                user_id,
                events.MESSAGE_SENT,
                {"room_id": room_id, "results": [item.model_dump() for item in result.results]},
            )
        return result

    async def send_reaction(
        self,
        room_id: str,
        event_id: str,
        emoji: str,
        user_id: Optional[str] = None,
    ) -> ReactionResult:
        """
        React to a message, notify the sender and the room's subscribers.
        """
        reaction_event_id = await self.client.send_reaction(room_id, event_id, emoji)
        label = await self.classifier.classify_room(room_id)

        if user_id:
            await self.dispatcher.emit_to_user(
                user_id,
                events.SYNC_UPDATE,
                {"room_id": room_id, "type": "reaction", "event_id": reaction_event_id},
            )
        await self.dispatcher.emit_to_room(
            room_id,
            events.REACTION_ADDED,
            {
                "event_id": reaction_event_id,
                "room_id": room_id,
                "sender": self.client.user_id,
                "type": "reaction",
                "related_event_id": event_id,
                "reaction_key": emoji,
                "timestamp": int(self._clock() * 1000),
                "platform": label.platform.lower(),
            },
        )
        return ReactionResult(
            event_id=reaction_event_id,
            room_id=room_id,
            target_event_id=event_id,
            emoji=emoji,
        )

    async def create_group(
        self, name: str, invitees: Sequence[str], topic: Optional[str] = None
    ) -> str:
        payload: Dict[str, Any] = {
            "preset": "private_chat",
            "name": name,
            "invite": list(invitees),
        }
        if topic:
            payload["topic"] = topic
        room_id = await self.client.create_room(**payload)
        logger.info(f"[MessagingService] Created group {room_id} ({len(invitees)} invitees)")
        return room_id

    async def leave_room(self, room_id: str) -> None:
        await self.client.leave(room_id)

    async def search_users(self, term: str, limit: Optional[int] = None) -> List[UserSearchResult]:
        results = await self.client.search_users(term, limit or self.search_limit)
        return [
            UserSearchResult(
                user_id=item.get("user_id"),
                display_name=item.get("display_name"),
                avatar_url=self.media.resolve_download_url(item.get("avatar_url")),
            )
            for item in results
        ]
