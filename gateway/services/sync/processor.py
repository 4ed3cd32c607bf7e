# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Turns one /sync response into realtime events.

Order of emission for a batch: one ``rooms_updated`` with every room
summary (only when there is at least one room), then the timeline events
of each joined room in the order the homeserver returned them.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from gateway.core.exceptions import ProtocolError
from gateway.schemas.room import RoomSummary
from gateway.services.matrix.client import MatrixClient
from gateway.services.matrix.media import MediaResolver
from gateway.services.platform.room_summary import RoomSummaryBuilder, sort_rooms
from gateway.services.realtime import events

logger = logging.getLogger(__name__)

Emitter = Callable[[str, str, Dict[str, Any]], Awaitable[None]]


class SyncBatchProcessor:
    """Builds room summaries and dispatches timeline events of a batch."""

    def __init__(
        self,
        client: MatrixClient,
        summaries: RoomSummaryBuilder,
        media: MediaResolver,
        stale_event_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.summaries = summaries
        self.media = media
        self.stale_event_ms = stale_event_seconds * 1000
        self._clock = clock

    async def build_room_summaries(
        self, response: Dict[str, Any], auto_join: bool = True
    ) -> List[RoomSummary]:
        """
        Summaries of joined and invited rooms, most recent first.

        Invited rooms are joined first and only included once the join
        succeeded. Failed joins are logged and skipped.
        """
        rooms_block = response.get("rooms") or {}
        rooms: List[RoomSummary] = []

        for room_id, room_data in (rooms_block.get("join") or {}).items():
            rooms.append(await self.summaries.build(room_id, room_data))

        for room_id, room_data in (rooms_block.get("invite") or {}).items():
            if auto_join:
                try:
                    await self.client.join(room_id)
                    logger.info(f"[SyncBatchProcessor] Auto-joined invited room {room_id}")
                except ProtocolError as e:
                    logger.warning(f"[SyncBatchProcessor] Failed to join {room_id}: {e}")
                    continue
            rooms.append(await self.summaries.build(room_id, room_data, invited=True))

        return sort_rooms(rooms)

    def _is_stale(self, event: Dict[str, Any], now_ms: float) -> bool:
        timestamp = event.get("origin_server_ts")
        if not timestamp:
            return False
        return now_ms - timestamp > self.stale_event_ms

    def timeline_events(
        self, room_data: Dict[str, Any], summary: RoomSummary
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """(event name, payload) pairs of a room's new timeline events"""
        timeline = room_data.get("timeline") or {}
        limited = timeline.get("limited", False)
        now_ms = self._clock() * 1000

        dispatched = []
        for event in timeline.get("events") or []:
            # A limited timeline is a gap fill, old history is not news
            if limited and self._is_stale(event, now_ms):
                continue
            if event.get("type") == "m.room.message":
                dispatched.append(
                    (
                        events.NEW_MESSAGE,
                        events.message_payload(
                            event,
                            summary.room_id,
                            summary.name,
                            summary.platform,
                            self.media,
                        ),
                    )
                )
            elif events.is_annotation(event):
                dispatched.append(
                    (
                        events.REACTION_ADDED,
                        events.reaction_payload(event, summary.room_id, summary.platform),
                    )
                )
        return dispatched

    async def process(
        self, user_id: str, response: Dict[str, Any], emit: Emitter
    ) -> List[RoomSummary]:
        """
        Dispatch one sync batch to a user.

        Args:
            user_id: Subscriber the events go to
            response: Decoded /sync response
            emit: Coroutine (user_id, event_name, payload)

        Returns:
            Room summaries of the batch
        """
        rooms = await self.build_room_summaries(response)
        if rooms:
            await emit(
                user_id,
                events.ROOMS_UPDATED,
                {
                    "rooms": [room.model_dump() for room in rooms],
                    "next_batch": response.get("next_batch"),
                },
            )

        by_id = {room.room_id: room for room in rooms}
        joined = (response.get("rooms") or {}).get("join") or {}
        for room_id, room_data in joined.items():
            summary = by_id.get(room_id)
            if summary is None:
                continue
            for event_name, payload in self.timeline_events(room_data, summary):
                await emit(user_id, event_name, payload)

        return rooms
