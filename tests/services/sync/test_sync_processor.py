# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for sync batch processing.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from gateway.core.exceptions import ProtocolError
from gateway.schemas.room import RoomSummary
from gateway.services.realtime import events
from gateway.services.sync.processor import SyncBatchProcessor

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)


def _summary(room_id, ts=0, name=None, invited=False):
    return RoomSummary(
        room_id=room_id,
        name=name or room_id,
        platform="Telegram",
        platform_code="TG",
        last_message_ts=ts,
        invited=invited,
    )


def _message(event_id, ts, body="hi"):
    return {
        "type": "m.room.message",
        "event_id": event_id,
        "sender": "@alice:hs.example",
        "origin_server_ts": ts,
        "content": {"msgtype": "m.text", "body": body},
    }


def _reaction(event_id, ts, target="$m1", key="👍"):
    return {
        "type": "m.reaction",
        "event_id": event_id,
        "sender": "@bob:hs.example",
        "origin_server_ts": ts,
        "content": {"m.relates_to": {"rel_type": "m.annotation", "event_id": target, "key": key}},
    }


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.join = AsyncMock(side_effect=lambda room_id: room_id)
    return client


@pytest.fixture
def summaries():
    builder = MagicMock()

    async def build(room_id, room_data, invited=False):
        return _summary(room_id, ts=room_data.get("ts", 0), invited=invited)

    builder.build = AsyncMock(side_effect=build)
    return builder


@pytest.fixture
def processor(mock_client, summaries, media):
    return SyncBatchProcessor(
        mock_client, summaries, media, stale_event_seconds=60, clock=lambda: NOW
    )


class TestBuildRoomSummaries:
    """Tests for room summary collection."""

    @pytest.mark.asyncio
    async def test_joined_and_invited_rooms_sorted(self, processor, mock_client):
        response = {
            "rooms": {
                "join": {"!old:hs": {"ts": 10}, "!new:hs": {"ts": 30}},
                "invite": {"!inv:hs": {"ts": 20}},
            }
        }

        rooms = await processor.build_room_summaries(response)

        assert [room.room_id for room in rooms] == ["!new:hs", "!inv:hs", "!old:hs"]
        assert rooms[1].invited is True
        mock_client.join.assert_awaited_once_with("!inv:hs")

    @pytest.mark.asyncio
    async def test_failed_join_is_skipped(self, processor, mock_client):
        """Test an invite is only reported after a successful join."""
        mock_client.join.side_effect = ProtocolError(403, {"errcode": "M_FORBIDDEN"})
        response = {"rooms": {"join": {"!a:hs": {}}, "invite": {"!inv:hs": {}}}}

        rooms = await processor.build_room_summaries(response)

        assert [room.room_id for room in rooms] == ["!a:hs"]


class TestProcess:
    """Tests for event dispatch order."""

    @pytest.mark.asyncio
    async def test_rooms_updated_then_timeline_events(self, processor):
        emit = AsyncMock()
        response = {
            "next_batch": "s2",
            "rooms": {
                "join": {
                    "!a:hs": {
                        "timeline": {
                            "events": [
                                _message("$m1", NOW_MS - 1000),
                                _reaction("$r1", NOW_MS - 500),
                                {"type": "m.room.member", "event_id": "$join", "state_key": "x"},
                            ]
                        }
                    }
                }
            },
        }

        await processor.process("alice", response, emit)

        names = [call.args[1] for call in emit.await_args_list]
        assert names == [events.ROOMS_UPDATED, events.NEW_MESSAGE, events.REACTION_ADDED]

        rooms_payload = emit.await_args_list[0].args[2]
        assert rooms_payload["next_batch"] == "s2"
        assert rooms_payload["rooms"][0]["room_id"] == "!a:hs"

        message = emit.await_args_list[1].args[2]
        assert message["event_id"] == "$m1"
        assert message["platform"] == "telegram"
        assert message["room_name"] == "!a:hs"

        reaction = emit.await_args_list[2].args[2]
        assert reaction["related_event_id"] == "$m1"
        assert reaction["reaction_key"] == "👍"

    @pytest.mark.asyncio
    async def test_empty_batch_emits_nothing(self, processor):
        emit = AsyncMock()

        rooms = await processor.process("alice", {"next_batch": "s2", "rooms": {}}, emit)

        assert rooms == []
        emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_events_skipped_only_on_limited_timeline(self, processor):
        """Test old events of a gap-filled timeline are not pushed."""
        old = _message("$old", NOW_MS - 120_000)
        fresh = _message("$fresh", NOW_MS - 5_000)
        summary = _summary("!a:hs")

        limited = processor.timeline_events(
            {"timeline": {"limited": True, "events": [old, fresh]}}, summary
        )
        unlimited = processor.timeline_events(
            {"timeline": {"limited": False, "events": [old, fresh]}}, summary
        )

        assert [payload["event_id"] for _, payload in limited] == ["$fresh"]
        assert [payload["event_id"] for _, payload in unlimited] == ["$old", "$fresh"]
