# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from unittest.mock import MagicMock

import httpx
import pytest

from gateway.core.config import Settings
from gateway.services.matrix.client import MatrixClient
from gateway.services.matrix.credentials import CredentialManager
from gateway.services.matrix.media import MediaResolver

HOMESERVER_URL = "https://hs.example"
SERVER_NAME = "hs.example"
GATEWAY_USER = "@gateway:hs.example"

RouteResponse = Union[Dict[str, Any], List[Any], Callable[[httpx.Request], httpx.Response]]


class FakeHomeserver:
    """
    Route table answering homeserver requests through httpx.MockTransport.

    Routes are matched on (method, decoded path). Unknown routes answer 404
    M_UNRECOGNIZED, the way a real homeserver does.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Tuple[int, RouteResponse]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, response: RouteResponse, status_code: int = 200):
        self.routes[(method, path)] = (status_code, response)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"errcode": "M_UNRECOGNIZED", "error": "Unrecognized"})
        status_code, response = route
        if callable(response):
            return response(request)
        return httpx.Response(status_code, json=response)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class ScriptedBridgeClient:
    """
    In-memory stand-in for MatrixClient used by bridge dialogue tests.

    Each room keeps a timeline; commands sent with send_text trigger the
    replies scripted for that exact text, posted by the room's bot.
    """

    def __init__(self, user_id: str = GATEWAY_USER):
        self.user_id = user_id
        self.credentials = MagicMock(access_token="token-1")
        self.rooms: Dict[str, set] = {}
        self.timelines: Dict[str, List[Dict[str, Any]]] = {}
        self.scripts: Dict[str, List[Union[str, Dict[str, Any]]]] = {}
        self.sent: List[Tuple[str, str]] = []
        self.created: List[Dict[str, Any]] = []
        self.media_ok = True
        self.fail_send: Optional[Exception] = None
        self._ids = itertools.count(1)

    def reply_to(self, command: str, *replies: Union[str, Dict[str, Any]]) -> None:
        self.scripts[command] = list(replies)

    def add_room(self, room_id: str, *members: str) -> None:
        self.rooms[room_id] = {self.user_id, *members}
        self.timelines.setdefault(room_id, [])

    def _bot_of(self, room_id: str) -> Optional[str]:
        others = sorted(self.rooms.get(room_id, set()) - {self.user_id})
        return others[0] if others else None

    def post(self, room_id: str, sender: str, content: Union[str, Dict[str, Any]]) -> str:
        if isinstance(content, str):
            content = {"msgtype": "m.text", "body": content}
        event_id = f"$event{next(self._ids)}"
        self.timelines.setdefault(room_id, []).append(
            {
                "type": "m.room.message",
                "event_id": event_id,
                "sender": sender,
                "content": content,
                "origin_server_ts": 1_700_000_000_000 + len(self.timelines[room_id]),
            }
        )
        return event_id

    def bot_says(self, room_id: str, content: Union[str, Dict[str, Any]]) -> str:
        return self.post(room_id, self._bot_of(room_id), content)

    async def joined_rooms(self) -> List[str]:
        return list(self.rooms)

    async def joined_members(self, room_id: str) -> Dict[str, Dict[str, Any]]:
        return {member: {} for member in self.rooms[room_id]}

    async def create_room(self, **payload) -> str:
        room_id = f"!room{len(self.rooms) + 1}:{SERVER_NAME}"
        self.created.append(payload)
        self.add_room(room_id, *payload.get("invite", []))
        return room_id

    async def send_text(self, room_id: str, body: str, reply_to: Optional[str] = None) -> str:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append((room_id, body))
        event_id = self.post(room_id, self.user_id, body)
        for reply in self.scripts.get(body, []):
            self.bot_says(room_id, reply)
        return event_id

    async def messages(self, room_id: str, limit: int = 20, from_token=None, direction="b"):
        newest_first = list(reversed(self.timelines.get(room_id, [])))
        return {"chunk": newest_first[:limit]}

    async def media_available(self, url: str, timeout: float = 5.0) -> bool:
        return self.media_ok


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        MATRIX_HOMESERVER_URL=HOMESERVER_URL,
        MATRIX_SERVER_NAME=SERVER_NAME,
        MATRIX_ACCESS_TOKEN="token-1",
        MATRIX_USER_ID=GATEWAY_USER,
    )


@pytest.fixture
def homeserver():
    """Fake homeserver route table."""
    return FakeHomeserver()


@pytest.fixture
def credentials():
    return CredentialManager(access_token="token-1", user_id=GATEWAY_USER)


@pytest.fixture
def matrix_client(homeserver, credentials):
    """MatrixClient talking to the fake homeserver."""
    return MatrixClient(HOMESERVER_URL, credentials, transport=homeserver.transport)


@pytest.fixture
def media():
    return MediaResolver(HOMESERVER_URL)


@pytest.fixture
def bridge_client():
    """Scripted bridge bot client."""
    return ScriptedBridgeClient()
