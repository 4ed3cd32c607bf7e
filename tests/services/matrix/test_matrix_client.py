# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the Matrix client-server API client.
"""

import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

from gateway.core.exceptions import CredentialExpired, ProtocolError, ProtocolTimeout
from gateway.services.matrix.client import MatrixClient
from gateway.services.matrix.credentials import CredentialManager

HS = "https://hs.example"
SYNC = "/_matrix/client/v3/sync"
JOINED_ROOMS = "/_matrix/client/v3/joined_rooms"
REFRESH = "/_matrix/client/v3/refresh"


class TestRequests:
    """Tests for request plumbing and error mapping."""

    @pytest.mark.asyncio
    async def test_sync_sends_bearer_token_and_cursor(self, homeserver, matrix_client):
        """Test sync passes the token, cursor and long-poll timeout."""
        homeserver.add("GET", SYNC, {"next_batch": "s2", "rooms": {}})

        response = await matrix_client.sync(since="s1", timeout_ms=30000)

        assert response["next_batch"] == "s2"
        request = homeserver.calls("GET", SYNC)[0]
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.url.params["since"] == "s1"
        assert request.url.params["timeout"] == "30000"

    @pytest.mark.asyncio
    async def test_sync_filter_is_json_encoded(self, homeserver, matrix_client):
        homeserver.add("GET", SYNC, {"next_batch": "s1"})

        await matrix_client.sync(sync_filter={"room": {"timeline": {"limit": 1}}})

        request = homeserver.calls("GET", SYNC)[0]
        assert json.loads(request.url.params["filter"]) == {"room": {"timeline": {"limit": 1}}}
        assert "since" not in request.url.params

    @pytest.mark.asyncio
    async def test_not_found_raises_terminal_protocol_error(self, homeserver, matrix_client):
        """Test a 404 carries the status, errcode and server message."""
        homeserver.add(
            "GET",
            "/_matrix/client/v3/rooms/!gone:hs.example/joined_members",
            {"errcode": "M_NOT_FOUND", "error": "Room not found"},
            status_code=404,
        )

        with pytest.raises(ProtocolError) as exc_info:
            await matrix_client.joined_members("!gone:hs.example")

        assert exc_info.value.status_code == 404
        assert exc_info.value.errcode == "M_NOT_FOUND"
        assert exc_info.value.message == "Room not found"
        assert exc_info.value.is_terminal is True

    @pytest.mark.asyncio
    async def test_server_error_is_not_terminal(self, homeserver, matrix_client):
        homeserver.add("GET", JOINED_ROOMS, {"error": "boom"}, status_code=502)

        with pytest.raises(ProtocolError) as exc_info:
            await matrix_client.joined_rooms()

        assert exc_info.value.status_code == 502
        assert exc_info.value.is_terminal is False

    @pytest.mark.asyncio
    async def test_unreachable_homeserver_has_status_zero(self, credentials):
        """Test transport failures map to status 0."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = MatrixClient(HS, credentials, transport=httpx.MockTransport(handler))

        with pytest.raises(ProtocolError) as exc_info:
            await client.joined_rooms()

        assert exc_info.value.status_code == 0
        assert "unreachable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_raises_protocol_timeout(self, credentials):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = MatrixClient(HS, credentials, transport=httpx.MockTransport(handler))

        with pytest.raises(ProtocolTimeout):
            await client.sync(timeout_ms=30000)


class TestCredentialRefresh:
    """Tests for the 401 refresh-and-retry path."""

    @pytest.mark.asyncio
    async def test_401_refreshes_once_and_retries(self, homeserver):
        """Test a rejected token is refreshed and the call retried."""
        credentials = CredentialManager("token-1", "@gateway:hs.example", refresh_token="r1")
        client = MatrixClient(HS, credentials, transport=homeserver.transport)

        def joined_rooms(request):
            if request.headers["Authorization"] == "Bearer token-1":
                return httpx.Response(401, json={"errcode": "M_UNKNOWN_TOKEN"})
            return httpx.Response(200, json={"joined_rooms": ["!a:hs.example"]})

        homeserver.add("GET", JOINED_ROOMS, joined_rooms)
        homeserver.add("POST", REFRESH, {"access_token": "token-2", "refresh_token": "r2"})

        rooms = await client.joined_rooms()

        assert rooms == ["!a:hs.example"]
        assert credentials.access_token == "token-2"
        assert credentials.refresh_count == 1
        refresh_request = homeserver.calls("POST", REFRESH)[0]
        assert "Authorization" not in refresh_request.headers
        assert json.loads(refresh_request.content) == {"refresh_token": "r1"}

    @pytest.mark.asyncio
    async def test_concurrent_401s_trigger_single_refresh(self):
        """Test callers rejected with the same token share one refresh."""
        refresh_calls = []

        async def handler(request):
            await asyncio.sleep(0.01)
            if request.url.path == REFRESH:
                refresh_calls.append(request)
                return httpx.Response(200, json={"access_token": "token-2"})
            if request.headers.get("Authorization") == "Bearer token-1":
                return httpx.Response(401, json={"errcode": "M_UNKNOWN_TOKEN"})
            return httpx.Response(200, json={"joined_rooms": []})

        credentials = CredentialManager("token-1", "@gateway:hs.example", refresh_token="r1")
        client = MatrixClient(HS, credentials, transport=httpx.MockTransport(handler))

        results = await asyncio.gather(*(client.joined_rooms() for _ in range(3)))

        assert results == [[], [], []]
        assert len(refresh_calls) == 1
        assert credentials.refresh_count == 1

    @pytest.mark.asyncio
    async def test_password_login_used_without_refresh_token(self, homeserver):
        credentials = CredentialManager(
            "token-1", "@gateway:hs.example", password="secret", device_name="gw"
        )
        client = MatrixClient(HS, credentials, transport=homeserver.transport)

        def joined_rooms(request):
            if request.headers["Authorization"] == "Bearer token-1":
                return httpx.Response(401, json={"errcode": "M_UNKNOWN_TOKEN"})
            return httpx.Response(200, json={"joined_rooms": []})

        homeserver.add("GET", JOINED_ROOMS, joined_rooms)
        homeserver.add(
            "POST",
            "/_matrix/client/v3/login",
            {"access_token": "token-3", "user_id": "@gateway:hs.example"},
        )

        await client.joined_rooms()

        assert credentials.access_token == "token-3"
        login_body = json.loads(homeserver.calls("POST", "/_matrix/client/v3/login")[0].content)
        assert login_body["type"] == "m.login.password"
        assert login_body["identifier"] == {"type": "m.id.user", "user": "@gateway:hs.example"}
        assert login_body["initial_device_display_name"] == "gw"

    @pytest.mark.asyncio
    async def test_401_without_refresh_method_raises(self, homeserver, matrix_client):
        """Test CredentialExpired surfaces when the token cannot be renewed."""
        homeserver.add("GET", JOINED_ROOMS, {"errcode": "M_UNKNOWN_TOKEN"}, status_code=401)

        with pytest.raises(CredentialExpired) as exc_info:
            await matrix_client.joined_rooms()

        assert exc_info.value.status_code == 401
        assert len(homeserver.calls("GET", JOINED_ROOMS)) == 1


class TestRoomCalls:
    """Tests for message, media and directory calls."""

    @pytest.mark.asyncio
    async def test_send_text_with_reply_relation(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/rooms/!room:hs.example/send/m.room.message/txn1"
        homeserver.add("PUT", path, {"event_id": "$sent"})

        with patch("gateway.services.matrix.client.new_txn_id", return_value="txn1"):
            event_id = await matrix_client.send_text("!room:hs.example", "hi", reply_to="$orig")

        assert event_id == "$sent"
        body = json.loads(homeserver.calls("PUT", path)[0].content)
        assert body == {
            "msgtype": "m.text",
            "body": "hi",
            "m.relates_to": {"m.in_reply_to": {"event_id": "$orig"}},
        }

    @pytest.mark.asyncio
    async def test_send_reaction_is_annotation(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/rooms/!room:hs.example/send/m.reaction/txn2"
        homeserver.add("PUT", path, {"event_id": "$reaction"})

        with patch("gateway.services.matrix.client.new_txn_id", return_value="txn2"):
            await matrix_client.send_reaction("!room:hs.example", "$target", "👍")

        body = json.loads(homeserver.calls("PUT", path)[0].content)
        assert body["m.relates_to"] == {
            "rel_type": "m.annotation",
            "event_id": "$target",
            "key": "👍",
        }

    @pytest.mark.asyncio
    async def test_upload_returns_content_uri(self, homeserver, matrix_client):
        homeserver.add("POST", "/_matrix/media/v3/upload", {"content_uri": "mxc://hs.example/abc"})

        uri = await matrix_client.upload(b"png-bytes", "image/png", "photo.png")

        assert uri == "mxc://hs.example/abc"
        request = homeserver.calls("POST", "/_matrix/media/v3/upload")[0]
        assert request.headers["Content-Type"] == "image/png"
        assert request.url.params["filename"] == "photo.png"
        assert request.content == b"png-bytes"

    @pytest.mark.asyncio
    async def test_messages_pages_backwards(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/rooms/!room:hs.example/messages"
        homeserver.add("GET", path, {"chunk": [], "end": "t2"})

        page = await matrix_client.messages("!room:hs.example", limit=5, from_token="t1")

        assert page["end"] == "t2"
        params = homeserver.calls("GET", path)[0].url.params
        assert params["dir"] == "b"
        assert params["limit"] == "5"
        assert params["from"] == "t1"

    @pytest.mark.asyncio
    async def test_media_available(self, homeserver, matrix_client):
        homeserver.add("HEAD", "/_matrix/media/v3/download/hs.example/qr", {})

        assert await matrix_client.media_available(
            "https://hs.example/_matrix/media/v3/download/hs.example/qr"
        ) is True
        assert await matrix_client.media_available(
            "https://hs.example/_matrix/media/v3/download/hs.example/missing"
        ) is False


class TestAccountAndMembershipCalls:
    """Tests for state, invite, registration and logout calls."""

    @pytest.mark.asyncio
    async def test_room_state(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/rooms/!room:hs.example/state"
        homeserver.add("GET", path, [{"type": "m.room.name", "content": {"name": "Team"}}])

        state = await matrix_client.room_state("!room:hs.example")

        assert state[0]["content"]["name"] == "Team"

    @pytest.mark.asyncio
    async def test_invite(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/rooms/!room:hs.example/invite"
        homeserver.add("POST", path, {})

        await matrix_client.invite("!room:hs.example", "@bob:hs.example")

        assert json.loads(homeserver.calls("POST", path)[0].content) == {
            "user_id": "@bob:hs.example"
        }

    @pytest.mark.asyncio
    async def test_register_is_unauthenticated(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/register"
        homeserver.add("POST", path, {"user_id": "@new:hs.example", "access_token": "t"})

        result = await matrix_client.register("new", "secret")

        assert result["user_id"] == "@new:hs.example"
        request = homeserver.calls("POST", path)[0]
        assert "Authorization" not in request.headers
        assert json.loads(request.content) == {
            "username": "new",
            "password": "secret",
            "auth": {"type": "m.login.dummy"},
        }

    @pytest.mark.asyncio
    async def test_logout(self, homeserver, matrix_client):
        path = "/_matrix/client/v3/logout"
        homeserver.add("POST", path, {})

        await matrix_client.logout()

        assert homeserver.calls("POST", path)[0].headers["Authorization"] == "Bearer token-1"
