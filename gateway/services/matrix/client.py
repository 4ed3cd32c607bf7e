# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Matrix client-server API client.

Thin async wrapper over the homeserver HTTP API. Every call returns the
decoded JSON body or raises ProtocolError. A 401 refreshes the shared
credential once and retries the call once before surfacing.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from gateway.core.exceptions import CredentialExpired, ProtocolError, ProtocolTimeout
from gateway.services.matrix.credentials import CredentialManager

logger = logging.getLogger(__name__)

CLIENT_PREFIX = "/_matrix/client/v3"
MEDIA_PREFIX = "/_matrix/media/v3"


def _q(value: str) -> str:
    """Quote an identifier for use as a single path segment"""
    return quote(value, safe="")


def new_txn_id() -> str:
    return uuid.uuid4().hex


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"error": response.text}


class MatrixClient:
    """Authenticated client for one homeserver and one shared credential."""

    def __init__(
        self,
        homeserver_url: str,
        credentials: CredentialManager,
        request_timeout: float = 10.0,
        sync_timeout: float = 65.0,
        upload_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.homeserver_url = homeserver_url.rstrip("/")
        self.credentials = credentials
        self.request_timeout = request_timeout
        self.sync_timeout = sync_timeout
        self.upload_timeout = upload_timeout
        self._http = httpx.AsyncClient(
            base_url=self.homeserver_url,
            timeout=request_timeout,
            transport=transport,
        )

    @property
    def user_id(self) -> str:
        return self.credentials.user_id

    async def close(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        token: Optional[str],
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Any:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(
                method,
                path,
                headers=headers,
                timeout=timeout or self.request_timeout,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise ProtocolTimeout(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            # status 0: the homeserver could not be reached at all
            raise ProtocolError(0, message=f"Homeserver unreachable: {e}") from e

        if response.status_code == 401:
            raise CredentialExpired(_decode(response))
        if response.is_error:
            body = _decode(response)
            logger.debug(
                f"[MatrixClient] {method} {path} failed: {response.status_code} {body}"
            )
            raise ProtocolError(response.status_code, body)
        return _decode(response)

    async def request(
        self,
        method: str,
        path: str,
        authenticated: bool = True,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Any:
        """
        Issue a request against the homeserver.

        Args:
            method: HTTP method
            path: Absolute API path, e.g. "/_matrix/client/v3/sync"
            authenticated: Attach the shared bearer token
            timeout: Per call timeout, defaults to the short request timeout
            **kwargs: Passed to httpx (json, params, content, headers)

        Returns:
            Decoded JSON response body

        Raises:
            ProtocolError: Non-2xx response or transport failure
            CredentialExpired: 401 that survived one refresh and retry
        """
        if not authenticated:
            return await self._send(method, path, None, timeout, **kwargs)

        token = self.credentials.access_token
        try:
            return await self._send(method, path, token, timeout, **kwargs)
        except CredentialExpired:
            logger.warning(f"[MatrixClient] {method} {path} got 401, refreshing credential")
            new_token = await self.credentials.refresh(token, self)
            return await self._send(method, path, new_token, timeout, **kwargs)

    # ------------------------------------------------------------------
    # Sync and rooms
    # ------------------------------------------------------------------

    async def sync(
        self,
        since: Optional[str] = None,
        timeout_ms: int = 0,
        sync_filter: Optional[Dict[str, Any]] = None,
        full_state: bool = False,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"timeout": timeout_ms}
        if since:
            params["since"] = since
        if sync_filter is not None:
            params["filter"] = json.dumps(sync_filter)
        if full_state:
            params["full_state"] = "true"
        return await self.request(
            "GET", f"{CLIENT_PREFIX}/sync", params=params, timeout=self.sync_timeout
        )

    async def joined_rooms(self) -> List[str]:
        data = await self.request("GET", f"{CLIENT_PREFIX}/joined_rooms")
        return data.get("joined_rooms", [])

    async def joined_members(self, room_id: str) -> Dict[str, Dict[str, Any]]:
        data = await self.request(
            "GET", f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/joined_members"
        )
        return data.get("joined", {})

    async def members(self, room_id: str) -> List[Dict[str, Any]]:
        data = await self.request("GET", f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/members")
        return data.get("chunk", [])

    async def room_state(self, room_id: str) -> List[Dict[str, Any]]:
        return await self.request("GET", f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/state")

    async def state_event(
        self, room_id: str, event_type: str, state_key: str = ""
    ) -> Dict[str, Any]:
        path = f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/state/{_q(event_type)}"
        if state_key:
            path = f"{path}/{_q(state_key)}"
        return await self.request("GET", path)

    async def power_levels(self, room_id: str) -> Dict[str, Any]:
        return await self.state_event(room_id, "m.room.power_levels")

    async def messages(
        self,
        room_id: str,
        limit: int = 20,
        from_token: Optional[str] = None,
        direction: str = "b",
    ) -> Dict[str, Any]:
        """Fetch a page of room events, newest first when direction is "b"."""
        params: Dict[str, Any] = {"dir": direction, "limit": limit}
        if from_token:
            params["from"] = from_token
        return await self.request(
            "GET", f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/messages", params=params
        )

    async def create_room(self, **payload) -> str:
        data = await self.request("POST", f"{CLIENT_PREFIX}/createRoom", json=payload)
        return data["room_id"]

    async def invite(self, room_id: str, user_id: str) -> None:
        await self.request(
            "POST",
            f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/invite",
            json={"user_id": user_id},
        )

    async def join(self, room_id: str) -> str:
        data = await self.request(
            "POST", f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/join", json={}
        )
        return data.get("room_id", room_id)

    async def leave(self, room_id: str) -> None:
        await self.request("POST", f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/leave", json={})

    async def send_event(
        self,
        room_id: str,
        event_type: str,
        content: Dict[str, Any],
        txn_id: Optional[str] = None,
    ) -> str:
        """Send a room event, returns its event id. A fresh txn id is used per call."""
        txn_id = txn_id or new_txn_id()
        data = await self.request(
            "PUT",
            f"{CLIENT_PREFIX}/rooms/{_q(room_id)}/send/{_q(event_type)}/{_q(txn_id)}",
            json=content,
        )
        return data["event_id"]

    async def send_text(
        self, room_id: str, body: str, reply_to: Optional[str] = None
    ) -> str:
        content: Dict[str, Any] = {"msgtype": "m.text", "body": body}
        if reply_to:
            content["m.relates_to"] = {"m.in_reply_to": {"event_id": reply_to}}
        return await self.send_event(room_id, "m.room.message", content)

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> str:
        content = {
            "m.relates_to": {
                "rel_type": "m.annotation",
                "event_id": event_id,
                "key": key,
            }
        }
        return await self.send_event(room_id, "m.reaction", content)

    # ------------------------------------------------------------------
    # Media and directory
    # ------------------------------------------------------------------

    async def upload(
        self, data: bytes, content_type: str, filename: Optional[str] = None
    ) -> str:
        """Upload media, returns its mxc:// content URI."""
        params = {"filename": filename} if filename else None
        result = await self.request(
            "POST",
            f"{MEDIA_PREFIX}/upload",
            content=data,
            params=params,
            headers={"Content-Type": content_type},
            timeout=self.upload_timeout,
        )
        return result["content_uri"]

    async def media_available(self, url: str, timeout: float = 5.0) -> bool:
        """Check that a media URL can be fetched."""
        try:
            response = await self._http.head(
                url,
                headers={"Authorization": f"Bearer {self.credentials.access_token}"},
                timeout=timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.debug(f"[MatrixClient] Media HEAD failed for {url}: {e}")
            return False
        return response.is_success

    async def search_users(self, term: str, limit: int = 10) -> List[Dict[str, Any]]:
        data = await self.request(
            "POST",
            f"{CLIENT_PREFIX}/user_directory/search",
            json={"search_term": term, "limit": limit},
        )
        return data.get("results", [])

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def register(self, username: str, password: str) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"{CLIENT_PREFIX}/register",
            authenticated=False,
            json={
                "username": username,
                "password": password,
                "auth": {"type": "m.login.dummy"},
            },
        )

    async def login(
        self, user: str, password: str, device_name: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": user},
            "password": password,
            "refresh_token": True,
        }
        if device_name:
            payload["initial_device_display_name"] = device_name
        return await self.request(
            "POST", f"{CLIENT_PREFIX}/login", authenticated=False, json=payload
        )

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"{CLIENT_PREFIX}/refresh",
            authenticated=False,
            json={"refresh_token": refresh_token},
        )

    async def logout(self) -> None:
        await self.request("POST", f"{CLIENT_PREFIX}/logout", json={})
