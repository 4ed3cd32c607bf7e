# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Realtime dispatcher.

Keeps the user <-> socket registration (one active socket per user, a
reconnect overwrites the previous one) and pushes events to subscribers.
Events for users without a socket are dropped, never queued.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import socketio

from gateway.schemas.platform import Platform
from gateway.services.bridge.session_store import PlatformStatus, PlatformStatusStore
from gateway.services.realtime import events

if TYPE_CHECKING:
    from gateway.services.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


def status_payload(
    platform: Platform, user_id: str, status: Optional[PlatformStatus]
) -> Dict[str, Any]:
    return {
        "platform": platform.value,
        "connected": status.connected if status else False,
        "user_email": user_id,
        "last_updated": status.last_updated.isoformat() if status else None,
    }


class RealtimeDispatcher:
    """Socket registry and event fan-out on one Socket.IO namespace."""

    def __init__(
        self,
        sio: socketio.AsyncServer,
        statuses: PlatformStatusStore,
        namespace: str = "/",
        sync_engine: Optional["SyncEngine"] = None,
    ):
        self.sio = sio
        self.statuses = statuses
        self.namespace = namespace
        self.sync_engine = sync_engine
        self._user_to_sid: Dict[str, str] = {}
        self._sid_to_user: Dict[str, str] = {}
        statuses.add_listener(self.on_status_changed)

    def bind_sync_engine(self, sync_engine: "SyncEngine") -> None:
        self.sync_engine = sync_engine

    def sid_for(self, user_id: str) -> Optional[str]:
        return self._user_to_sid.get(user_id)

    def user_for(self, sid: str) -> Optional[str]:
        return self._sid_to_user.get(sid)

    @property
    def connected_users(self):
        return list(self._user_to_sid.keys())

    async def register(self, user_id: str, sid: str) -> None:
        """
        Register a socket for a user, push platform status, start syncing.

        Args:
            user_id: Gateway user id
            sid: Socket.IO session id
        """
        previous = self._user_to_sid.get(user_id)
        if previous and previous != sid:
            self._sid_to_user.pop(previous, None)
            logger.info(f"[Dispatcher] {user_id} reconnected, replacing sid={previous}")

        self._user_to_sid[user_id] = sid
        self._sid_to_user[sid] = user_id
        await self.sio.enter_room(sid, f"user:{user_id}", namespace=self.namespace)

        await self.push_platform_status(user_id)
        if self.sync_engine is not None:
            self.sync_engine.start(user_id)
        logger.info(f"[Dispatcher] Registered user={user_id} sid={sid}")

    async def unregister(self, sid: str) -> Optional[str]:
        """
        Drop a socket. The user's sync loop stops unless a newer socket
        already replaced this one.

        Returns:
            The user the socket belonged to, if any
        """
        user_id = self._sid_to_user.pop(sid, None)
        if user_id is None:
            return None
        if self._user_to_sid.get(user_id) == sid:
            del self._user_to_sid[user_id]
            if self.sync_engine is not None:
                self.sync_engine.stop(user_id)
            logger.info(f"[Dispatcher] Unregistered user={user_id} sid={sid}")
        return user_id

    async def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Emit to the user's active socket.

        Returns:
            False when the user has no socket and the event was dropped
        """
        sid = self._user_to_sid.get(user_id)
        if sid is None:
            logger.debug(f"[Dispatcher] No socket for {user_id}, dropping {event}")
            return False
        await self.sio.emit(event, payload, to=sid, namespace=self.namespace)
        return True

    async def emit_to_room(self, room_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Broadcast to every socket that joined a Matrix room's channel"""
        await self.sio.emit(event, payload, room=room_id, namespace=self.namespace)

    async def push_platform_status(self, user_id: str) -> None:
        for platform, status in self.statuses.snapshot(user_id).items():
            await self.emit_to_user(
                user_id, events.PLATFORM_STATUS, status_payload(platform, user_id, status)
            )

    async def on_status_changed(self, status: PlatformStatus) -> None:
        if status.user_id is None:
            return
        await self.emit_to_user(
            status.user_id,
            events.PLATFORM_STATUS,
            status_payload(status.platform, status.user_id, status),
        )
