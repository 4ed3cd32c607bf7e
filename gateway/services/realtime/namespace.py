# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Gateway namespace for Socket.IO.

Clients identify themselves with ``join_user`` (or an auth payload on
connect) and may join the channel of a Matrix room to receive reaction
broadcasts.
"""

import logging
from typing import Any, Optional

import socketio

from gateway.services.realtime import events
from gateway.services.realtime.dispatcher import RealtimeDispatcher
from gateway.services.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


def _field(data: Any, key: str) -> Optional[str]:
    if isinstance(data, dict):
        return data.get(key)
    if isinstance(data, str):
        return data
    return None


class GatewayNamespace(socketio.AsyncNamespace):
    """Handles subscriber registration and on-demand sync requests."""

    def __init__(
        self,
        dispatcher: RealtimeDispatcher,
        sync_engine: SyncEngine,
        namespace: str = "/",
    ):
        super().__init__(namespace)
        self.dispatcher = dispatcher
        self.sync_engine = sync_engine

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None):
        logger.info(f"[WS] Connection sid={sid}")
        user_id = auth.get("user_id") if isinstance(auth, dict) else None
        if user_id:
            await self._join_user(sid, user_id)

    async def on_disconnect(self, sid: str, reason: Any = None):
        user_id = await self.dispatcher.unregister(sid)
        logger.info(f"[WS] Disconnected user={user_id} sid={sid}")

    async def _join_user(self, sid: str, user_id: str) -> None:
        await self.save_session(sid, {"user_id": user_id})
        await self.dispatcher.register(user_id, sid)

    async def on_join_user(self, sid: str, data: Any) -> dict:
        """
        Handle join_user event.

        Args:
            sid: Socket ID
            data: {"user_id": "..."} or the bare user id

        Returns:
            Ack dict
        """
        user_id = _field(data, "user_id")
        if not user_id:
            return {"success": False, "error": "user_id is required"}
        await self._join_user(sid, user_id)
        return {"success": True}

    async def on_join_room(self, sid: str, data: Any) -> dict:
        room_id = _field(data, "room_id")
        if not room_id:
            return {"success": False, "error": "room_id is required"}
        await self.enter_room(sid, room_id)
        return {"success": True}

    async def on_leave_room(self, sid: str, data: Any) -> dict:
        room_id = _field(data, "room_id")
        if not room_id:
            return {"success": False, "error": "room_id is required"}
        await self.leave_room(sid, room_id)
        return {"success": True}

    async def _send_room_list(self, sid: str, event: str) -> dict:
        user_id = self.dispatcher.user_for(sid)
        if not user_id:
            return {"success": False, "error": "join_user first"}
        try:
            rooms = await self.sync_engine.list_rooms()
        except Exception as e:
            logger.error(f"[WS] Room sync failed for {user_id}: {e}")
            await self.dispatcher.emit_to_user(
                user_id, events.SYNC_ERROR, {"error": "Sync failed", "details": str(e)}
            )
            return {"success": False, "error": str(e)}

        await self.dispatcher.emit_to_user(
            user_id, event, {"rooms": [room.model_dump() for room in rooms]}
        )
        return {"success": True}

    async def on_request_sync(self, sid: str, data: Any = None) -> dict:
        return await self._send_room_list(sid, events.SYNC_COMPLETE)

    async def on_trigger_sync(self, sid: str, data: Any = None) -> dict:
        return await self._send_room_list(sid, events.SYNC_UPDATE)


def register_gateway_namespace(
    sio: socketio.AsyncServer,
    dispatcher: RealtimeDispatcher,
    sync_engine: SyncEngine,
) -> GatewayNamespace:
    """
    Register the gateway namespace with the Socket.IO server.

    Args:
        sio: Socket.IO server instance
        dispatcher: Dispatcher sharing the same namespace
        sync_engine: Engine used for on-demand room lists
    """
    namespace = GatewayNamespace(dispatcher, sync_engine, dispatcher.namespace)
    sio.register_namespace(namespace)
    logger.info(f"Gateway namespace registered at {dispatcher.namespace}")
    return namespace
