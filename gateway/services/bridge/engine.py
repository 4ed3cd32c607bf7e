# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Bridge session engine.

Drives login, verification, status and logout dialogues with the platform
bridge bots. Every public operation returns a structured result; bridge
timeouts, bridge errors and homeserver failures are converted at this
boundary and never raised to the caller.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from gateway.core.exceptions import (
    BridgeError,
    BridgeTimeout,
    CredentialExpired,
    GatewayError,
    ProtocolError,
    ProtocolTimeout,
)
from gateway.schemas.bridge import (
    DisconnectResult,
    FailureReason,
    LoginOptions,
    LoginResult,
    LoginStatus,
    StatusResult,
    VerificationResult,
)
from gateway.schemas.platform import Platform
from gateway.services.bridge.conversation import BridgeConversation, BridgeTimings
from gateway.services.bridge.cookies import CookieAcquirer
from gateway.services.bridge.dialogue import (
    COMPLETION_EXPECTED,
    STATUS_EXPECTED,
    BridgeProfile,
    ReplyKind,
)
from gateway.services.bridge.flows import BridgeFlowRegistry
from gateway.services.bridge.session_store import (
    PlatformStatusStore,
    VerificationSessionStore,
)
from gateway.services.matrix.client import MatrixClient
from gateway.services.matrix.media import MediaResolver

logger = logging.getLogger(__name__)

DIRECT_ROOM_PRESET = "trusted_private_chat"


def failure_reason(exc: Exception) -> FailureReason:
    """Map an exception raised inside a dialogue to a failure reason"""
    if isinstance(exc, BridgeTimeout):
        return FailureReason.TIMEOUT
    if isinstance(exc, BridgeError):
        return FailureReason.BRIDGE_ERROR
    if isinstance(exc, CredentialExpired):
        return FailureReason.CREDENTIAL_EXPIRED
    if isinstance(exc, ProtocolTimeout):
        return FailureReason.HOMESERVER_UNREACHABLE
    if isinstance(exc, ProtocolError):
        if exc.status_code == 404:
            return FailureReason.ROOM_NOT_FOUND
        if exc.status_code == 403:
            return FailureReason.ACCESS_DENIED
        if exc.status_code == 0:
            return FailureReason.HOMESERVER_UNREACHABLE
    return FailureReason.ERROR


def failure_message(exc: Exception) -> str:
    if isinstance(exc, BridgeTimeout):
        return f"The bridge did not respond in time ({exc.stage})"
    if isinstance(exc, BridgeError):
        return exc.bot_message
    return str(exc)


class BridgeEngine:
    """Runs bridge bot dialogues against one homeserver account."""

    def __init__(
        self,
        client: MatrixClient,
        media: MediaResolver,
        profiles: Dict[Platform, BridgeProfile],
        sessions: VerificationSessionStore,
        statuses: PlatformStatusStore,
        server_name: str,
        timings: BridgeTimings,
        cookie_acquirer: Optional[CookieAcquirer] = None,
    ):
        self.client = client
        self.media = media
        self.profiles = profiles
        self.sessions = sessions
        self.statuses = statuses
        self.server_name = server_name
        self.timings = timings
        self.cookie_acquirer = cookie_acquirer
        self._direct_rooms: Dict[str, str] = {}
        self._watchers: Dict[Tuple[str, Platform], asyncio.Task] = {}

    def bot_user_id(self, platform: Platform) -> str:
        return self.profiles[platform].bot_user_id(self.server_name)

    # ------------------------------------------------------------------
    # Direct rooms
    # ------------------------------------------------------------------

    async def find_direct_room(self, bot_user_id: str) -> Optional[str]:
        """Joined room whose members are exactly us and the bot"""
        expected = {self.client.user_id, bot_user_id}
        for room_id in await self.client.joined_rooms():
            try:
                members = await self.client.joined_members(room_id)
            except ProtocolError as e:
                logger.debug(f"[BridgeEngine] Skipping {room_id}: {e}")
                continue
            if set(members.keys()) == expected:
                return room_id
        return None

    async def ensure_direct_room(self, bot_user_id: str) -> str:
        """
        Find or create the two-party control room with a bridge bot.

        Args:
            bot_user_id: Full Matrix id of the bridge bot

        Returns:
            Room id of the direct room
        """
        cached = self._direct_rooms.get(bot_user_id)
        if cached:
            return cached

        room_id = await self.find_direct_room(bot_user_id)
        if room_id is None:
            room_id = await self.client.create_room(
                preset=DIRECT_ROOM_PRESET,
                is_direct=True,
                invite=[bot_user_id],
                name=f"{bot_user_id} control",
                topic="Bridge management room",
            )
            logger.info(f"[BridgeEngine] Created direct room {room_id} with {bot_user_id}")
        self._direct_rooms[bot_user_id] = room_id
        return room_id

    def forget_direct_room(self, bot_user_id: str) -> None:
        self._direct_rooms.pop(bot_user_id, None)

    async def open_conversation(self, platform: Platform) -> BridgeConversation:
        profile = self.profiles[platform]
        bot_user_id = self.bot_user_id(platform)
        room_id = await self.ensure_direct_room(bot_user_id)
        return BridgeConversation(self.client, profile, room_id, bot_user_id)

    def _on_protocol_error(self, platform: Platform, exc: Exception) -> None:
        if isinstance(exc, ProtocolError) and exc.is_terminal:
            # The cached room may have been left or forgotten
            self.forget_direct_room(self.bot_user_id(platform))

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    async def mark_connected(self, user_id: str, platform: Platform) -> None:
        await self.statuses.update(user_id, platform, True)

    def watch_link(
        self,
        conversation: BridgeConversation,
        user_id: str,
        session_id: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Watch a room in the background for the bot confirming a link.

        Used after a QR code or pairing code was handed to the user: the
        platform only becomes connected when the bot reports success.
        """
        key = (user_id, conversation.platform)
        self.cancel_watch(user_id, conversation.platform)
        task = asyncio.create_task(self._watch(conversation, user_id, session_id))
        self._watchers[key] = task
        task.add_done_callback(lambda done: self._forget_watch(key, done))
        return task

    def _forget_watch(self, key, task: asyncio.Task) -> None:
        if self._watchers.get(key) is task:
            del self._watchers[key]

    def cancel_watch(self, user_id: str, platform: Platform) -> None:
        task = self._watchers.pop((user_id, platform), None)
        if task and not task.done():
            task.cancel()

    async def _watch(
        self,
        conversation: BridgeConversation,
        user_id: str,
        session_id: Optional[str],
    ) -> None:
        platform = conversation.platform
        try:
            reply = await conversation.wait_for(
                COMPLETION_EXPECTED, self.timings.link_watch, stage="link"
            )
        except asyncio.CancelledError:
            raise
        except GatewayError as e:
            logger.info(f"[BridgeEngine] {platform.value} link not completed: {e}")
            return
        except Exception as e:
            logger.error(f"[BridgeEngine] {platform.value} link watcher failed: {e}")
            return

        if reply.kind == ReplyKind.SUCCESS:
            await self.mark_connected(user_id, platform)
            if session_id:
                self.sessions.delete(session_id)
            logger.info(f"[BridgeEngine] {platform.value} linked for {user_id}")

    async def shutdown(self) -> None:
        tasks = list(self._watchers.values())
        self._watchers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_login(
        self,
        platform: Platform,
        user_id: str,
        options: Optional[LoginOptions] = None,
    ) -> LoginResult:
        """
        Start linking an external account.

        Args:
            platform: Platform to log into
            user_id: Gateway user the link belongs to
            options: Login method, phone number or pre-acquired cookies

        Returns:
            LoginResult, a failure result instead of any exception
        """
        options = options or LoginOptions()
        flow = BridgeFlowRegistry.create_flow(platform, self)
        if flow is None:
            return LoginResult(
                status=LoginStatus.FAILURE,
                success=False,
                platform=platform,
                message=f"No login flow for {platform.value}",
                error=FailureReason.ERROR,
            )

        # A new login supersedes whatever was pending for this user/platform
        self.cancel_watch(user_id, platform)
        self.sessions.discard_for(user_id, platform)

        room_id = None
        try:
            conversation = await self.open_conversation(platform)
            room_id = conversation.room_id
            result = await flow.login(conversation, user_id, options)
        except GatewayError as e:
            self._on_protocol_error(platform, e)
            logger.warning(f"[BridgeEngine] {platform.value} login failed for {user_id}: {e}")
            return LoginResult(
                status=LoginStatus.FAILURE,
                success=False,
                platform=platform,
                room_id=room_id,
                message=failure_message(e),
                bot_message=e.bot_message if isinstance(e, BridgeError) else None,
                error=failure_reason(e),
            )
        except Exception as e:
            logger.exception(f"[BridgeEngine] Unexpected {platform.value} login error: {e}")
            return LoginResult(
                status=LoginStatus.FAILURE,
                success=False,
                platform=platform,
                room_id=room_id,
                message=str(e),
                error=FailureReason.ERROR,
            )

        logger.info(
            f"[BridgeEngine] {platform.value} login for {user_id}: {result.status.value}"
        )
        return result

    async def submit_verification(
        self, session_id: str, code: Optional[str] = None
    ) -> VerificationResult:
        """
        Forward a user-entered verification code to the bot.

        Args:
            session_id: Session returned by start_login
            code: Code to forward verbatim; empty only waits for confirmation

        Returns:
            VerificationResult, never raises
        """
        session = self.sessions.get(session_id) if session_id else None
        if session is None:
            return VerificationResult(
                success=False,
                message="Invalid or expired session",
                error=FailureReason.INVALID_SESSION,
            )

        platform = session.platform
        conversation = BridgeConversation(
            self.client,
            self.profiles[platform],
            session.room_id,
            self.bot_user_id(platform),
            marker=session.last_event_id,
        )
        try:
            if code:
                await conversation.send(code.strip())
            reply = await conversation.wait_for(
                COMPLETION_EXPECTED, self.timings.verify, stage="verification"
            )
        except GatewayError as e:
            # The session stays so the user can retry with another code
            logger.warning(f"[BridgeEngine] Verification {session_id} failed: {e}")
            if conversation.marker:
                session.last_event_id = conversation.marker
            return VerificationResult(
                success=False,
                platform=platform,
                message=failure_message(e),
                bot_message=e.bot_message if isinstance(e, BridgeError) else None,
                error=failure_reason(e),
            )
        except Exception as e:
            logger.exception(f"[BridgeEngine] Unexpected verification error: {e}")
            return VerificationResult(
                success=False,
                platform=platform,
                message=str(e),
                error=FailureReason.ERROR,
            )

        self.sessions.delete(session_id)
        self.cancel_watch(session.user_id, platform)
        await self.mark_connected(session.user_id, platform)
        return VerificationResult(
            success=True,
            platform=platform,
            message=f"{platform.label.platform} connected",
            bot_message=reply.body,
        )

    def _stored_status(
        self, platform: Platform, user_id: str, **fields
    ) -> StatusResult:
        stored = self.statuses.get(user_id, platform)
        return StatusResult(
            platform=platform,
            connected=stored.connected if stored else False,
            last_updated=stored.last_updated if stored else None,
            **fields,
        )

    async def check_status(self, platform: Platform, user_id: str) -> StatusResult:
        """
        Ask the bridge bot whether the user's account is linked.

        Each status command of the platform is tried in turn until one is
        answered. On failure the stored status is returned unchanged.
        """
        last_error: Optional[Exception] = None
        try:
            conversation = await self.open_conversation(platform)
            for command in self.profiles[platform].status_commands:
                await conversation.send(command)
                try:
                    reply = await conversation.wait_for(
                        STATUS_EXPECTED, self.timings.status, stage="status"
                    )
                except (BridgeTimeout, BridgeError) as e:
                    last_error = e
                    continue

                connected = reply.kind == ReplyKind.CONNECTED
                status = await self.statuses.update(user_id, platform, connected)
                return StatusResult(
                    platform=platform,
                    success=True,
                    connected=connected,
                    last_updated=status.last_updated,
                    raw=reply.body,
                    message="connected" if connected else "not connected",
                )
        except GatewayError as e:
            self._on_protocol_error(platform, e)
            last_error = e
        except Exception as e:
            logger.exception(f"[BridgeEngine] Unexpected status error: {e}")
            last_error = e

        logger.warning(f"[BridgeEngine] {platform.value} status check failed: {last_error}")
        return self._stored_status(
            platform,
            user_id,
            success=False,
            message=failure_message(last_error) if last_error else "No status command",
            error=failure_reason(last_error) if last_error else FailureReason.ERROR,
        )

    def get_cached_status(self, platform: Platform, user_id: str) -> StatusResult:
        """Stored status without talking to the bot"""
        return self._stored_status(platform, user_id, success=True)

    async def disconnect_platform(
        self, platform: Platform, user_id: str
    ) -> DisconnectResult:
        """
        Log out of a platform.

        The logout command is best effort; the stored status always becomes
        disconnected. ``success`` reports whether the command was delivered.
        """
        self.cancel_watch(user_id, platform)
        self.sessions.discard_for(user_id, platform)

        delivered = False
        message = f"{platform.label.platform} disconnected"
        try:
            conversation = await self.open_conversation(platform)
            await conversation.send(self.profiles[platform].logout_command)
            delivered = True
        except GatewayError as e:
            self._on_protocol_error(platform, e)
            logger.warning(f"[BridgeEngine] {platform.value} logout not delivered: {e}")
            message = f"Logout command not delivered: {e}"

        await self.statuses.update(user_id, platform, False)
        return DisconnectResult(platform=platform, success=delivered, message=message)
