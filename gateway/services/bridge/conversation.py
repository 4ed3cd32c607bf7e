# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Scripted conversation with one bridge bot in its direct room.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Collection, List, Optional

from gateway.core.exceptions import BridgeError, BridgeTimeout
from gateway.services.bridge.dialogue import (
    BotReply,
    BridgeProfile,
    ReplyKind,
    classify_reply,
)
from gateway.services.matrix.client import MatrixClient

logger = logging.getLogger(__name__)

ReplyFilter = Callable[[BotReply], Awaitable[bool]]


@dataclass(frozen=True)
class PollBudget:
    """Bounded polling parameters of one wait point."""

    attempts: int
    interval: float
    window: int


@dataclass(frozen=True)
class BridgeTimings:
    """Poll budgets of every wait point of the bridge dialogues."""

    qr: PollBudget
    login: PollBudget
    code: PollBudget
    verify: PollBudget
    status: PollBudget
    link_watch: PollBudget
    qr_fetch_timeout: float = 5.0
    cookie_timeout: float = 300.0

    @classmethod
    def from_settings(cls, settings) -> "BridgeTimings":
        window = settings.BRIDGE_EVENT_WINDOW
        interval = settings.BRIDGE_POLL_INTERVAL
        return cls(
            qr=PollBudget(
                settings.BRIDGE_QR_POLL_ATTEMPTS,
                settings.BRIDGE_QR_POLL_INTERVAL,
                settings.BRIDGE_QR_EVENT_WINDOW,
            ),
            login=PollBudget(settings.BRIDGE_POLL_ATTEMPTS, interval, window),
            code=PollBudget(settings.BRIDGE_CODE_POLL_ATTEMPTS, interval, window),
            verify=PollBudget(settings.BRIDGE_VERIFY_POLL_ATTEMPTS, interval, window),
            status=PollBudget(settings.BRIDGE_STATUS_POLL_ATTEMPTS, interval, window),
            link_watch=PollBudget(
                settings.BRIDGE_LINK_WATCH_ATTEMPTS,
                settings.BRIDGE_LINK_WATCH_INTERVAL,
                window,
            ),
            qr_fetch_timeout=settings.BRIDGE_QR_FETCH_TIMEOUT,
            cookie_timeout=settings.COOKIE_LOGIN_TIMEOUT_SECONDS,
        )


class BridgeConversation:
    """
    Sends commands to a bridge bot and waits for classified replies.

    Only bot messages newer than the marker (our last sent command, or the
    last reply consumed) are considered, newest first.
    """

    def __init__(
        self,
        client: MatrixClient,
        profile: BridgeProfile,
        room_id: str,
        bot_user_id: str,
        marker: Optional[str] = None,
    ):
        self.client = client
        self.profile = profile
        self.room_id = room_id
        self.bot_user_id = bot_user_id
        self.marker = marker

    @property
    def platform(self):
        return self.profile.platform

    async def send(self, text: str) -> str:
        """Send a text command and move the marker to it"""
        event_id = await self.client.send_text(self.room_id, text)
        self.marker = event_id
        logger.debug(f"[BridgeConversation] {self.platform.value} <- {text[:40]!r}")
        return event_id

    def advance(self, reply: BotReply) -> None:
        """Ignore everything up to and including a consumed reply"""
        self.marker = reply.event_id

    async def recent_bot_events(self, window: int) -> List[dict]:
        """Bot messages newer than the marker, newest first"""
        page = await self.client.messages(self.room_id, limit=window)
        events = []
        for event in page.get("chunk", []):
            if self.marker and event.get("event_id") == self.marker:
                break
            if event.get("type") != "m.room.message":
                continue
            if event.get("sender") != self.bot_user_id:
                continue
            events.append(event)
        return events

    async def wait_for(
        self,
        expected: Collection[ReplyKind],
        budget: PollBudget,
        accept: Optional[ReplyFilter] = None,
        stage: str = "reply",
    ) -> BotReply:
        """
        Poll the room until the bot answers with one of the expected kinds.

        Args:
            expected: Reply kinds this wait point accepts
            budget: Attempts, delay between attempts and event window
            accept: Extra async check a candidate must pass (e.g. QR fetchable)
            stage: Name of the wait point used in errors and logs

        Returns:
            The newest matching reply

        Raises:
            BridgeError: The reply matched an error marker
            BridgeTimeout: Attempts exhausted without a recognized reply
            ProtocolError: The homeserver call failed
        """
        for attempt in range(budget.attempts):
            await asyncio.sleep(budget.interval)
            for event in await self.recent_bot_events(budget.window):
                reply = classify_reply(self.profile, event, expected)
                if reply is None:
                    continue
                if accept is not None and not await accept(reply):
                    continue
                logger.info(
                    f"[BridgeConversation] {self.platform.value} {stage}: "
                    f"{reply.kind.value} (attempt {attempt + 1}/{budget.attempts})"
                )
                if reply.kind == ReplyKind.ERROR:
                    raise BridgeError(self.platform.value, reply.body)
                return reply

        raise BridgeTimeout(self.platform.value, stage)
