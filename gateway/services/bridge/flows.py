# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Per-platform login flows.

A flow drives the login dialogue of one bridge bot from the first command
to a LoginResult. Flows register themselves by platform, the engine looks
them up and owns everything shared (direct room, status, sessions, error
conversion).
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Optional, Type

from gateway.schemas.bridge import FailureReason, LoginOptions, LoginResult, LoginStatus
from gateway.schemas.platform import Platform
from gateway.services.bridge.conversation import BridgeConversation
from gateway.services.bridge.cookies import require_cookies
from gateway.services.bridge.dialogue import (
    CODE_REQUEST_EXPECTED,
    COMPLETION_EXPECTED,
    COOKIE_PROMPT_EXPECTED,
    LOGIN_PHONE_EXPECTED,
    LOGIN_QR_EXPECTED,
    PAIRING_CODE_EXPECTED,
    BotReply,
    ReplyKind,
)
from gateway.services.bridge.qr import render_qr_data_url

if TYPE_CHECKING:
    from gateway.services.bridge.engine import BridgeEngine

logger = logging.getLogger(__name__)


class BridgeFlowRegistry:
    """
    Login flow registry.

    Flows register with the @register decorator, one class may serve
    several platforms.
    """

    _flows: Dict[Platform, Type["BridgeFlow"]] = {}

    @classmethod
    def register(cls, platform: Platform):
        """
        Decorator to register a flow implementation.

        Args:
            platform: The platform this flow logs into

        Returns:
            Decorator function
        """

        def decorator(flow_class: Type["BridgeFlow"]):
            cls._flows[platform] = flow_class
            logger.debug(f"Registered bridge flow: {platform.value}")
            return flow_class

        return decorator

    @classmethod
    def get_flow_class(cls, platform: Platform) -> Optional[Type["BridgeFlow"]]:
        return cls._flows.get(platform)

    @classmethod
    def create_flow(cls, platform: Platform, engine: "BridgeEngine") -> Optional["BridgeFlow"]:
        flow_class = cls.get_flow_class(platform)
        if flow_class:
            return flow_class(engine)
        return None


class BridgeFlow(ABC):
    """Base class of a platform login dialogue."""

    def __init__(self, engine: "BridgeEngine"):
        self.engine = engine
        self.timings = engine.timings

    @abstractmethod
    async def login(
        self,
        conversation: BridgeConversation,
        user_id: str,
        options: LoginOptions,
    ) -> LoginResult:
        """
        Run the login dialogue.

        Bridge timeouts and errors may be raised; the engine converts them
        into failure results.
        """

    def result(
        self,
        conversation: BridgeConversation,
        status: LoginStatus,
        message: str,
        **fields,
    ) -> LoginResult:
        return LoginResult(
            status=status,
            success=status != LoginStatus.FAILURE,
            platform=conversation.platform,
            room_id=conversation.room_id,
            message=message,
            **fields,
        )

    async def finish(
        self, conversation: BridgeConversation, user_id: str, reply: BotReply
    ) -> Optional[LoginResult]:
        """Terminal result for success / already-connected replies"""
        name = conversation.platform.label.platform
        if reply.kind == ReplyKind.ALREADY_CONNECTED:
            await self.engine.mark_connected(user_id, conversation.platform)
            return self.result(
                conversation,
                LoginStatus.ALREADY_CONNECTED,
                f"{name} is already connected",
                bot_message=reply.body,
            )
        if reply.kind == ReplyKind.SUCCESS:
            await self.engine.mark_connected(user_id, conversation.platform)
            return self.result(
                conversation,
                LoginStatus.SUCCESS,
                f"{name} connected",
                bot_message=reply.body,
            )
        return None


@BridgeFlowRegistry.register(Platform.WHATSAPP)
class WhatsAppFlow(BridgeFlow):
    """QR login, or phone login with a pairing code."""

    async def login(self, conversation, user_id, options):
        if options.method == "phone":
            return await self._login_with_phone(conversation, user_id, options)
        return await self._login_with_qr(conversation, user_id)

    async def _qr_image_fetchable(self, reply: BotReply) -> bool:
        if reply.kind != ReplyKind.QR_IMAGE:
            return True
        url = self.engine.media.resolve_download_url(reply.payload)
        available = await self.engine.client.media_available(
            url, timeout=self.timings.qr_fetch_timeout
        )
        if not available:
            logger.warning(f"[WhatsAppFlow] QR image {url} is not fetchable, skipping")
        return available

    async def _login_with_qr(self, conversation, user_id):
        await conversation.send(conversation.profile.login_command("qr"))
        reply = await conversation.wait_for(
            LOGIN_QR_EXPECTED,
            self.timings.qr,
            accept=self._qr_image_fetchable,
            stage="qr",
        )

        finished = await self.finish(conversation, user_id, reply)
        if finished:
            return finished

        if reply.kind == ReplyKind.PHONE_REQUEST:
            return self.result(
                conversation,
                LoginStatus.PHONE_REQUEST,
                "WhatsApp bridge asked for a phone number, retry with the phone method",
                bot_message=reply.body,
            )

        conversation.advance(reply)
        self.engine.watch_link(conversation, user_id)
        if reply.kind == ReplyKind.QR_IMAGE:
            return self.result(
                conversation,
                LoginStatus.QR_READY,
                "Scan the QR code with WhatsApp",
                qr_image=self.engine.media.resolve_download_url(reply.payload),
            )
        return self.result(
            conversation,
            LoginStatus.QR_READY,
            "Scan the QR code with WhatsApp",
            qr_code=render_qr_data_url(reply.payload),
        )

    async def _login_with_phone(self, conversation, user_id, options):
        if not options.phone_number:
            return self.result(
                conversation,
                LoginStatus.FAILURE,
                "A phone number is required for phone login",
                error=FailureReason.MISSING_INPUT,
            )

        await conversation.send(conversation.profile.login_command("phone"))
        reply = await conversation.wait_for(
            LOGIN_PHONE_EXPECTED, self.timings.login, stage="phone request"
        )
        finished = await self.finish(conversation, user_id, reply)
        if finished:
            return finished

        await conversation.send(options.phone_number)
        reply = await conversation.wait_for(
            PAIRING_CODE_EXPECTED, self.timings.code, stage="pairing code"
        )
        finished = await self.finish(conversation, user_id, reply)
        if finished:
            return finished

        conversation.advance(reply)
        session = self.engine.sessions.create(
            user_id=user_id,
            platform=conversation.platform,
            room_id=conversation.room_id,
            access_token=self.engine.client.credentials.access_token,
            phone_number=options.phone_number,
            last_event_id=reply.event_id,
        )
        self.engine.watch_link(conversation, user_id, session_id=session.session_id)
        return self.result(
            conversation,
            LoginStatus.CODE_RECEIVED,
            "Enter the pairing code in WhatsApp > Linked devices",
            pairing_code=reply.payload,
            session_id=session.session_id,
            bot_message=reply.body,
        )


@BridgeFlowRegistry.register(Platform.TELEGRAM)
class TelegramFlow(BridgeFlow):
    """Phone number, then a verification code submitted separately."""

    async def login(self, conversation, user_id, options):
        await conversation.send(conversation.profile.login_command("phone"))
        reply = await conversation.wait_for(
            LOGIN_PHONE_EXPECTED, self.timings.login, stage="login"
        )
        finished = await self.finish(conversation, user_id, reply)
        if finished:
            return finished

        if reply.kind == ReplyKind.PHONE_REQUEST:
            if not options.phone_number:
                return self.result(
                    conversation,
                    LoginStatus.PHONE_REQUEST,
                    "Telegram bridge asked for a phone number",
                    bot_message=reply.body,
                )
            await conversation.send(options.phone_number)
            reply = await conversation.wait_for(
                CODE_REQUEST_EXPECTED, self.timings.login, stage="code request"
            )
            finished = await self.finish(conversation, user_id, reply)
            if finished:
                return finished

        conversation.advance(reply)
        session = self.engine.sessions.create(
            user_id=user_id,
            platform=conversation.platform,
            room_id=conversation.room_id,
            access_token=self.engine.client.credentials.access_token,
            phone_number=options.phone_number,
            last_event_id=reply.event_id,
        )
        return self.result(
            conversation,
            LoginStatus.CODE_REQUEST,
            "Enter the code Telegram sent you",
            session_id=session.session_id,
            bot_message=reply.body,
        )


@BridgeFlowRegistry.register(Platform.INSTAGRAM)
@BridgeFlowRegistry.register(Platform.TWITTER)
class CookieLoginFlow(BridgeFlow):
    """Hands web session cookies to the bridge bot."""

    async def _acquire_cookies(self, conversation, options) -> Optional[Dict[str, str]]:
        if options.cookies:
            return options.cookies
        acquirer = self.engine.cookie_acquirer
        profile = conversation.profile
        if acquirer is None or not profile.login_url:
            return None
        return await acquirer.acquire_session_cookies(
            profile.login_url,
            require_cookies(*profile.session_cookies),
            timeout=self.timings.cookie_timeout,
        )

    async def login(self, conversation, user_id, options):
        profile = conversation.profile
        name = profile.platform.label.platform
        cookies = await self._acquire_cookies(conversation, options)
        if not cookies:
            return self.result(
                conversation,
                LoginStatus.FAILURE,
                f"No {name} session cookies available",
                error=FailureReason.COOKIES_UNAVAILABLE,
            )
        if profile.cookie_fields:
            missing = [key for key in profile.cookie_fields if not cookies.get(key)]
            if missing:
                return self.result(
                    conversation,
                    LoginStatus.FAILURE,
                    f"Missing {name} cookies: {', '.join(missing)}",
                    error=FailureReason.COOKIES_UNAVAILABLE,
                )
            cookies = {key: cookies[key] for key in profile.cookie_fields}

        await conversation.send(profile.login_command("cookies"))
        reply = await conversation.wait_for(
            COOKIE_PROMPT_EXPECTED, self.timings.login, stage="cookie prompt"
        )
        finished = await self.finish(conversation, user_id, reply)
        if finished:
            return finished

        await conversation.send(json.dumps(cookies))
        reply = await conversation.wait_for(
            COMPLETION_EXPECTED, self.timings.verify, stage="cookie login"
        )
        return await self.finish(conversation, user_id, reply)
