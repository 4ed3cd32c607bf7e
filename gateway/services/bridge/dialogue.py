# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Bridge bot dialogue grammar.

Each bridge bot answers in natural language. Replies are classified with an
ordered table of rules; the table order is the precedence order. A wait point
only considers the reply kinds it expects, and the first rule (in table
order) among those that matches wins. Error markers come first so a reply
such as "login failed, you are not logged in" is never read as a success.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, Optional, Tuple

from gateway.schemas.platform import Platform


class ReplyKind(str, Enum):
    """What a bot reply means for the login state machine."""

    ERROR = "error"
    ALREADY_CONNECTED = "already_connected"
    QR_IMAGE = "qr_image"
    QR_URL = "qr_url"
    QR_CODE = "qr_code"
    DISCONNECTED = "disconnected"
    PHONE_REQUEST = "phone_request"
    COOKIE_REQUEST = "cookie_request"
    CODE_RECEIVED = "code_received"
    CODE_REQUEST = "code_request"
    SUCCESS = "success"
    CONNECTED = "connected"


@dataclass(frozen=True)
class DialogueRule:
    """One {pattern -> reply kind} entry of a dialogue table."""

    kind: ReplyKind
    pattern: re.Pattern
    exclude: Optional[re.Pattern] = None
    max_length: Optional[int] = None

    def match(self, body: str) -> Optional[re.Match]:
        if self.max_length is not None and len(body) > self.max_length:
            return None
        if self.exclude is not None and self.exclude.search(body):
            return None
        return self.pattern.search(body)


@dataclass(frozen=True)
class BotReply:
    """A classified bot message."""

    kind: ReplyKind
    event_id: str
    body: str
    payload: Optional[str] = None  # QR data, image locator or pairing code
    timestamp: int = 0


def _rule(kind: ReplyKind, pattern: str, exclude: str = None, max_length: int = None):
    return DialogueRule(
        kind=kind,
        pattern=re.compile(pattern, re.IGNORECASE),
        exclude=re.compile(exclude, re.IGNORECASE) if exclude else None,
        max_length=max_length,
    )


DEFAULT_RULES: Tuple[DialogueRule, ...] = (
    _rule(ReplyKind.ERROR, r"\b(errors?|fail(s|ed|ure|ing)?|invalid|incorrect|wrong)\b"),
    _rule(
        ReplyKind.ALREADY_CONNECTED,
        r"already (logged in|connected|authenticated|signed in)|you'?re already|you are already",
    ),
    _rule(ReplyKind.QR_URL, r"(?P<payload>https://web\.whatsapp\.com/\S+)"),
    _rule(
        ReplyKind.QR_URL,
        r"(?P<payload>https?://\S*(?:whatsapp|web|qr)\S*)",
        max_length=500,
    ),
    # Raw QR payload, a single token without whitespace
    DialogueRule(
        kind=ReplyKind.QR_CODE,
        pattern=re.compile(r"^\s*(?P<payload>[A-Za-z0-9@+/=,._-]{20,})\s*$"),
    ),
    _rule(
        ReplyKind.DISCONNECTED,
        r"not (currently )?(logged in|connected|signed in)|you'?re not|you are not|"
        r"no (active )?(logins|sessions)|logged out",
    ),
    _rule(ReplyKind.PHONE_REQUEST, r"phone|number", exclude=r"\bqr\b"),
    _rule(ReplyKind.COOKIE_REQUEST, r"cookie|curl|paste|json"),
    DialogueRule(
        kind=ReplyKind.CODE_RECEIVED,
        pattern=re.compile(r"\b(?P<payload>[A-Z0-9]{4}-[A-Z0-9]{4}|\d{6})\b"),
    ),
    _rule(ReplyKind.CODE_REQUEST, r"code|verification|sent to"),
    _rule(
        ReplyKind.SUCCESS,
        r"success|logged in|login complete|connected",
        exclude=r"not (currently )?(logged in|connected)",
    ),
    _rule(ReplyKind.CONNECTED, r"logged in|connected|signed in|\bactive\b"),
)

# Reply kinds accepted at each wait point
LOGIN_QR_EXPECTED = frozenset(
    {
        ReplyKind.ERROR,
        ReplyKind.ALREADY_CONNECTED,
        ReplyKind.QR_IMAGE,
        ReplyKind.QR_URL,
        ReplyKind.QR_CODE,
        ReplyKind.PHONE_REQUEST,
        ReplyKind.SUCCESS,
    }
)
LOGIN_PHONE_EXPECTED = frozenset(
    {
        ReplyKind.ERROR,
        ReplyKind.ALREADY_CONNECTED,
        ReplyKind.PHONE_REQUEST,
        ReplyKind.CODE_REQUEST,
        ReplyKind.SUCCESS,
    }
)
PAIRING_CODE_EXPECTED = frozenset(
    {ReplyKind.ERROR, ReplyKind.CODE_RECEIVED, ReplyKind.SUCCESS}
)
CODE_REQUEST_EXPECTED = frozenset(
    {ReplyKind.ERROR, ReplyKind.CODE_REQUEST, ReplyKind.SUCCESS}
)
COOKIE_PROMPT_EXPECTED = frozenset(
    {
        ReplyKind.ERROR,
        ReplyKind.ALREADY_CONNECTED,
        ReplyKind.COOKIE_REQUEST,
        ReplyKind.SUCCESS,
    }
)
COMPLETION_EXPECTED = frozenset({ReplyKind.ERROR, ReplyKind.SUCCESS})
STATUS_EXPECTED = frozenset(
    {ReplyKind.ERROR, ReplyKind.DISCONNECTED, ReplyKind.CONNECTED}
)


@dataclass(frozen=True)
class BridgeProfile:
    """Everything the engine needs to talk to one bridge bot."""

    platform: Platform
    bot_localpart: str
    # login method -> command
    login_commands: Dict[str, str]
    status_commands: Tuple[str, ...]
    logout_command: str = "logout"
    login_url: Optional[str] = None
    # cookies the bot needs; empty means "send everything acquired"
    cookie_fields: Tuple[str, ...] = ()
    # cookies whose presence means the browser login finished
    session_cookies: Tuple[str, ...] = ()
    rules: Tuple[DialogueRule, ...] = field(default=DEFAULT_RULES)

    def bot_user_id(self, server_name: str) -> str:
        return f"@{self.bot_localpart}:{server_name}"

    def login_command(self, method: str) -> str:
        return self.login_commands.get(method) or next(iter(self.login_commands.values()))


def classify_reply(
    profile: BridgeProfile,
    event: Dict[str, Any],
    expected: Collection[ReplyKind],
) -> Optional[BotReply]:
    """
    Classify one bot timeline event.

    Args:
        profile: Profile whose dialogue table is used
        event: A m.room.message event sent by the bot
        expected: Reply kinds the current wait point accepts

    Returns:
        BotReply for the first matching rule, None when nothing matches
    """
    content = event.get("content") or {}
    body = content.get("body") or ""
    event_id = event.get("event_id", "")
    timestamp = event.get("origin_server_ts", 0)

    if content.get("msgtype") == "m.image":
        if ReplyKind.QR_IMAGE in expected and content.get("url"):
            return BotReply(
                kind=ReplyKind.QR_IMAGE,
                event_id=event_id,
                body=body,
                payload=content["url"],
                timestamp=timestamp,
            )
        return None

    for rule in profile.rules:
        if rule.kind not in expected:
            continue
        match = rule.match(body)
        if match is None:
            continue
        payload = match.groupdict().get("payload")
        return BotReply(
            kind=rule.kind,
            event_id=event_id,
            body=body,
            payload=payload,
            timestamp=timestamp,
        )
    return None


def build_profiles(settings) -> Dict[Platform, BridgeProfile]:
    """Bridge profiles for the configured bot accounts"""
    return {
        Platform.WHATSAPP: BridgeProfile(
            platform=Platform.WHATSAPP,
            bot_localpart=settings.WHATSAPP_BOT_LOCALPART,
            login_commands={"qr": "!wa login qr", "phone": "!wa login phone"},
            status_commands=("!wa list-logins",),
        ),
        Platform.TELEGRAM: BridgeProfile(
            platform=Platform.TELEGRAM,
            bot_localpart=settings.TELEGRAM_BOT_LOCALPART,
            login_commands={"phone": "login"},
            status_commands=("whoami", "status"),
        ),
        Platform.INSTAGRAM: BridgeProfile(
            platform=Platform.INSTAGRAM,
            bot_localpart=settings.INSTAGRAM_BOT_LOCALPART,
            login_commands={"cookies": "login"},
            status_commands=("list-logins", "whoami"),
            login_url=settings.INSTAGRAM_LOGIN_URL,
            session_cookies=("sessionid",),
        ),
        Platform.TWITTER: BridgeProfile(
            platform=Platform.TWITTER,
            bot_localpart=settings.TWITTER_BOT_LOCALPART,
            login_commands={"cookies": "login"},
            status_commands=("whoami", "status"),
            login_url=settings.TWITTER_LOGIN_URL,
            cookie_fields=("ct0", "auth_token"),
            session_cookies=("ct0", "auth_token"),
        ),
    }
