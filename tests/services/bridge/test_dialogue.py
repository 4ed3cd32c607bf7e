# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for bridge bot reply classification.
"""

import pytest

from gateway.schemas.platform import Platform
from gateway.services.bridge.dialogue import (
    COMPLETION_EXPECTED,
    LOGIN_QR_EXPECTED,
    PAIRING_CODE_EXPECTED,
    STATUS_EXPECTED,
    ReplyKind,
    build_profiles,
    classify_reply,
)


def _text(body, event_id="$e1"):
    return {
        "type": "m.room.message",
        "event_id": event_id,
        "sender": "@bot:hs.example",
        "origin_server_ts": 123,
        "content": {"msgtype": "m.text", "body": body},
    }


@pytest.fixture
def profiles(test_settings):
    return build_profiles(test_settings)


@pytest.fixture
def whatsapp(profiles):
    return profiles[Platform.WHATSAPP]


class TestClassifyReply:
    """Tests for classify_reply precedence and payload extraction."""

    def test_error_and_success_markers_read_as_error(self, whatsapp):
        """Test a reply with both markers never counts as success."""
        reply = classify_reply(
            whatsapp, _text("Login failed: successfully connected socket closed"), COMPLETION_EXPECTED
        )
        assert reply.kind == ReplyKind.ERROR

    @pytest.mark.parametrize(
        "body",
        ["Login failed", "An error occurred", "Invalid code", "Wrong password", "Login failure"],
    )
    def test_error_words(self, whatsapp, body):
        assert classify_reply(whatsapp, _text(body), COMPLETION_EXPECTED).kind == ReplyKind.ERROR

    @pytest.mark.parametrize(
        "body", ["Failsafe mode: successfully logged in", "Errorless sync, logged in"]
    )
    def test_error_words_inside_other_words_ignored(self, whatsapp, body):
        """Test error markers only match as whole words."""
        reply = classify_reply(whatsapp, _text(body), COMPLETION_EXPECTED)
        assert reply.kind == ReplyKind.SUCCESS

    def test_success(self, whatsapp):
        reply = classify_reply(whatsapp, _text("Successfully logged in as +123"), COMPLETION_EXPECTED)
        assert reply.kind == ReplyKind.SUCCESS
        assert reply.event_id == "$e1"
        assert reply.timestamp == 123

    def test_not_logged_in_is_not_success(self, whatsapp):
        assert classify_reply(whatsapp, _text("You're not logged in"), COMPLETION_EXPECTED) is None

    def test_qr_image(self, whatsapp):
        event = {
            "type": "m.room.message",
            "event_id": "$qr",
            "content": {"msgtype": "m.image", "body": "qr.png", "url": "mxc://hs.example/qr"},
        }

        reply = classify_reply(whatsapp, event, LOGIN_QR_EXPECTED)

        assert reply.kind == ReplyKind.QR_IMAGE
        assert reply.payload == "mxc://hs.example/qr"

    def test_image_ignored_when_not_expected(self, whatsapp):
        event = {"type": "m.room.message", "content": {"msgtype": "m.image", "url": "mxc://a/b"}}
        assert classify_reply(whatsapp, event, COMPLETION_EXPECTED) is None

    def test_qr_url(self, whatsapp):
        reply = classify_reply(
            whatsapp, _text("Open https://web.whatsapp.com/qr/ABC to link"), LOGIN_QR_EXPECTED
        )
        assert reply.kind == ReplyKind.QR_URL
        assert reply.payload == "https://web.whatsapp.com/qr/ABC"

    def test_raw_qr_payload(self, whatsapp):
        payload = "2@AbCdEfGhIjKlMnOpQrSt,uvWxYz0123456789=,abc=="
        reply = classify_reply(whatsapp, _text(payload), LOGIN_QR_EXPECTED)
        assert reply.kind == ReplyKind.QR_CODE
        assert reply.payload == payload

    def test_qr_instructions_ignored(self, whatsapp):
        """Test prose about scanning is not taken as a QR payload."""
        reply = classify_reply(
            whatsapp, _text("Scan the QR code below with your phone"), LOGIN_QR_EXPECTED
        )
        assert reply is None

    def test_pairing_code(self, whatsapp):
        reply = classify_reply(
            whatsapp, _text("Input the pairing code ABCD-EF12 on your phone"), PAIRING_CODE_EXPECTED
        )
        assert reply.kind == ReplyKind.CODE_RECEIVED
        assert reply.payload == "ABCD-EF12"

    @pytest.mark.parametrize(
        "body,kind",
        [
            ("You're logged in as +123", ReplyKind.CONNECTED),
            ("Connected to WhatsApp", ReplyKind.CONNECTED),
            ("You're not logged in", ReplyKind.DISCONNECTED),
            ("No active logins", ReplyKind.DISCONNECTED),
        ],
    )
    def test_status_replies(self, whatsapp, body, kind):
        assert classify_reply(whatsapp, _text(body), STATUS_EXPECTED).kind == kind

    def test_unrelated_text(self, whatsapp):
        assert classify_reply(whatsapp, _text("Hello there"), STATUS_EXPECTED) is None


class TestBridgeProfiles:
    """Tests for configured bridge profiles."""

    def test_bot_user_ids(self, profiles):
        assert profiles[Platform.WHATSAPP].bot_user_id("hs.example") == "@whatsappbot:hs.example"
        assert profiles[Platform.INSTAGRAM].bot_user_id("hs.example") == "@metabot:hs.example"

    def test_login_command_falls_back_to_first(self, profiles):
        assert profiles[Platform.WHATSAPP].login_command("phone") == "!wa login phone"
        assert profiles[Platform.TELEGRAM].login_command("qr") == "login"

    def test_twitter_cookie_fields(self, profiles):
        assert profiles[Platform.TWITTER].cookie_fields == ("ct0", "auth_token")
