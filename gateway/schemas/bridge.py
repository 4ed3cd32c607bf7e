# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Bridge login, verification, status and disconnect result models.

Every bridge operation answers with one of these models. Failures are
reported through ``success=False`` plus a ``error`` reason, never raised.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Literal, Optional

from pydantic import BaseModel

from gateway.schemas.platform import Platform


class LoginStatus(str, Enum):
    """Tag of a login result."""

    PHONE_REQUEST = "phone_request"  # bot wants a phone number
    CODE_REQUEST = "code_request"  # bot sent a code to the user, submit it
    CODE_RECEIVED = "code_received"  # bot produced a pairing code for the user
    QR_READY = "qr_ready"
    ALREADY_CONNECTED = "already_connected"
    SUCCESS = "success"
    FAILURE = "failure"


class FailureReason(str, Enum):
    """Why a bridge operation did not succeed."""

    TIMEOUT = "timeout"
    BRIDGE_ERROR = "bridge_error"
    INVALID_SESSION = "invalid_session"
    ROOM_NOT_FOUND = "room_not_found"
    ACCESS_DENIED = "access_denied"
    HOMESERVER_UNREACHABLE = "homeserver_unreachable"
    CREDENTIAL_EXPIRED = "credential_expired"
    COOKIES_UNAVAILABLE = "cookies_unavailable"
    MISSING_INPUT = "missing_input"
    ERROR = "error"


class LoginOptions(BaseModel):
    """Caller supplied inputs for a login attempt."""

    method: Literal["qr", "phone"] = "qr"
    phone_number: Optional[str] = None
    # Pre-acquired session cookies, skips the headless browser
    cookies: Optional[Dict[str, str]] = None


class LoginResult(BaseModel):
    status: LoginStatus
    success: bool
    platform: Platform
    message: str
    room_id: Optional[str] = None
    session_id: Optional[str] = None
    qr_code: Optional[str] = None  # locally rendered PNG data URL
    qr_image: Optional[str] = None  # bot supplied image URL
    pairing_code: Optional[str] = None
    bot_message: Optional[str] = None
    error: Optional[FailureReason] = None


class VerificationRequest(BaseModel):
    session_id: str
    code: Optional[str] = None


class VerificationResult(BaseModel):
    success: bool
    message: str
    platform: Optional[Platform] = None
    bot_message: Optional[str] = None
    error: Optional[FailureReason] = None


class StatusResult(BaseModel):
    platform: Platform
    success: bool
    connected: bool
    last_updated: Optional[datetime] = None
    raw: Optional[str] = None  # bot reply the status was derived from
    message: str = ""
    error: Optional[FailureReason] = None


class DisconnectResult(BaseModel):
    platform: Platform
    success: bool
    message: str
