# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Error taxonomy for the gateway and the FastAPI handlers that render it.

Protocol errors are raised by the Matrix client. Bridge errors are raised
inside the bridge engine and converted to structured failure results before
they reach a caller, so only protocol errors normally surface over HTTP.
"""

from typing import Any, Optional

from fastapi import HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base class for all gateway errors"""


class ProtocolError(GatewayError):
    """Non-2xx response (or transport failure) from the Matrix homeserver"""

    def __init__(self, status_code: int, body: Any = None, message: str = None):
        self.status_code = status_code
        self.body = body if body is not None else {}
        if isinstance(self.body, dict):
            self.errcode = self.body.get("errcode")
            server_message = self.body.get("error")
        else:
            self.errcode = None
            server_message = None
        self.message = message or server_message or f"HTTP {status_code}"
        super().__init__(f"[{status_code}] {self.message}")

    @property
    def is_terminal(self) -> bool:
        """403 and 404 are final for the call that produced them"""
        return self.status_code in (status.HTTP_403_FORBIDDEN, status.HTTP_404_NOT_FOUND)


class ProtocolTimeout(ProtocolError):
    """The request did not complete within its timeout"""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(status.HTTP_408_REQUEST_TIMEOUT, message=message)


class CredentialExpired(ProtocolError):
    """The shared access token was rejected with 401"""

    def __init__(self, body: Any = None, message: str = None):
        super().__init__(status.HTTP_401_UNAUTHORIZED, body, message)


class BridgeTimeout(GatewayError):
    """Bounded polling finished without a recognized bot reply"""

    def __init__(self, platform: str, stage: str):
        self.platform = platform
        self.stage = stage
        super().__init__(f"{platform} bridge did not answer during {stage}")


class BridgeError(GatewayError):
    """The bot reply matched an error marker"""

    def __init__(self, platform: str, bot_message: str):
        self.platform = platform
        self.bot_message = bot_message
        super().__init__(f"{platform} bridge reported an error: {bot_message}")


class MediaUploadFailed(GatewayError):
    """Every configured uploader failed for a file"""

    def __init__(self, filename: str, message: str, cause: Optional[Exception] = None):
        self.filename = filename
        self.message = message
        self.cause = cause
        super().__init__(f"Upload of {filename} failed: {message}")


class NotFoundException(HTTPException):
    """Resource not found exception"""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ValidationException(HTTPException):
    """Validation exception"""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


async def http_exception_handler(request, exc: HTTPException):
    """HTTP exception handler"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": getattr(exc, "error_code", exc.status_code),
            "detail": exc.detail,
        },
    )


async def validation_exception_handler(request, exc: RequestValidationError):
    """Request validation exception handler"""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "detail": "Request parameter validation failed",
            "errors": exc.errors(),
        },
    )


async def protocol_exception_handler(request, exc: ProtocolError):
    """Matrix homeserver error handler

    Client errors are passed through, server and transport errors become 502.
    """
    status_code = exc.status_code
    if status_code >= 500 or status_code < 400:
        status_code = status.HTTP_502_BAD_GATEWAY
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": exc.errcode or exc.status_code,
            "detail": exc.message,
        },
    )


async def python_exception_handler(request, exc: Exception):
    """Python exception handler"""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
            "detail": "Internal server error",
        },
    )
