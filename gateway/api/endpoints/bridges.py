# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Bridge endpoints: login, verification, status and disconnect.

Bridge operations always answer 200 with a structured result; failures are
carried in ``success``/``error`` of the body.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from gateway.api.dependencies import get_current_user_id, get_gateway_services
from gateway.schemas.bridge import (
    DisconnectResult,
    LoginOptions,
    LoginResult,
    StatusResult,
    VerificationRequest,
    VerificationResult,
)
from gateway.schemas.platform import Platform
from gateway.services.runtime import GatewayServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/verify", response_model=VerificationResult)
async def submit_verification(
    request: VerificationRequest,
    services: GatewayServices = Depends(get_gateway_services),
):
    """Forward a verification code for a pending login session."""
    return await services.bridge.submit_verification(request.session_id, request.code)


@router.post("/{platform}/login", response_model=LoginResult)
async def start_login(
    platform: Platform,
    options: Optional[LoginOptions] = Body(None),
    user_id: str = Depends(get_current_user_id),
    services: GatewayServices = Depends(get_gateway_services),
):
    """
    Start linking a platform account.

    Returns:
        LoginResult tagged with phone_request, code_request, code_received,
        qr_ready, already_connected, success or failure
    """
    logger.info(f"[bridges.py] start_login: platform={platform.value}, user_id={user_id}")
    return await services.bridge.start_login(platform, user_id, options)


@router.get("/{platform}/status", response_model=StatusResult)
async def check_status(
    platform: Platform,
    cached: bool = Query(False, description="Return the stored status without asking the bot"),
    user_id: str = Depends(get_current_user_id),
    services: GatewayServices = Depends(get_gateway_services),
):
    if cached:
        return services.bridge.get_cached_status(platform, user_id)
    return await services.bridge.check_status(platform, user_id)


@router.post("/{platform}/disconnect", response_model=DisconnectResult)
async def disconnect_platform(
    platform: Platform,
    user_id: str = Depends(get_current_user_id),
    services: GatewayServices = Depends(get_gateway_services),
):
    logger.info(f"[bridges.py] disconnect: platform={platform.value}, user_id={user_id}")
    return await services.bridge.disconnect_platform(platform, user_id)
