# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from fastapi import APIRouter, Depends

from gateway.api.dependencies import get_gateway_services
from gateway.services.runtime import GatewayServices

router = APIRouter()


@router.get("/health")
async def health_check(services: GatewayServices = Depends(get_gateway_services)):
    """
    Liveness probe endpoint.

    Returns:
        dict: Health status with the number of active sync loops
    """
    return {
        "status": "healthy",
        "homeserver": services.client.homeserver_url,
        "active_sync_loops": len(services.sync.active_users),
        "connected_users": len(services.dispatcher.connected_users),
        "pending_sessions": len(services.sessions),
    }
