# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from gateway.api.dependencies import get_gateway_services
from gateway.schemas.message import UserSearchResult
from gateway.services.runtime import GatewayServices

router = APIRouter()


@router.get("/search", response_model=List[UserSearchResult])
async def search_users(
    term: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1, le=50),
    services: GatewayServices = Depends(get_gateway_services),
):
    """Search the homeserver user directory."""
    return await services.messaging.search_users(term, limit)
