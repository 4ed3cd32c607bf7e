# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from fastapi import APIRouter

from gateway.api.endpoints import bridges, health, rooms, users

api_router = APIRouter()

# Health check endpoints (no prefix, directly under /api)
api_router.include_router(health.router, tags=["health"])
api_router.include_router(bridges.router, prefix="/bridges", tags=["bridges"])
api_router.include_router(rooms.router, prefix="/rooms", tags=["rooms"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
