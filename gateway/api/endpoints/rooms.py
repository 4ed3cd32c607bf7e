# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Room endpoints: listing, message pages, history, sending and reactions.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from gateway.api.dependencies import get_current_user_id, get_gateway_services
from gateway.core.exceptions import ValidationException
from gateway.schemas.message import OutgoingFile, ReactionResult, SendMessageResult
from gateway.schemas.room import (
    CreateGroupRequest,
    EnrichedMessage,
    ReactionRequest,
    RoomHistory,
    RoomSummary,
)
from gateway.services.runtime import GatewayServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[RoomSummary])
async def list_rooms(
    user_id: str = Depends(get_current_user_id),
    services: GatewayServices = Depends(get_gateway_services),
):
    return await services.messaging.list_rooms(user_id)


@router.post("")
async def create_group(
    request: CreateGroupRequest,
    services: GatewayServices = Depends(get_gateway_services),
):
    room_id = await services.messaging.create_group(
        request.name, request.invitees, request.topic
    )
    return {"room_id": room_id}


@router.get("/{room_id}/messages", response_model=List[EnrichedMessage])
async def get_room_messages(
    room_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    from_token: Optional[str] = Query(None, alias="from"),
    services: GatewayServices = Depends(get_gateway_services),
):
    return await services.messaging.get_room_messages(room_id, limit, from_token)


@router.get("/{room_id}/history", response_model=RoomHistory)
async def get_room_history(
    room_id: str,
    days: Optional[int] = Query(None, ge=1, le=365),
    services: GatewayServices = Depends(get_gateway_services),
):
    return await services.messaging.get_room_history(room_id, days)


@router.post("/{room_id}/messages", response_model=SendMessageResult)
async def send_message(
    room_id: str,
    text: Optional[str] = Form(None),
    reply_to: Optional[str] = Form(None),
    files: List[UploadFile] = File(default=[]),
    user_id: str = Depends(get_current_user_id),
    services: GatewayServices = Depends(get_gateway_services),
):
    """
    Send text and/or files to a room.

    Each part is reported independently in ``results``.
    """
    if not text and not files:
        raise ValidationException("Either text or at least one file is required")

    outgoing = []
    for upload in files:
        outgoing.append(
            OutgoingFile(
                filename=upload.filename or "file",
                content_type=upload.content_type or "application/octet-stream",
                data=await upload.read(),
            )
        )
    logger.info(
        f"[rooms.py] send_message: room_id={room_id}, user_id={user_id}, files={len(outgoing)}"
    )
    return await services.messaging.send_message(
        room_id, text=text, files=outgoing, reply_to=reply_to, user_id=user_id
    )


@router.post("/{room_id}/reactions", response_model=ReactionResult)
async def send_reaction(
    room_id: str,
    request: ReactionRequest,
    user_id: str = Depends(get_current_user_id),
    services: GatewayServices = Depends(get_gateway_services),
):
    return await services.messaging.send_reaction(
        room_id, request.event_id, request.emoji, user_id=user_id
    )


@router.post("/{room_id}/leave")
async def leave_room(
    room_id: str,
    services: GatewayServices = Depends(get_gateway_services),
):
    await services.messaging.leave_room(room_id)
    return {"success": True, "room_id": room_id}
