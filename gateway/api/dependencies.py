# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from typing import Optional

from fastapi import Header, Query

from gateway.core.exceptions import ValidationException
from gateway.services.runtime import GatewayServices, get_services


def get_gateway_services() -> GatewayServices:
    """Services dependency, overridden in tests"""
    return get_services()


def get_current_user_id(
    x_user_id: Optional[str] = Header(None),
    user_id: Optional[str] = Query(None),
) -> str:
    """
    Gateway user the request acts for.

    Taken from the X-User-Id header, or the user_id query parameter.
    """
    current = x_user_id or user_id
    if not current:
        raise ValidationException("X-User-Id header or user_id query parameter is required")
    return current
