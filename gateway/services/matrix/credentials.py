# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Shared Matrix credential with single-flight refresh.

All protocol calls use one configured access token. When the homeserver
rejects it, exactly one refresh runs; concurrent callers that saw the same
stale token wait for it and reuse the new token.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from gateway.core.exceptions import CredentialExpired

if TYPE_CHECKING:
    from gateway.services.matrix.client import MatrixClient

logger = logging.getLogger(__name__)


class CredentialManager:
    """Holds the access token injected into the protocol client."""

    def __init__(
        self,
        access_token: str,
        user_id: str,
        refresh_token: Optional[str] = None,
        password: Optional[str] = None,
        device_name: Optional[str] = None,
    ):
        self._access_token = access_token
        self._user_id = user_id
        self._refresh_token = refresh_token
        self._password = password
        self._device_name = device_name
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def access_token(self) -> str:
        return self._access_token

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def can_refresh(self) -> bool:
        return bool(self._refresh_token or (self._user_id and self._password))

    async def refresh(self, stale_token: str, client: "MatrixClient") -> str:
        """
        Replace the access token after it was rejected.

        Args:
            stale_token: The token the failed call used
            client: Protocol client used for the unauthenticated refresh call

        Returns:
            The current valid access token

        Raises:
            CredentialExpired: If no refresh method is configured or it failed
        """
        async with self._lock:
            if self._access_token != stale_token:
                # Another task refreshed while we were waiting
                return self._access_token

            if not self.can_refresh:
                raise CredentialExpired(
                    message="Access token rejected and no refresh method configured"
                )

            try:
                if self._refresh_token:
                    data = await client.refresh(self._refresh_token)
                else:
                    data = await client.login(
                        self._user_id, self._password, self._device_name
                    )
            except CredentialExpired:
                raise
            except Exception as e:
                logger.error(f"[CredentialManager] Credential refresh failed: {e}")
                raise CredentialExpired(message=f"Credential refresh failed: {e}") from e

            token = data.get("access_token")
            if not token:
                raise CredentialExpired(message="Refresh response carried no access token")

            self._access_token = token
            if data.get("refresh_token"):
                self._refresh_token = data["refresh_token"]
            if data.get("user_id"):
                self._user_id = data["user_id"]
            self.refresh_count += 1
            logger.info(
                f"[CredentialManager] Access token refreshed for {self._user_id}"
            )
            return token
