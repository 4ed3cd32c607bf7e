# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for GatewayServices background maintenance.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from gateway.schemas.platform import Platform
from gateway.services.bridge.session_store import VerificationSessionStore
from gateway.services.runtime import GatewayServices


class MovableClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return MovableClock()


@pytest.fixture
def services(clock):
    sync = MagicMock()
    sync.stop_all = AsyncMock()
    bridge = MagicMock()
    bridge.shutdown = AsyncMock()
    client = MagicMock()
    client.close = AsyncMock()
    return GatewayServices(
        client=client,
        media=MagicMock(),
        classifier=MagicMock(),
        sessions=VerificationSessionStore(ttl_seconds=600, clock=clock),
        statuses=MagicMock(),
        bridge=bridge,
        sync=sync,
        dispatcher=MagicMock(),
        messaging=MagicMock(),
        session_purge_interval=0.01,
    )


class TestSessionPurge:
    """Tests for the periodic verification session sweep."""

    @pytest.mark.asyncio
    async def test_stale_sessions_removed_in_background(self, services, clock):
        """Test abandoned sessions disappear without any lookup."""
        for user_id in ("alice", "bob"):
            services.sessions.create(user_id, Platform.TELEGRAM, "!bot:hs", "token-1")
        services.start()

        clock.now += timedelta(seconds=700)
        for _ in range(50):
            if len(services.sessions) == 0:
                break
            await asyncio.sleep(0.01)

        assert len(services.sessions) == 0
        await services.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_sweep(self, services):
        services.start()
        task = services._purge_task

        await services.shutdown()

        assert task.cancelled()
        assert services._purge_task is None
        services.sync.stop_all.assert_awaited_once()
        services.client.close.assert_awaited_once()
