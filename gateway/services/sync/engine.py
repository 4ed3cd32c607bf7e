# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Long-poll sync engine.

One SyncLoop task per subscribed user turns the homeserver's /sync
long-poll into pushed realtime events. The cursor only advances after a
batch was fully dispatched, so a failing batch is retried (at-least-once).
"""

import asyncio
import logging
from typing import Dict, List, Optional

from gateway.core.exceptions import ProtocolTimeout
from gateway.schemas.room import RoomSummary
from gateway.services.matrix.client import MatrixClient
from gateway.services.realtime import events
from gateway.services.sync.processor import Emitter, SyncBatchProcessor

logger = logging.getLogger(__name__)

# Room list requests only need the latest event of each room
ROOM_LIST_FILTER = {"room": {"timeline": {"limit": 1}}}


class SyncLoop:
    """The sync loop of a single user."""

    def __init__(
        self,
        user_id: str,
        client: MatrixClient,
        processor: SyncBatchProcessor,
        emit: Emitter,
        timeout_ms: int = 60000,
        retry_backoff: float = 5.0,
        since: Optional[str] = None,
        previous: Optional["SyncLoop"] = None,
    ):
        self.user_id = user_id
        self.client = client
        self.processor = processor
        self.emit = emit
        self.timeout_ms = timeout_ms
        self.retry_backoff = retry_backoff
        self.since = since
        self.iterations = 0
        self._previous = previous
        self._stopped = asyncio.Event()
        # Cleared while a batch is being dispatched
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self.is_stopped

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self) -> None:
        """
        Stop scheduling iterations.

        An in-flight /sync call is allowed to finish; its result is dropped.
        A batch already being dispatched is delivered and its cursor kept.
        """
        self._stopped.set()

    async def wait_idle(self) -> None:
        """Wait until no batch is being dispatched"""
        await self._idle.wait()

    async def cancel(self) -> None:
        """Stop and cancel the task, used on shutdown"""
        self.stop()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=3.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=self.retry_backoff)
        except asyncio.TimeoutError:
            pass

    async def run_once(self) -> bool:
        """
        One long-poll cycle.

        Returns:
            True if a batch was dispatched and the cursor advanced
        """
        self.iterations += 1
        try:
            response = await self.client.sync(since=self.since, timeout_ms=self.timeout_ms)
            if self.is_stopped:
                logger.debug(f"[SyncLoop] Dropping batch of superseded loop {self.user_id}")
                return False
            self._idle.clear()
            try:
                await self.processor.process(self.user_id, response, self.emit)
                self.since = response.get("next_batch") or self.since
            finally:
                self._idle.set()
        except asyncio.CancelledError:
            raise
        except ProtocolTimeout:
            # Long-poll window elapsed, re-issue with the same cursor
            logger.debug(f"[SyncLoop] Sync timeout for {self.user_id}, retrying")
            return False
        except Exception as e:
            if self.is_stopped:
                return False
            logger.error(f"[SyncLoop] Sync failed for {self.user_id}: {e}")
            try:
                await self.emit(
                    self.user_id,
                    events.SYNC_ERROR,
                    {"error": "Sync failed", "details": str(e)},
                )
            except Exception as emit_error:
                logger.error(f"[SyncLoop] Failed to emit sync_error: {emit_error}")
            await self._backoff()
            return False

        return True

    async def run(self) -> None:
        logger.info(f"[SyncLoop] Started for {self.user_id}")
        try:
            if self._previous is not None:
                # Resume after the batch the superseded loop is still delivering
                await self._previous.wait_idle()
                self.since = self._previous.since
                self._previous = None
            while not self.is_stopped:
                await self.run_once()
        except asyncio.CancelledError:
            logger.info(f"[SyncLoop] Cancelled for {self.user_id}")
            raise
        finally:
            logger.info(f"[SyncLoop] Stopped for {self.user_id}")


class SyncEngine:
    """Owns the sync loops, at most one active loop per user."""

    def __init__(
        self,
        client: MatrixClient,
        processor: SyncBatchProcessor,
        emit: Emitter,
        timeout_ms: int = 60000,
        retry_backoff: float = 5.0,
    ):
        self.client = client
        self.processor = processor
        self.emit = emit
        self.timeout_ms = timeout_ms
        self.retry_backoff = retry_backoff
        self._loops: Dict[str, SyncLoop] = {}

    def get_loop(self, user_id: str) -> Optional[SyncLoop]:
        return self._loops.get(user_id)

    def is_running(self, user_id: str) -> bool:
        loop = self._loops.get(user_id)
        return loop is not None and loop.is_running

    @property
    def active_users(self) -> List[str]:
        return [user_id for user_id, loop in self._loops.items() if loop.is_running]

    def start(self, user_id: str) -> SyncLoop:
        """
        Start the sync loop of a user, superseding any existing loop.

        Args:
            user_id: Subscriber to dispatch events to

        Returns:
            The new loop
        """
        previous = self._loops.pop(user_id, None)
        if previous is not None:
            logger.info(f"[SyncEngine] Superseding sync loop for {user_id}")
            previous.stop()

        loop = SyncLoop(
            user_id,
            self.client,
            self.processor,
            self.emit,
            timeout_ms=self.timeout_ms,
            retry_backoff=self.retry_backoff,
            since=previous.since if previous is not None else None,
            previous=previous,
        )
        self._loops[user_id] = loop
        loop.start()
        return loop

    def stop(self, user_id: str) -> bool:
        loop = self._loops.pop(user_id, None)
        if loop is None:
            return False
        loop.stop()
        return True

    async def stop_all(self) -> None:
        loops = list(self._loops.values())
        self._loops.clear()
        for loop in loops:
            await loop.cancel()

    async def list_rooms(self) -> List[RoomSummary]:
        """One-shot room list without touching any loop's cursor"""
        response = await self.client.sync(timeout_ms=0, sync_filter=ROOM_LIST_FILTER)
        return await self.processor.build_room_summaries(response)
