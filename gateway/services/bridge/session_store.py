# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Bridge session and platform status stores.

Both stores live in process memory for the lifetime of the gateway.
Entries are replaced whole on every write, which keeps them consistent
under a single event loop without locking.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from gateway.schemas.platform import Platform

logger = logging.getLogger(__name__)

# Verification session TTL in seconds (10 minutes)
SESSION_TTL = 10 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VerificationSession:
    """A login waiting for out-of-band input (a verification code)."""

    session_id: str
    user_id: str
    platform: Platform
    room_id: str
    access_token: str
    phone_number: Optional[str] = None
    # last bot event seen, replies older than this are ignored
    last_event_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


class VerificationSessionStore:
    """
    Pending verification sessions keyed by session id.

    At most one session exists per (user, platform): creating a new one
    supersedes the previous session. Sessions expire after the TTL.
    """

    def __init__(
        self,
        ttl_seconds: int = SESSION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, VerificationSession] = {}
        self._by_owner: Dict[Tuple[str, Platform], str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, session: VerificationSession) -> bool:
        return self._clock() - session.created_at > self.ttl

    def create(
        self,
        user_id: str,
        platform: Platform,
        room_id: str,
        access_token: str,
        phone_number: Optional[str] = None,
        last_event_id: Optional[str] = None,
    ) -> VerificationSession:
        """
        Create a session, replacing any session of the same user and platform.

        Returns:
            The new session
        """
        self.purge_expired()
        self.discard_for(user_id, platform)
        session = VerificationSession(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            platform=platform,
            room_id=room_id,
            access_token=access_token,
            phone_number=phone_number,
            last_event_id=last_event_id,
            created_at=self._clock(),
        )
        self._sessions[session.session_id] = session
        self._by_owner[(user_id, platform)] = session.session_id
        logger.debug(
            f"Created verification session {session.session_id} "
            f"for {platform.value}:{user_id}"
        )
        return session

    def get(self, session_id: str) -> Optional[VerificationSession]:
        """Return a live session, None if unknown or expired"""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            logger.info(f"Verification session {session_id} expired")
            self.delete(session_id)
            return None
        return session

    def get_for(self, user_id: str, platform: Platform) -> Optional[VerificationSession]:
        session_id = self._by_owner.get((user_id, platform))
        return self.get(session_id) if session_id else None

    def delete(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        owner = (session.user_id, session.platform)
        if self._by_owner.get(owner) == session_id:
            del self._by_owner[owner]
        return True

    def discard_for(self, user_id: str, platform: Platform) -> bool:
        session_id = self._by_owner.get((user_id, platform))
        if session_id is None:
            return False
        logger.debug(f"Superseding verification session {session_id}")
        return self.delete(session_id)

    def purge_expired(self) -> int:
        """Drop every expired session, returns how many were dropped"""
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if self._is_expired(session)
        ]
        for session_id in expired:
            self.delete(session_id)
        if expired:
            logger.info(f"Purged {len(expired)} expired verification sessions")
        return len(expired)

    def clear(self) -> None:
        self._sessions.clear()
        self._by_owner.clear()


@dataclass
class PlatformStatus:
    """Connection state of one platform for one user."""

    platform: Platform
    connected: bool
    last_updated: datetime
    user_id: Optional[str] = None


StatusListener = Callable[[PlatformStatus], Awaitable[None]]


class PlatformStatusStore:
    """
    Connected-platform status keyed by (user, platform).

    A None user holds the user-agnostic status of a platform. Writes are
    last-write-wins and never expire.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._statuses: Dict[Tuple[Optional[str], Platform], PlatformStatus] = {}
        self._listeners: List[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        """Register a coroutine called after every status write"""
        self._listeners.append(listener)

    def get(self, user_id: Optional[str], platform: Platform) -> Optional[PlatformStatus]:
        return self._statuses.get((user_id, platform))

    def snapshot(self, user_id: Optional[str]) -> Dict[Platform, Optional[PlatformStatus]]:
        """Status of every known platform for a user"""
        return {platform: self.get(user_id, platform) for platform in Platform}

    async def update(
        self, user_id: Optional[str], platform: Platform, connected: bool
    ) -> PlatformStatus:
        status = PlatformStatus(
            platform=platform,
            connected=connected,
            last_updated=self._clock(),
            user_id=user_id,
        )
        self._statuses[(user_id, platform)] = status
        logger.info(
            f"Platform status {platform.value}:{user_id} -> "
            f"{'connected' if connected else 'disconnected'}"
        )
        for listener in list(self._listeners):
            try:
                await listener(status)
            except Exception as e:
                logger.error(f"Platform status listener failed: {e}")
        return status

    def clear(self) -> None:
        self._statuses.clear()
