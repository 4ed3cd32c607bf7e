# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Service wiring.

Builds every gateway service from settings once per process and exposes
them to route handlers and the Socket.IO namespace.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx
import socketio

from gateway.core.config import Settings
from gateway.services.bridge.conversation import BridgeTimings
from gateway.services.bridge.cookies import CookieAcquirer, PlaywrightCookieAcquirer
from gateway.services.bridge.dialogue import build_profiles
from gateway.services.bridge.engine import BridgeEngine
from gateway.services.bridge.session_store import (
    PlatformStatusStore,
    VerificationSessionStore,
)
from gateway.services.matrix.client import MatrixClient
from gateway.services.matrix.credentials import CredentialManager
from gateway.services.matrix.media import MediaResolver
from gateway.services.messaging.service import MessagingService
from gateway.services.messaging.uploads import (
    CloudinaryUploader,
    FallbackUploader,
    MatrixMediaUploader,
)
from gateway.services.platform.classifier import PlatformClassifier, default_bot_markers
from gateway.services.platform.room_summary import RoomSummaryBuilder
from gateway.services.realtime.dispatcher import RealtimeDispatcher
from gateway.services.sync.engine import SyncEngine
from gateway.services.sync.processor import SyncBatchProcessor

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    client: MatrixClient
    media: MediaResolver
    classifier: PlatformClassifier
    sessions: VerificationSessionStore
    statuses: PlatformStatusStore
    bridge: BridgeEngine
    sync: SyncEngine
    dispatcher: RealtimeDispatcher
    messaging: MessagingService
    session_purge_interval: float = 60.0
    _purge_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def start(self) -> None:
        """Start background maintenance, called once from the app lifespan"""
        if self._purge_task is None or self._purge_task.done():
            self._purge_task = asyncio.create_task(self._purge_sessions_periodically())

    async def _purge_sessions_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.session_purge_interval)
            try:
                self.sessions.purge_expired()
            except Exception as e:
                logger.error(f"[GatewayServices] Session purge failed: {e}")

    async def shutdown(self) -> None:
        if self._purge_task is not None:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
            self._purge_task = None
        await self.sync.stop_all()
        await self.bridge.shutdown()
        self.sessions.clear()
        await self.client.close()
        logger.info("Gateway services stopped")


def build_services(
    settings: Settings,
    sio: socketio.AsyncServer,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    cookie_acquirer: Optional[CookieAcquirer] = None,
) -> GatewayServices:
    """
    Wire the gateway services.

    Args:
        settings: Gateway settings
        sio: Socket.IO server used for realtime pushes
        transport: Optional httpx transport for the homeserver client
        cookie_acquirer: Cookie capability, Playwright by default

    Returns:
        GatewayServices
    """
    credentials = CredentialManager(
        access_token=settings.MATRIX_ACCESS_TOKEN,
        user_id=settings.MATRIX_USER_ID,
        refresh_token=settings.MATRIX_REFRESH_TOKEN,
        password=settings.MATRIX_PASSWORD,
        device_name=settings.MATRIX_DEVICE_NAME,
    )
    client = MatrixClient(
        settings.MATRIX_HOMESERVER_URL,
        credentials,
        request_timeout=settings.MATRIX_REQUEST_TIMEOUT,
        sync_timeout=settings.SYNC_HTTP_TIMEOUT,
        upload_timeout=settings.MATRIX_UPLOAD_TIMEOUT,
        transport=transport,
    )
    media = MediaResolver(settings.MATRIX_HOMESERVER_URL)
    classifier = PlatformClassifier(
        client,
        default_bot_markers(
            whatsapp=settings.WHATSAPP_BOT_LOCALPART,
            telegram=settings.TELEGRAM_BOT_LOCALPART,
            instagram=settings.INSTAGRAM_BOT_LOCALPART,
            twitter=settings.TWITTER_BOT_LOCALPART,
        ),
    )
    summaries = RoomSummaryBuilder(classifier, media)

    sessions = VerificationSessionStore(ttl_seconds=settings.VERIFICATION_SESSION_TTL_SECONDS)
    statuses = PlatformStatusStore()
    bridge = BridgeEngine(
        client=client,
        media=media,
        profiles=build_profiles(settings),
        sessions=sessions,
        statuses=statuses,
        server_name=settings.MATRIX_SERVER_NAME,
        timings=BridgeTimings.from_settings(settings),
        cookie_acquirer=cookie_acquirer
        or PlaywrightCookieAcquirer(headless=settings.COOKIE_LOGIN_HEADLESS),
    )

    dispatcher = RealtimeDispatcher(sio, statuses)
    processor = SyncBatchProcessor(
        client, summaries, media, stale_event_seconds=settings.SYNC_STALE_EVENT_SECONDS
    )
    sync = SyncEngine(
        client,
        processor,
        dispatcher.emit_to_user,
        timeout_ms=settings.SYNC_TIMEOUT_MS,
        retry_backoff=settings.SYNC_RETRY_BACKOFF,
    )
    dispatcher.bind_sync_engine(sync)

    uploaders = [MatrixMediaUploader(client)]
    if settings.CLOUDINARY_CLOUD_NAME:
        uploaders.append(
            CloudinaryUploader(
                settings.CLOUDINARY_CLOUD_NAME,
                settings.CLOUDINARY_API_KEY,
                settings.CLOUDINARY_API_SECRET,
                folder=settings.CLOUDINARY_FOLDER,
                timeout=settings.MATRIX_UPLOAD_TIMEOUT,
            )
        )
    messaging = MessagingService(
        client,
        media,
        classifier,
        sync,
        dispatcher,
        FallbackUploader(uploaders),
        messages_limit=settings.ROOM_MESSAGES_LIMIT,
        history_days=settings.ROOM_HISTORY_DAYS,
        search_limit=settings.USER_SEARCH_LIMIT,
    )

    return GatewayServices(
        client=client,
        media=media,
        classifier=classifier,
        sessions=sessions,
        statuses=statuses,
        bridge=bridge,
        sync=sync,
        dispatcher=dispatcher,
        messaging=messaging,
        session_purge_interval=settings.VERIFICATION_SESSION_PURGE_INTERVAL,
    )


# Global services instance (set during application startup)
_services: Optional[GatewayServices] = None


def set_services(services: Optional[GatewayServices]) -> None:
    global _services
    _services = services


def get_services() -> GatewayServices:
    """
    Get the wired services.

    Raises:
        RuntimeError: If the application has not started yet
    """
    if _services is None:
        raise RuntimeError("Gateway services are not initialized")
    return _services
