# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Project configuration
    PROJECT_NAME: str = "Matrix Bridge Gateway"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    # API docs toggle (from env ENABLE_API_DOCS, default True)
    ENABLE_API_DOCS: bool = True
    # Root log level and whether per-request HTTP client logs are kept
    LOG_LEVEL: str = "INFO"
    LOG_HTTP_REQUESTS: bool = False

    # Environment configuration
    ENVIRONMENT: str = "development"  # development or production

    # Matrix homeserver configuration
    MATRIX_HOMESERVER_URL: str = "http://localhost:8008"
    MATRIX_SERVER_NAME: str = "matrix.localhost"
    # Shared access token used for every protocol call
    MATRIX_ACCESS_TOKEN: str = ""
    MATRIX_USER_ID: str = ""
    # Credential refresh: refresh token first, password login as fallback
    MATRIX_REFRESH_TOKEN: Optional[str] = None
    MATRIX_PASSWORD: Optional[str] = None
    MATRIX_DEVICE_NAME: str = "bridge-gateway"

    # Protocol client timeouts (seconds)
    MATRIX_REQUEST_TIMEOUT: float = 10.0
    MATRIX_UPLOAD_TIMEOUT: float = 60.0

    # Bridge bot localparts (full id is @<localpart>:<MATRIX_SERVER_NAME>)
    WHATSAPP_BOT_LOCALPART: str = "whatsappbot"
    TELEGRAM_BOT_LOCALPART: str = "telegrambot"
    INSTAGRAM_BOT_LOCALPART: str = "metabot"
    TWITTER_BOT_LOCALPART: str = "twitterbot"

    # Bridge dialogue polling budgets
    BRIDGE_QR_POLL_ATTEMPTS: int = 25
    BRIDGE_QR_POLL_INTERVAL: float = 2.0
    BRIDGE_POLL_ATTEMPTS: int = 10
    BRIDGE_POLL_INTERVAL: float = 3.0
    BRIDGE_CODE_POLL_ATTEMPTS: int = 30
    BRIDGE_VERIFY_POLL_ATTEMPTS: int = 15
    BRIDGE_STATUS_POLL_ATTEMPTS: int = 5
    BRIDGE_EVENT_WINDOW: int = 30
    BRIDGE_QR_EVENT_WINDOW: int = 20
    BRIDGE_QR_FETCH_TIMEOUT: float = 5.0
    # Background watcher after a QR code or pairing code was surfaced
    BRIDGE_LINK_WATCH_ATTEMPTS: int = 60
    BRIDGE_LINK_WATCH_INTERVAL: float = 3.0

    # Verification session lifetime
    VERIFICATION_SESSION_TTL_SECONDS: int = 10 * 60  # 10 minutes
    VERIFICATION_SESSION_PURGE_INTERVAL: float = 60.0  # seconds between expiry sweeps

    # Sync engine configuration
    SYNC_TIMEOUT_MS: int = 60000  # long-poll window requested from the server
    SYNC_HTTP_TIMEOUT: float = 65.0  # client side timeout for /sync
    SYNC_RETRY_BACKOFF: float = 5.0
    SYNC_STALE_EVENT_SECONDS: int = 60  # skip older events on limited timelines

    # Room listing / history
    ROOM_MESSAGES_LIMIT: int = 100
    ROOM_HISTORY_DAYS: int = 15
    USER_SEARCH_LIMIT: int = 10

    # Cloudinary fallback uploader (disabled when cloud name is empty)
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    CLOUDINARY_FOLDER: str = "matrix-gateway"

    # Cookie login (Instagram / Twitter) via headless browser
    COOKIE_LOGIN_TIMEOUT_SECONDS: int = 300
    COOKIE_LOGIN_HEADLESS: bool = False
    INSTAGRAM_LOGIN_URL: str = "https://www.instagram.com/accounts/login/"
    TWITTER_LOGIN_URL: str = "https://x.com/i/flow/login"

    # Redis configuration (Socket.IO cross-worker manager, optional)
    REDIS_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global configuration instance
settings = Settings()
