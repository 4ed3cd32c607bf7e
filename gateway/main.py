# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.api.api import api_router
from gateway.core.config import settings
from gateway.core.exceptions import (
    ProtocolError,
    http_exception_handler,
    protocol_exception_handler,
    python_exception_handler,
    validation_exception_handler,
)
from gateway.core.logging import setup_logging
from gateway.core.socketio import create_socketio_app, get_sio
from gateway.services.realtime.namespace import register_gateway_namespace
from gateway.services.runtime import build_services, set_services

# Initialize logging at module level for use in lifespan
setup_logging()
_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles startup and shutdown events.
    """
    logger = _logger

    # ==================== STARTUP ====================
    sio = get_sio()
    services = build_services(settings, sio)
    set_services(services)
    services.start()
    register_gateway_namespace(sio, services.dispatcher, services.sync)
    logger.info(f"✓ Gateway services initialized (homeserver={settings.MATRIX_HOMESERVER_URL})")

    logger.info("=" * 60)
    logger.info("Application startup completed successfully!")
    logger.info("=" * 60)

    # ==================== YIELD (app is running) ====================
    yield

    # ==================== SHUTDOWN ====================
    logger.info("Shutting down application...")
    await services.shutdown()
    set_services(None)
    logger.info("✓ Application shutdown completed")


def create_app():
    # Toggle API docs/OpenAPI via environment (settings.ENABLE_API_DOCS, default True)
    enable_docs = settings.ENABLE_API_DOCS
    openapi_url = f"{settings.API_PREFIX}/openapi.json" if enable_docs else None
    docs_url = f"{settings.API_PREFIX}/docs" if enable_docs else None
    redoc_url = f"{settings.API_PREFIX}/redoc" if enable_docs else None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Matrix gateway for WhatsApp, Telegram, Instagram and Twitter bridges",
        version=settings.VERSION,
        openapi_url=openapi_url,
        docs_url=docs_url,
        redoc_url=redoc_url,
        lifespan=lifespan,
    )

    logger = _logger

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        if request.url.path != f"{settings.API_PREFIX}/health":
            logger.info(
                f"response: {request.method} {request.url.path} {request.query_params} {request_id} {client_ip} {response.status_code} {process_time:.2f}ms"
            )
        response.headers["X-Request-ID"] = request_id
        return response

    # Setup CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ProtocolError, protocol_exception_handler)
    app.add_exception_handler(Exception, python_exception_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


app = create_app()

# Socket.IO wraps the FastAPI app; serve with `uvicorn gateway.main:asgi_app`
asgi_app = create_socketio_app(get_sio(), app)


# Root path
@app.get("/")
async def root():
    """
    Root path, returns API information
    """
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "api_prefix": settings.API_PREFIX,
        "docs_url": f"{settings.API_PREFIX}/docs",
    }
