# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import logging
import sys
from typing import Optional

from gateway.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-4s [%(name)s] : %(message)s"

# Libraries that log once per request; the sync long-poll makes them noisy
CHATTY_LOGGERS = ("httpx", "httpcore", "socketio", "engineio")


def setup_logging(level: Optional[str] = None, http_requests: Optional[bool] = None) -> None:
    """
    Configure gateway logging to stdout.

    Args:
        level: Root level name, defaults to settings.LOG_LEVEL
        http_requests: Keep per-request logs of the HTTP and Socket.IO
            libraries, defaults to settings.LOG_HTTP_REQUESTS
    """
    level = (level or settings.LOG_LEVEL).upper()
    if http_requests is None:
        http_requests = settings.LOG_HTTP_REQUESTS

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    # uvicorn records go through the root handler, access logs are replaced
    # by the request middleware
    for name in ["uvicorn", "uvicorn.error", "fastapi"]:
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True
    logging.getLogger("uvicorn.access").handlers.clear()
    logging.getLogger("uvicorn.access").propagate = False

    library_level = logging.INFO if http_requests else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
