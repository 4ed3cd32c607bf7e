# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Session cookie acquisition for cookie-authenticated bridges.

Instagram and Twitter bridges log in with the web session cookies of the
user's account. The cookies are collected from a browser window the user
logs into; the engine only depends on the CookieAcquirer interface.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict

from gateway.core.exceptions import BridgeTimeout

logger = logging.getLogger(__name__)

CookieMap = Dict[str, str]
SuccessDetector = Callable[[CookieMap], bool]

COOKIE_POLL_INTERVAL = 2.0  # seconds


def require_cookies(*names: str) -> SuccessDetector:
    """Detector that fires once every named cookie is present"""

    def detector(cookies: CookieMap) -> bool:
        return all(cookies.get(name) for name in names)

    return detector


class CookieAcquirer(ABC):
    """Capability that yields session cookies for a login page."""

    @abstractmethod
    async def acquire_session_cookies(
        self,
        login_url: str,
        success_detector: SuccessDetector,
        timeout: float,
    ) -> CookieMap:
        """
        Wait until the user completed the login and return the cookies.

        Args:
            login_url: Page the user logs in on
            success_detector: Returns True when the cookie jar holds a session
            timeout: Seconds to wait for the user

        Returns:
            Cookie name -> value map

        Raises:
            BridgeTimeout: If the login did not finish in time
        """


class PlaywrightCookieAcquirer(CookieAcquirer):
    """Opens a Chromium window with Playwright and watches its cookie jar."""

    def __init__(self, headless: bool = False, platform: str = "browser"):
        self.headless = headless
        self.platform = platform

    async def acquire_session_cookies(
        self,
        login_url: str,
        success_detector: SuccessDetector,
        timeout: float,
    ) -> CookieMap:
        from playwright.async_api import async_playwright

        logger.info(f"[PlaywrightCookieAcquirer] Opening login page {login_url}")
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless)
            try:
                context = await browser.new_context()
                page = await context.new_page()
                await page.goto(login_url)

                deadline = time.monotonic() + timeout
                while time.monotonic() < deadline:
                    cookies = {
                        cookie["name"]: cookie["value"]
                        for cookie in await context.cookies()
                    }
                    if success_detector(cookies):
                        logger.info(
                            f"[PlaywrightCookieAcquirer] Session cookies captured "
                            f"({len(cookies)} cookies)"
                        )
                        return cookies
                    await asyncio.sleep(COOKIE_POLL_INTERVAL)
            finally:
                await browser.close()

        raise BridgeTimeout(self.platform, "browser login")
