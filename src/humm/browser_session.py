# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session lifecycle.

Owns the Playwright driver, Chromium process, browser context and single
page. Launch failures surface as InitializationError; teardown is
best-effort and never raises.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from . import Viewport
from .errors import InitializationError

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1366, "height": 768}

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    viewport_width: int = DEFAULT_VIEWPORT["width"]
    viewport_height: int = DEFAULT_VIEWPORT["height"]
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 30000  # page default for every operation
    selector_timeout_ms: int = 10000  # click/input selector wait
    click_settle_ms: int = 1000  # pause after a click for resulting mutations
    stream_quality: int = 60
    automation_disabled: bool = False


_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def is_browser_dead_error(exc: BaseException) -> bool:
    """Detect browser crash/disconnect errors."""
    msg = str(exc).lower()
    return any(p in msg for p in _BROWSER_DEAD_PATTERNS)


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds; Chromium is a ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args() -> list[str]:
    """Chromium flags for containerized headless runs."""
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--disable-extensions",
        "--no-first-run",
        "--noerrdialogs",
    ]


class BrowserSession:
    """One Playwright browser/context/page triple."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Call start() first.")
        return self._page

    @property
    def is_started(self) -> bool:
        return self._page is not None

    def viewport(self) -> Viewport | None:
        """Current viewport size, or None when the page has no fixed viewport."""
        size = self.page.viewport_size
        if not size:
            return None
        return Viewport(width=size["width"], height=size["height"], scale=1.0)

    async def _launch_browser(self) -> Browser:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args()
        try:
            return await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise
            if not await _auto_install_chromium():
                raise InitializationError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            return await self._playwright.chromium.launch(headless=self.config.headless, args=args)

    async def start(self) -> None:
        """Launch browser and create the page.

        Raises:
            InitializationError: driver, browser, context or page creation failed.
                Anything acquired before the failure is released.
        """
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._launch_browser()
            self._context = await self._browser.new_context(
                viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
                user_agent=self.config.user_agent,
            )
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self.config.timeout_ms)
        except Exception as exc:
            await self.stop()
            if isinstance(exc, InitializationError):
                raise
            raise InitializationError(f"Failed to launch browser: {exc}") from exc
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def stop(self) -> None:
        """Close context, browser and driver. Safe to call on a crashed or half-started session."""
        self._page = None
        for name, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception:
                logger.warning("Error closing %s during teardown", name, exc_info=True)
        self._context = None
        self._browser = None
        self._playwright = None
        logger.info("Browser session stopped")
