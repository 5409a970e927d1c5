# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Browser Session Controller.

Executes commands against the single page of one BrowserSession and
reports every outcome as an Observation. ``execute_command`` never raises:
command handlers raise CommandError subclasses internally and the dispatch
boundary turns any exception into a failed Observation. Only
``initialize()`` may raise.

Concurrency: every command runs under ``_command_lock`` (one logical caller
drives the session at a time). Page-mutating commands additionally hold
``_page_lock``, which the streaming capture also takes, so a frame is never
captured halfway through a navigation or click.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import Observation, StreamStatus
from .browser_session import BrowserConfig, BrowserSession, is_browser_dead_error
from .commands import (
    MUTATING_COMMANDS,
    Click,
    Command,
    Extract,
    GetViewport,
    Input,
    Navigate,
    Screenshot,
    Scroll,
    StreamStart,
    StreamStop,
    Wait,
    parse_command,
)
from .content_extractor import extract_page_content
from .errors import (
    AutomationDisabledError,
    ElementNotFoundError,
    ExtractionError,
    HummError,
    InitializationError,
    InteractionError,
    NavigationError,
    WaitTimeoutError,
)
from .streaming import FrameStreamer

logger = logging.getLogger(__name__)

NOT_INITIALIZED = "Browser not initialized"
SESSION_CLOSED = "Browser session closed"


def png_data_uri(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def jpeg_data_uri(jpeg: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")


def _reason(exc: BaseException) -> str:
    msg = str(exc).strip()
    return msg.splitlines()[0] if msg else type(exc).__name__


class BrowserController:
    """Owns one browser session and executes commands against it."""

    def __init__(
        self,
        config: BrowserConfig | None = None,
        *,
        session_factory: Callable[[BrowserConfig], BrowserSession] = BrowserSession,
    ) -> None:
        self.config = config or BrowserConfig()
        self._session_factory = session_factory
        self._session: BrowserSession | None = None
        self._streamer = FrameStreamer()
        self._command_lock = asyncio.Lock()
        self._page_lock = asyncio.Lock()
        # Set by close(); lazy initialization stays off until initialize() is called again
        self._closed = False
        self._handlers: dict[type, Callable[[Any], Awaitable[Observation]]] = {
            Navigate: self._navigate,
            Click: self._click,
            Input: self._input,
            Extract: self._extract,
            Scroll: self._scroll,
            Screenshot: self._screenshot,
            Wait: self._wait,
            StreamStart: self._stream_start,
            StreamStop: self._stream_stop,
            GetViewport: self._get_viewport,
        }

    @property
    def is_initialized(self) -> bool:
        return self._session is not None

    @property
    def streamer(self) -> FrameStreamer:
        return self._streamer

    # ── Lifecycle ────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the session.

        Raises:
            AutomationDisabledError: automation is administratively disabled.
            InitializationError: already initialized, or the engine failed to launch.
        """
        if self._session is not None:
            raise InitializationError("Browser session already initialized")
        self._closed = False
        await self._open_session()

    async def _open_session(self) -> None:
        if self.config.automation_disabled:
            raise AutomationDisabledError("Browser automation is disabled in this environment")
        session = self._session_factory(self.config)
        await session.start()
        if self._closed:
            # close() ran while the engine was launching
            try:
                await session.stop()
            except Exception:
                logger.warning("Error releasing browser session", exc_info=True)
            raise InitializationError(SESSION_CLOSED)
        self._session = session
        logger.info("Browser controller initialized")

    async def close(self) -> None:
        """Stop streaming and release the session. Never raises.

        Does not wait for an in-flight command; that command and any later
        ones fail instead of re-launching the browser.
        """
        self._closed = True
        try:
            await self._streamer.stop()
        except Exception:
            logger.warning("Error stopping stream during close", exc_info=True)
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.stop()
        except Exception:
            logger.warning("Error releasing browser session", exc_info=True)
        logger.info("Browser controller closed")

    # ── Command boundary ─────────────────────────────────────────

    async def execute_command(self, command: Command) -> Observation:
        """Execute one command. Always returns an Observation, never raises."""
        started = time.time()
        async with self._command_lock:
            try:
                if self._session is None:
                    if self._closed:
                        raise InitializationError(SESSION_CLOSED)
                    await self._open_session()
                handler = self._handlers.get(type(command))
                if handler is None:
                    raise HummError(f"Unknown command: {type(command).__name__}")
                if isinstance(command, MUTATING_COMMANDS):
                    async with self._page_lock:
                        return await handler(command)
                return await handler(command)
            except Exception as exc:
                if is_browser_dead_error(exc):
                    logger.error("Browser connection lost during %s", getattr(command, "action", command))
                else:
                    logger.warning("Command %s failed: %s", getattr(command, "action", command), exc)
                return Observation.failure(exc, timestamp=started)

    async def execute_request(self, request: Mapping[str, Any]) -> Observation:
        """Parse a tagged request ``{action, url?, selector?, text?, options?}`` and execute it."""
        try:
            command = parse_command(request)
        except HummError as exc:
            return Observation.failure(exc)
        return await self.execute_command(command)

    async def get_current_state(self) -> Observation:
        """Snapshot of title, URL, viewport and stream status. Never raises."""
        session = self._session
        if session is None or not session.is_started:
            return Observation.failure(NOT_INITIALIZED)
        try:
            page = session.page
            title = await page.title()
            url = page.url
            stream = self._streamer.status()
            return Observation(
                success=True,
                page_title=title,
                url=url,
                viewport=session.viewport(),
                stream=stream,
                data={"is_ready": True, "title": title, "current_url": url, "is_streaming": stream.is_streaming},
            )
        except Exception as exc:
            return Observation.failure(exc)

    def stream_status(self) -> StreamStatus:
        return self._streamer.status()

    def _live_session(self) -> BrowserSession:
        session = self._session
        if session is None:
            raise InitializationError(SESSION_CLOSED if self._closed else NOT_INITIALIZED)
        return session

    @property
    def _page(self):
        return self._live_session().page

    # ── Handlers ─────────────────────────────────────────────────

    async def _navigate(self, cmd: Navigate) -> Observation:
        try:
            await self._page.goto(cmd.url, wait_until="domcontentloaded")
            title = await self._page.title()
        except Exception as exc:
            raise NavigationError(f"Navigation to {cmd.url} failed: {_reason(exc)}", url=cmd.url) from exc
        return Observation(success=True, page_title=title, url=self._page.url, data={"navigated": True})

    async def _click(self, cmd: Click) -> Observation:
        try:
            await self._page.wait_for_selector(cmd.selector, timeout=self.config.selector_timeout_ms)
            await self._page.click(cmd.selector)
            await asyncio.sleep(self.config.click_settle_ms / 1000)
        except Exception as exc:
            raise InteractionError(f"Click failed on {cmd.selector}: {_reason(exc)}", selector=cmd.selector) from exc
        return Observation(success=True, url=self._page.url, data={"clicked": cmd.selector})

    async def _input(self, cmd: Input) -> Observation:
        try:
            await self._page.wait_for_selector(cmd.selector, timeout=self.config.selector_timeout_ms)
            await self._page.fill(cmd.selector, cmd.text)
        except Exception as exc:
            raise InteractionError(f"Input failed on {cmd.selector}: {_reason(exc)}", selector=cmd.selector) from exc
        return Observation(success=True, data={"inputted": cmd.text, "selector": cmd.selector})

    async def _extract(self, cmd: Extract) -> Observation:
        if cmd.selector:
            element = await self._page.query_selector(cmd.selector)
            if element is None:
                raise ElementNotFoundError(f"Element not found: {cmd.selector}", selector=cmd.selector)
            text = (await element.text_content()) or ""
            return Observation(success=True, content=text, data={"selector": cmd.selector, "text": text})

        try:
            html = await self._page.content()
            title = await self._page.title()
            extracted = extract_page_content(html, title=title, url=self._page.url)
        except Exception as exc:
            raise ExtractionError(f"Content extraction failed: {_reason(exc)}") from exc
        data = extracted.to_dict()
        return Observation(
            success=True,
            page_title=extracted.title,
            url=extracted.url,
            content=json.dumps(data, ensure_ascii=False),
            data=data,
        )

    async def _scroll(self, cmd: Scroll) -> Observation:
        if cmd.target_selector:
            await self._page.locator(cmd.target_selector).scroll_into_view_if_needed()
            return Observation(success=True, data={"scrolled": True, "to_element": cmd.target_selector})
        await self._page.evaluate("(dy) => window.scrollBy(0, dy)", cmd.delta_y)
        return Observation(success=True, data={"scrolled": True, "direction": cmd.direction, "pixels": cmd.pixels})

    async def _screenshot(self, cmd: Screenshot) -> Observation:
        png = await self._page.screenshot(type="png", full_page=False)
        return Observation(success=True, screenshot=png_data_uri(png), data={"screenshot_taken": True})

    async def _wait(self, cmd: Wait) -> Observation:
        try:
            await self._page.wait_for_selector(cmd.selector, timeout=cmd.timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise WaitTimeoutError(
                f"Wait for {cmd.selector} timed out after {cmd.timeout_ms}ms",
                selector=cmd.selector,
                timeout_ms=cmd.timeout_ms,
            ) from exc
        return Observation(success=True, data={"element_found": cmd.selector})

    async def _stream_start(self, cmd: StreamStart) -> Observation:
        status = await self._streamer.start(
            self._capture_frame,
            cmd.sink,
            frame_rate=cmd.frame_rate,
            quality=cmd.quality,
        )
        if self._closed:
            await self._streamer.stop()
            raise InitializationError(SESSION_CLOSED)
        return Observation(success=True, stream=status, data={"streaming_started": True})

    async def _stream_stop(self, cmd: StreamStop) -> Observation:
        status = await self._streamer.stop()
        return Observation(success=True, stream=status, data={"streaming_stopped": True})

    async def _get_viewport(self, cmd: GetViewport) -> Observation:
        title = await self._page.title()
        url = self._page.url
        viewport = self._live_session().viewport()
        return Observation(
            success=True,
            page_title=title,
            url=url,
            viewport=viewport,
            data={"viewport": viewport.to_dict() if viewport else None, "current_url": url, "title": title},
        )

    async def _capture_frame(self) -> str:
        """One streaming frame; serialized against page mutations."""
        async with self._page_lock:
            session = self._session
            if session is None:
                raise RuntimeError(NOT_INITIALIZED)
            jpeg = await session.page.screenshot(
                type="jpeg",
                quality=self._streamer.status().quality or self.config.stream_quality,
                full_page=False,
            )
        return jpeg_data_uri(jpeg)
