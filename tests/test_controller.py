# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for BrowserController: command dispatch, failure conversion, locking.

The Playwright page is an AsyncMock; no browser is launched.
"""

from __future__ import annotations

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import JPEG, PNG, mock_page, mock_session_factory
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from humm.browser_session import BrowserConfig
from humm.commands import (
    Click,
    Extract,
    GetViewport,
    Input,
    Navigate,
    Screenshot,
    Scroll,
    StreamStart,
    StreamStop,
    Wait,
)
from humm.controller import NOT_INITIALIZED, SESSION_CLOSED, BrowserController
from humm.errors import AutomationDisabledError, InitializationError

@pytest.fixture
def page():
    return mock_page()


@pytest.fixture
async def ctrl(page):
    controller = BrowserController(BrowserConfig(click_settle_ms=0), session_factory=mock_session_factory(page))
    await controller.initialize()
    yield controller
    await controller.close()


# ── Lifecycle ──────────────────────────────────────────────────────


class TestLifecycle:
    async def test_automation_disabled(self, page):
        controller = BrowserController(BrowserConfig(automation_disabled=True), session_factory=mock_session_factory(page))
        with pytest.raises(AutomationDisabledError):
            await controller.initialize()
        assert controller.is_initialized is False

    async def test_double_initialize_rejected(self, ctrl):
        with pytest.raises(InitializationError, match="already initialized"):
            await ctrl.initialize()

    async def test_launch_failure_propagates(self, page):
        factory = mock_session_factory(page, start_error=InitializationError("Failed to launch browser: boom"))
        controller = BrowserController(session_factory=factory)
        with pytest.raises(InitializationError):
            await controller.initialize()
        assert controller.is_initialized is False

    async def test_command_initializes_lazily(self, page):
        factory = mock_session_factory(page)
        controller = BrowserController(session_factory=factory)
        obs = await controller.execute_command(Navigate("https://example.com"))
        assert obs.success
        assert len(factory.sessions) == 1
        await controller.close()

    async def test_lazy_initialization_failure_becomes_observation(self, page):
        controller = BrowserController(BrowserConfig(automation_disabled=True), session_factory=mock_session_factory(page))
        obs = await controller.execute_command(Screenshot())
        assert obs.success is False
        assert "disabled" in obs.error

    async def test_close_is_idempotent_and_swallows_teardown_errors(self, page):
        controller = BrowserController(session_factory=mock_session_factory(page, stop_error=RuntimeError("gone")))
        await controller.initialize()
        await controller.close()
        await controller.close()
        assert controller.is_initialized is False

    async def test_close_while_streaming(self, ctrl, page):
        page.screenshot = AsyncMock(return_value=JPEG)
        await ctrl.execute_command(StreamStart(frame_rate=20))
        await ctrl.close()
        assert ctrl.stream_status().is_streaming is False

    async def test_close_while_streaming_despite_teardown_error(self, page):
        page.screenshot = AsyncMock(return_value=JPEG)
        controller = BrowserController(session_factory=mock_session_factory(page, stop_error=RuntimeError("gone")))
        await controller.initialize()
        frames: list[str] = []
        await controller.execute_command(StreamStart(frame_rate=30, sink=frames.append))
        await asyncio.sleep(0.1)
        assert frames

        await controller.close()
        delivered = len(frames)
        await asyncio.sleep(0.1)

        assert len(frames) == delivered
        assert controller.stream_status().is_streaming is False
        assert controller.is_initialized is False

    async def test_close_during_command_does_not_relaunch(self, page):
        factory = mock_session_factory(page)
        controller = BrowserController(session_factory=factory)
        await controller.initialize()
        entered, release = asyncio.Event(), asyncio.Event()

        async def slow_goto(url, **kwargs):
            entered.set()
            await release.wait()

        page.goto = AsyncMock(side_effect=slow_goto)
        navigation = asyncio.create_task(controller.execute_command(Navigate("https://example.com")))
        await entered.wait()
        await controller.close()
        release.set()
        assert (await navigation).success is False

        obs = await controller.execute_command(Extract())
        assert obs.success is False
        assert obs.error == SESSION_CLOSED
        assert len(factory.sessions) == 1
        assert controller.is_initialized is False

        await controller.initialize()
        assert len(factory.sessions) == 2
        assert (await controller.execute_command(Screenshot())).success
        await controller.close()

    async def test_stream_start_after_close_rejected(self, ctrl):
        await ctrl.close()
        obs = await ctrl.execute_command(StreamStart(frame_rate=10))
        assert obs.success is False
        assert ctrl.stream_status().is_streaming is False

    async def test_state_before_initialize(self):
        controller = BrowserController()
        obs = await controller.get_current_state()
        assert obs.success is False
        assert obs.error == NOT_INITIALIZED

    async def test_state_snapshot(self, ctrl):
        obs = await ctrl.get_current_state()
        assert obs.success
        assert obs.page_title == "Example Domain"
        assert obs.url == "https://example.com/"
        assert obs.viewport.width == 1366
        assert obs.stream.is_streaming is False


# ── Commands ───────────────────────────────────────────────────────


class TestNavigate:
    async def test_success(self, ctrl, page):
        obs = await ctrl.execute_command(Navigate("https://example.com"))
        page.goto.assert_awaited_once_with("https://example.com", wait_until="domcontentloaded")
        assert obs.success
        assert obs.page_title == "Example Domain"
        assert obs.url == "https://example.com/"
        assert obs.data == {"navigated": True}

    async def test_failure_is_observation(self, ctrl, page):
        page.goto.side_effect = Exception("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid\nCall log: ...")
        obs = await ctrl.execute_command(Navigate("https://nope.invalid"))
        assert obs.success is False
        assert obs.error == "Navigation to https://nope.invalid failed: net::ERR_NAME_NOT_RESOLVED at https://nope.invalid"
        assert obs.timestamp > 0


class TestClickInput:
    async def test_click_waits_then_clicks(self, ctrl, page):
        obs = await ctrl.execute_command(Click("#go"))
        page.wait_for_selector.assert_awaited_once_with("#go", timeout=10000)
        page.click.assert_awaited_once_with("#go")
        assert obs.data == {"clicked": "#go"}

    async def test_click_missing_element(self, ctrl, page):
        page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout 10000ms exceeded")
        obs = await ctrl.execute_command(Click("#missing"))
        assert obs.success is False
        assert obs.error.startswith("Click failed on #missing")
        page.click.assert_not_awaited()

    async def test_input_fills(self, ctrl, page):
        obs = await ctrl.execute_command(Input("#q", "hello"))
        page.fill.assert_awaited_once_with("#q", "hello")
        assert obs.data == {"inputted": "hello", "selector": "#q"}


class TestExtract:
    async def test_selector_text(self, ctrl, page):
        element = MagicMock()
        element.text_content = AsyncMock(return_value="$42.00")
        page.query_selector.return_value = element
        obs = await ctrl.execute_command(Extract(".price"))
        assert obs.success
        assert obs.content == "$42.00"
        assert obs.data == {"selector": ".price", "text": "$42.00"}

    async def test_selector_missing(self, ctrl, page):
        page.query_selector.return_value = None
        obs = await ctrl.execute_command(Extract(".price"))
        assert obs.success is False
        assert obs.error == "Element not found: .price"

    async def test_whole_page_is_cleaned(self, ctrl):
        obs = await ctrl.execute_command(Extract())
        assert obs.success
        assert obs.data["text"] == "Example Hello world"
        assert "menu" not in obs.data["html"]
        assert json.loads(obs.content)["title"] == "Example Domain"


class TestScroll:
    async def test_scroll_by_pixels(self, ctrl, page):
        obs = await ctrl.execute_command(Scroll("up", 300))
        page.evaluate.assert_awaited_once_with("(dy) => window.scrollBy(0, dy)", -300)
        assert obs.data == {"scrolled": True, "direction": "up", "pixels": 300}

    async def test_scroll_to_element(self, ctrl, page):
        obs = await ctrl.execute_command(Scroll(target_selector="#footer"))
        page.locator.assert_called_once_with("#footer")
        page.evaluate.assert_not_awaited()
        assert obs.data["to_element"] == "#footer"


class TestScreenshotWaitViewport:
    async def test_screenshot_data_uri(self, ctrl, page):
        obs = await ctrl.execute_command(Screenshot())
        page.screenshot.assert_awaited_once_with(type="png", full_page=False)
        prefix = "data:image/png;base64,"
        assert obs.screenshot.startswith(prefix)
        assert base64.b64decode(obs.screenshot[len(prefix) :]) == PNG

    async def test_wait_timeout(self, ctrl, page):
        page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout 500ms exceeded")
        obs = await ctrl.execute_command(Wait("#late", timeout_ms=500))
        assert obs.success is False
        assert obs.error == "Wait for #late timed out after 500ms"

    async def test_wait_success(self, ctrl, page):
        obs = await ctrl.execute_command(Wait("#ready"))
        page.wait_for_selector.assert_awaited_once_with("#ready", timeout=10000)
        assert obs.data == {"element_found": "#ready"}

    async def test_viewport(self, ctrl):
        obs = await ctrl.execute_command(GetViewport())
        assert obs.viewport.to_dict() == {"width": 1366, "height": 768, "scale": 1.0}
        assert obs.data["current_url"] == "https://example.com/"


class TestRequests:
    async def test_execute_request(self, ctrl, page):
        obs = await ctrl.execute_request({"action": "navigate", "url": "https://example.com"})
        assert obs.success
        page.goto.assert_awaited_once()

    async def test_invalid_request_is_observation(self, ctrl):
        obs = await ctrl.execute_request({"action": "teleport"})
        assert obs.success is False
        assert "Unknown command action" in obs.error

    async def test_every_failure_has_error_and_timestamp(self, ctrl, page):
        page.goto.side_effect = Exception("")
        obs = await ctrl.execute_command(Navigate("https://example.com"))
        assert obs.success is False
        assert obs.error
        assert obs.timestamp is not None


# ── Streaming through the controller ───────────────────────────────


class TestStreaming:
    async def test_frames_are_jpeg_with_quality(self, ctrl, page):
        page.screenshot = AsyncMock(return_value=JPEG)
        frames: list[str] = []
        obs = await ctrl.execute_command(StreamStart(frame_rate=20, sink=frames.append, quality=42))
        assert obs.stream.is_streaming and obs.stream.quality == 42

        for _ in range(50):
            if frames:
                break
            await asyncio.sleep(0.01)
        await ctrl.execute_command(StreamStop())

        assert frames and frames[0].startswith("data:image/jpeg;base64,")
        page.screenshot.assert_any_await(type="jpeg", quality=42, full_page=False)

    async def test_stop_twice_is_safe(self, ctrl, page):
        page.screenshot = AsyncMock(return_value=JPEG)
        await ctrl.execute_command(StreamStart(frame_rate=10))
        first = await ctrl.execute_command(StreamStop())
        second = await ctrl.execute_command(StreamStop())
        assert first.success and second.success
        assert first.stream.is_streaming is False
        assert second.stream.is_streaming is False

    async def test_restart_replaces_stream(self, ctrl, page):
        page.screenshot = AsyncMock(return_value=JPEG)
        await ctrl.execute_command(StreamStart(frame_rate=10))
        obs = await ctrl.execute_command(StreamStart(frame_rate=5))
        assert obs.stream.frame_rate == 5
        await ctrl.execute_command(StreamStop())
        assert ctrl.stream_status().is_streaming is False

    async def test_capture_waits_for_page_mutation(self, ctrl, page):
        """A frame is never captured while a navigation holds the page."""
        release = asyncio.Event()
        events: list[str] = []

        async def slow_goto(url, **kwargs):
            events.append("goto-start")
            await release.wait()
            events.append("goto-end")

        async def shot(**kwargs):
            events.append("frame")
            return JPEG

        page.goto.side_effect = slow_goto
        page.screenshot = AsyncMock(side_effect=shot)
        await ctrl.streamer.start(ctrl._capture_frame, None, frame_rate=50, quality=60)
        await asyncio.sleep(0.05)

        nav = asyncio.create_task(ctrl.execute_command(Navigate("https://example.com")))
        while "goto-start" not in events:
            await asyncio.sleep(0.005)
        mark = len(events)
        await asyncio.sleep(0.1)
        assert events[mark:] == []

        release.set()
        await nav
        await ctrl.streamer.stop()
        idx = events.index("goto-start")
        assert events[idx + 1] == "goto-end"
