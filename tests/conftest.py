# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

from __future__ import annotations

try:
    import humm  # noqa: F401
except ImportError:
    raise ImportError("humm is not installed. Run: pip install -e '.[dev]'") from None

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from humm import STREAM_IDLE, Observation, StreamStatus, Viewport
from humm.browser_session import BrowserConfig, BrowserSession
from humm.commands import Command, Extract, GetViewport, Navigate, Screenshot, StreamStart, StreamStop
from humm.gateways.image import ImageRequest, ImageResult
from humm.gateways.llm import GatewayResponse, LanguageModelGateway


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Playwright launches in unit tests.

    Tests that need a browser double patch ``humm.browser_session.async_playwright``
    themselves; that patch takes priority over this fixture.
    """
    if "allow_real_playwright" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start real Playwright. Patch 'humm.browser_session.async_playwright' in your test."
        )

    monkeypatch.setattr("humm.browser_session.async_playwright", _no_real_playwright)


# ── Playwright doubles ─────────────────────────────────────────────

PNG = b"\x89PNG\r\n\x1a\nfake"
JPEG = b"\xff\xd8\xff\xe0fake"


def mock_page() -> MagicMock:
    page = MagicMock()
    page.url = "https://example.com/"
    page.viewport_size = {"width": 1366, "height": 768}
    page.goto = AsyncMock()
    page.title = AsyncMock(return_value="Example Domain")
    page.wait_for_selector = AsyncMock()
    page.click = AsyncMock()
    page.fill = AsyncMock()
    page.query_selector = AsyncMock()
    page.content = AsyncMock(
        return_value="<html><head><title>Example Domain</title><script>x()</script></head>"
        "<body><nav>menu</nav><h1>Example</h1><p>Hello   world</p></body></html>"
    )
    page.evaluate = AsyncMock()
    page.screenshot = AsyncMock(return_value=PNG)
    locator = MagicMock()
    locator.scroll_into_view_if_needed = AsyncMock()
    page.locator = MagicMock(return_value=locator)
    return page


def mock_session_factory(page: MagicMock, *, start_error: Exception | None = None, stop_error: Exception | None = None):
    sessions: list[BrowserSession] = []

    def factory(config: BrowserConfig) -> BrowserSession:
        session = BrowserSession.__new__(BrowserSession)
        session.config = config
        session._page = None

        async def start():
            if start_error is not None:
                raise start_error
            session._page = page

        async def stop():
            session._page = None
            if stop_error is not None:
                raise stop_error

        session.start = start
        session.stop = stop
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


# ── Doubles ────────────────────────────────────────────────────────


class FakeController:
    """Command-surface double for orchestrator tests.

    ``failures`` maps a command type to the error string its observation
    should carry. ``on_command`` runs before each command is answered.
    """

    def __init__(self, *, title: str = "Example Domain", content: str = "Markets rallied today.") -> None:
        self.title = title
        self.content = content
        self.commands: list[Command] = []
        self.failures: dict[type, str] = {}
        self.on_command: Callable[[Command], None] | None = None
        self.initialized = False
        self.init_error: Exception | None = None
        self.closed = 0
        self.streaming: StreamStatus = STREAM_IDLE
        self.sink = None
        self.url = "about:blank"

    @property
    def is_initialized(self) -> bool:
        return self.initialized

    async def initialize(self) -> None:
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    async def close(self) -> None:
        self.closed += 1
        self.streaming = STREAM_IDLE
        self.sink = None
        self.initialized = False

    def stream_status(self) -> StreamStatus:
        return self.streaming

    async def get_current_state(self) -> Observation:
        if not self.initialized:
            return Observation.failure("Browser not initialized")
        return Observation(success=True, page_title=self.title, url=self.url, stream=self.streaming)

    async def execute_command(self, command: Command) -> Observation:
        self.commands.append(command)
        if self.on_command is not None:
            self.on_command(command)
        error = self.failures.get(type(command))
        if error is not None:
            return Observation.failure(error)
        match command:
            case Navigate(url=url):
                self.url = url
                return Observation(success=True, page_title=self.title, url=url, data={"navigated": True})
            case Extract(selector=None):
                data = {"title": self.title, "text": self.content, "html": "<p/>", "url": self.url}
                return Observation(success=True, page_title=self.title, url=self.url, content=self.content, data=data)
            case Extract(selector=selector):
                return Observation(success=True, content=self.content, data={"selector": selector, "text": self.content})
            case Screenshot():
                return Observation(success=True, screenshot="data:image/png;base64,AAAA", data={"screenshot_taken": True})
            case GetViewport():
                vp = Viewport(1366, 768)
                return Observation(success=True, viewport=vp, data={"viewport": vp.to_dict()})
            case StreamStart(frame_rate=rate, quality=quality, sink=sink):
                self.streaming = StreamStatus(True, rate, quality)
                self.sink = sink
                return Observation(success=True, stream=self.streaming, data={"streaming_started": True})
            case StreamStop():
                self.streaming = STREAM_IDLE
                self.sink = None
                return Observation(success=True, stream=STREAM_IDLE, data={"streaming_stopped": True})
        return Observation(success=True)

    def actions(self) -> list[str]:
        return [c.action for c in self.commands]


class ScriptedLLM(LanguageModelGateway):
    """Gateway double answering from a queue, then with a default reply."""

    def __init__(self, *replies: str, default: str = "The page reports steady gains across major indices.") -> None:
        super().__init__()
        self.replies = list(replies)
        self.default = default
        self.prompts: list[str] = []
        self.contexts: list = []

    async def generate(self, prompt, context=None) -> GatewayResponse:
        self.prompts.append(prompt)
        self.contexts.append(context)
        text = self.replies.pop(0) if self.replies else self.default
        return GatewayResponse(text=text, confidence=90, provider_used="scripted", latency_ms=1.0, adapted_style="professional")


class OfflineLLM(LanguageModelGateway):
    """Gateway with no providers: always answers with the canned reply."""


class FakeImages:
    def __init__(self, *, success: bool = True, error: str = "All image generation models failed: 503") -> None:
        self.success = success
        self.error = error
        self.requests: list[ImageRequest] = []

    async def generate(self, request: ImageRequest) -> ImageResult:
        self.requests.append(request)
        if not self.success:
            return ImageResult(success=False, prompt=request.prompt, provider_used="none", generation_time_ms=3.0, error=self.error)
        return ImageResult(
            success=True,
            prompt=request.prompt,
            provider_used=f"stable-diffusion-xl ({request.type})",
            generation_time_ms=12.5,
            image_base64="data:image/png;base64,iVBORw0KGgo=",
            metadata={"dimensions": {"width": request.width, "height": request.height}, "format": "png", "size": 8},
        )


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def images() -> FakeImages:
    return FakeImages()


@pytest.fixture
async def orchestrator(controller, llm, images):
    from humm.orchestrator import TaskOrchestrator

    orch = TaskOrchestrator(controller, llm, images, settle_delay=0)
    await orch.initialize()
    return orch
