# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Task Orchestrator: sequences browser commands and gateway calls into tasks.

State machine over AgentState::

    inactive --initialize()--> ready --execute_task()--> busy --> ready
    any --shutdown()--> inactive (must initialize() again)

``execute_task`` never raises. Handlers raise TaskError / CommandError
subclasses on a failed precondition or step; the orchestrator converts that
into a failed AgentResult with the partial observation trail, and
``current_task`` is cleared on every path. The orchestrator only touches the
browser through ``execute_command``.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

import httpx

from . import Observation, StreamStatus
from .commands import Command, Extract, GetViewport, Navigate, Screenshot, StreamStart, StreamStop
from .config import HummConfig
from .errors import (
    CommandError,
    DuplicateTaskError,
    ElementNotFoundError,
    ExtractionError,
    HummError,
    ImageGenerationError,
    MissingParameterError,
    NavigationError,
    OrchestratorStateError,
)
from .gateways.image import ImageGateway, build_image_gateway
from .gateways.llm import LanguageModelGateway, build_language_model_gateway
from .image_spec import Parsed, parse_image_spec, plan_prompt
from .logging_config import bind_task, unbind_task
from .step_timer import StepTimer
from .tasks import AgentResult, AgentState, ObservationLog, Task, TaskType

logger = logging.getLogger(__name__)

FINANCE_PORTAL = "https://finance.yahoo.com"
SEARCH_ENGINE = "https://www.google.com/search"

_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+")
_FINANCE_TERMS = ("finance", "stock", "market", "trading", "invest")
_MAX_ANALYSIS_CHARS = 8000
_MAX_RESULT_CHARS = 4000
_BINARY_KEYS = frozenset({"screenshot", "image_base64"})

FrameSink = Callable[[str], Awaitable[None] | None]


class CommandExecutor(Protocol):
    """The browser surface the orchestrator depends on."""

    @property
    def is_initialized(self) -> bool: ...

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def execute_command(self, command: Command) -> Observation: ...

    async def get_current_state(self) -> Observation: ...

    def stream_status(self) -> StreamStatus: ...


def resolve_research_url(answer: str, query: str) -> str:
    """First URL in the model's answer, else a portal chosen from the query."""
    match = _URL_RE.search(answer or "")
    if match:
        return match.group(0).rstrip(".,;:!?")
    lower = f"{query} {answer}".lower()
    if any(term in lower for term in _FINANCE_TERMS):
        return FINANCE_PORTAL
    return str(httpx.URL(SEARCH_ENGINE, params={"q": query}))


def _redact(value: Any) -> Any:
    """Drop encoded images before a value is sent to the language model."""
    if isinstance(value, Mapping):
        return {k: ("<image omitted>" if k in _BINARY_KEYS and v else _redact(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(v) for v in value]
    return value


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + " …"


class TaskOrchestrator:
    """Runs one task at a time against one browser controller."""

    def __init__(
        self,
        controller: CommandExecutor,
        llm: LanguageModelGateway,
        images: ImageGateway,
        *,
        settle_delay: float = 2.0,
        frame_rate: float = 2.0,
        stream_quality: int = 60,
        frame_sink: FrameSink | None = None,
    ) -> None:
        self.controller = controller
        self.llm = llm
        self.images = images
        self.settle_delay = settle_delay
        self.frame_rate = frame_rate
        self.stream_quality = stream_quality
        self._frame_sink = frame_sink
        self._latest_frame: str | None = None
        self._state = AgentState()
        self._lock = asyncio.Lock()
        self._used_ids: set[str] = set()
        self._handlers: dict[TaskType, Callable[[Task, ObservationLog, StepTimer], Awaitable[dict]]] = {
            TaskType.RESEARCH: self._research,
            TaskType.SCRAPE: self._scrape,
            TaskType.NAVIGATE: self._navigate,
            TaskType.MONITOR: self._monitor,
            TaskType.LIVE_DEMO: self._live_demo,
            TaskType.GENERATE_IMAGE: self._generate_image,
        }

    @property
    def latest_frame(self) -> str | None:
        """Most recent live-view frame (JPEG data URI)."""
        return self._latest_frame

    # ── Lifecycle ────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Acquire the browser session. Errors from the controller propagate.

        Waits for a task still running from before a shutdown, so that task
        never sees the new session.
        """
        if self._state.browser_ready:
            return
        async with self._lock:
            if self._state.browser_ready:
                return
            if not self.controller.is_initialized:
                await self.controller.initialize()
            self._state.is_active = True
            self._state.browser_ready = True
            self._state.last_activity = time.time()
            logger.info("Orchestrator ready")

    async def shutdown(self) -> None:
        """Stop streaming, close the session and reset all state.

        Returns without waiting for a running task; the controller refuses
        to relaunch the browser, so that task fails at its next command.
        """
        try:
            await self.controller.close()
        finally:
            self._state = AgentState(is_active=False, browser_ready=False)
            self._latest_frame = None
            logger.info("Orchestrator shut down")

    def get_state(self) -> AgentState:
        return self._state.copy()

    async def get_browser_state(self) -> Observation:
        return await self.controller.get_current_state()

    async def stop_live_stream(self) -> Observation | None:
        """Stop the live view if one is running; no-op otherwise."""
        if not (self._state.is_live_streaming or self.controller.stream_status().is_streaming):
            return None
        observation = await self.controller.execute_command(StreamStop())
        self._state.is_live_streaming = False
        return observation

    # ── Task execution ───────────────────────────────────────────

    async def execute_task(self, task: Task) -> AgentResult:
        """Run *task* to completion. Never raises."""
        async with self._lock:
            started = time.time()
            t0 = time.monotonic()
            log = ObservationLog()
            timer = StepTimer()
            bind_task(task.id, task.type.value)
            try:
                self._admit(task)
                self._state.current_task = task
                self._state.last_activity = started
                logger.info("Task started: %s", task.description or task.type.value)
                try:
                    data = await self._handlers[task.type](task, log, timer)
                except Exception as exc:
                    timer.finalize()
                    return self._failed(task, exc, log, timer, started, t0)
                timer.step("summarize")
                summary = await self._summarize(task, log, data)
                timer.finalize()
                logger.info("Task completed in %.0fms", (time.monotonic() - t0) * 1000)
                return AgentResult(
                    task_id=task.id,
                    success=True,
                    summary=summary,
                    started_at=started,
                    execution_time_ms=round((time.monotonic() - t0) * 1000, 1),
                    observations=log.snapshot(),
                    data=data,
                    step_timings=timer.elapsed_per_step(),
                )
            except HummError as exc:
                return self._failed(task, exc, log, timer, started, t0)
            finally:
                self._state.current_task = None
                self._state.last_activity = time.time()
                self._sync_stream_state()
                unbind_task()

    def _admit(self, task: Task) -> None:
        if not self._state.is_active or not self._state.browser_ready:
            raise OrchestratorStateError("Agent not initialized. Call initialize() first.")
        if task.id in self._used_ids:
            raise DuplicateTaskError(f"Task id already used: {task.id}")
        self._used_ids.add(task.id)

    def _failed(
        self,
        task: Task,
        exc: Exception,
        log: ObservationLog,
        timer: StepTimer,
        started: float,
        t0: float,
    ) -> AgentResult:
        message = str(exc) or type(exc).__name__
        report = timer.failure_report()
        if isinstance(exc, HummError):
            logger.warning("Task failed at %s: %s", report["failed_step"], message)
        else:
            logger.error("Task failed at %s", report["failed_step"], exc_info=exc)
        return AgentResult(
            task_id=task.id,
            success=False,
            summary=f"Task failed: {message}",
            started_at=started,
            execution_time_ms=round((time.monotonic() - t0) * 1000, 1),
            observations=log.snapshot(),
            data={
                "error": message,
                "error_type": type(exc).__name__,
                "failed_step": report["failed_step"],
                "hint": report["hint"],
            },
            step_timings=report["step_timings"],
        )

    def _sync_stream_state(self) -> None:
        if self._state.is_live_streaming and not self.controller.stream_status().is_streaming:
            self._state.is_live_streaming = False
        self._state.browser_ready = self._state.browser_ready and self.controller.is_initialized

    async def _run(self, command: Command, log: ObservationLog, timer: StepTimer, step: str) -> Observation:
        timer.step(step)
        return log.append(await self.controller.execute_command(command))

    async def _summarize(self, task: Task, log: ObservationLog, result: Mapping[str, Any]) -> str:
        fallback = f"Task completed: {task.description or task.type.value}. Check detailed results."
        try:
            steps = "\n".join(
                f"{obs.timestamp}: {json.dumps(_redact(dict(obs.data)), default=str) if obs.data else 'No data'}"
                for obs in log.successful()
            )
            prompt = (
                f"Task: {task.description}\n"
                f"User Query: {task.user_query}\n\n"
                f"Execution Steps:\n{steps}\n\n"
                f"Result: {_truncate(json.dumps(_redact(result), default=str), _MAX_RESULT_CHARS)}\n\n"
                "Please provide a concise, user-friendly summary of what was accomplished."
            )
            response = await self.llm.generate(prompt, {"user_style": "professional"})
        except Exception:
            logger.warning("Summary generation failed", exc_info=True)
            return fallback
        if response.provider_used == "fallback" or not response.text.strip():
            return fallback
        return response.text

    # ── Handlers ─────────────────────────────────────────────────

    @staticmethod
    def _require_url(task: Task) -> str:
        if not task.target_url:
            raise MissingParameterError(f"Target URL required for {task.type.value} task", parameter="target_url")
        return task.target_url

    async def _research(self, task: Task, log: ObservationLog, timer: StepTimer) -> dict:
        url = task.target_url
        if not url:
            if not task.user_query:
                raise MissingParameterError(
                    "Research task needs a target URL or a user query", parameter="user_query"
                )
            timer.step("resolve_url")
            answer = await self.llm.generate(
                f"What is the best website to research: {task.user_query}? Return just the URL.",
                {"analysis_type": "strategy"},
            )
            url = resolve_research_url(answer.text, task.user_query)
            logger.info("Research target resolved to %s", url)

        nav = await self._run(Navigate(url), log, timer, "navigate")
        if not nav.success:
            raise NavigationError(f"Failed to navigate to {url}: {nav.error}", url=url)
        extracted = await self._run(Extract(), log, timer, "extract")
        if not extracted.success:
            raise ExtractionError(f"Failed to extract page content: {extracted.error}")

        timer.step("analyze")
        analysis = await self.llm.generate(
            f"User Query: {task.user_query}\n\n"
            f"Extracted Content: {_truncate(extracted.content or '', _MAX_ANALYSIS_CHARS)}\n\n"
            "Please analyze this content and provide relevant insights for the user's query.",
            {"analysis_type": "fundamental", "user_style": "professional"},
        )
        text = analysis.text.strip() or LanguageModelGateway.fallback(analysis.adapted_style).text
        return {
            "url": url,
            "page_title": nav.page_title,
            "extracted_content": dict(extracted.payload),
            "ai_analysis": text,
            "confidence": analysis.confidence,
            "provider_used": analysis.provider_used,
        }

    async def _scrape(self, task: Task, log: ObservationLog, timer: StepTimer) -> dict:
        url = self._require_url(task)
        nav = await self._run(Navigate(url), log, timer, "navigate")
        extracted = await self._run(Extract(task.selector), log, timer, "extract")
        if not extracted.success:
            self._raise_extract_failure(extracted, task.selector)
        result: dict[str, Any] = {"url": url, "navigation_success": nav.success}
        if task.selector:
            result["selector"] = task.selector
            result["data"] = dict(extracted.payload)
        else:
            result["full_content"] = dict(extracted.payload)
        return result

    async def _navigate(self, task: Task, log: ObservationLog, timer: StepTimer) -> dict:
        url = self._require_url(task)
        nav = await self._run(Navigate(url), log, timer, "navigate")
        shot = await self._run(Screenshot(), log, timer, "screenshot")
        return {
            "url": url,
            "page_title": nav.page_title,
            "screenshot": shot.screenshot,
            "navigation_success": nav.success,
        }

    async def _monitor(self, task: Task, log: ObservationLog, timer: StepTimer) -> dict:
        url = self._require_url(task)
        await self._run(Navigate(url), log, timer, "navigate")
        extracted = await self._run(Extract(task.selector), log, timer, "extract")
        if not extracted.success:
            self._raise_extract_failure(extracted, task.selector)
        return {
            "url": url,
            "selector": task.selector,
            "monitored_data": dict(extracted.payload),
            "timestamp": extracted.timestamp,
        }

    @staticmethod
    def _raise_extract_failure(observation: Observation, selector: str | None) -> None:
        if selector and (observation.error or "").startswith("Element not found"):
            raise ElementNotFoundError(observation.error, selector=selector)
        raise ExtractionError(f"Failed to extract content: {observation.error}")

    async def _generate_image(self, task: Task, log: ObservationLog, timer: StepTimer) -> dict:
        query = task.user_query or task.description
        if not query:
            raise MissingParameterError("Image task needs a user query", parameter="user_query")

        timer.step("plan_image")
        plan = await self.llm.generate(
            plan_prompt(query, task.description),
            {"analysis_type": "strategy", "user_style": "technical"},
        )
        parsed = parse_image_spec(plan.text, query, task.parameters)
        spec = parsed.spec
        if not isinstance(parsed, Parsed):
            logger.info("Image plan unusable (%s); using default spec", parsed.reason)
        log.append(
            Observation(
                success=True,
                data={
                    "ai_analysis": plan.text,
                    "spec_source": "parsed" if isinstance(parsed, Parsed) else "fallback",
                    "image_request": {
                        "prompt": spec.prompt,
                        "type": spec.type,
                        "style": spec.style,
                        "width": spec.width,
                        "height": spec.height,
                        "steps": spec.steps,
                        "guidance": spec.guidance,
                    },
                },
            )
        )

        timer.step("render_image")
        image = await self.images.generate(spec)
        log.append(
            Observation(
                success=image.success,
                data={
                    "image_generated": image.success,
                    "model": image.provider_used,
                    "generation_time_ms": image.generation_time_ms,
                    "metadata": image.metadata,
                },
                error=image.error,
            )
        )
        if not image.success:
            raise ImageGenerationError(f"Image generation failed: {image.error}")
        return {
            "image_base64": image.image_base64,
            "prompt": image.prompt,
            "original_query": query,
            "model": image.provider_used,
            "generation_time_ms": image.generation_time_ms,
            "metadata": image.metadata,
            "type": spec.type,
            "style": spec.style,
        }

    async def _live_demo(self, task: Task, log: ObservationLog, timer: StepTimer) -> dict:
        url = self._require_url(task)
        try:
            if task.enable_live_view:
                started = await self._run(
                    StreamStart(frame_rate=self.frame_rate, sink=self._on_frame, quality=self.stream_quality),
                    log,
                    timer,
                    "stream_start",
                )
                if not started.success:
                    raise CommandError(f"Live view failed to start: {started.error}")
                self._state.is_live_streaming = True

            nav = await self._run(Navigate(url), log, timer, "navigate")
            if not nav.success:
                raise NavigationError(f"Failed to navigate to {url}: {nav.error}", url=url)
            self._state.current_url = nav.url or url

            timer.step("settle")
            await asyncio.sleep(self.settle_delay)

            viewport = await self._run(GetViewport(), log, timer, "viewport")
            if not viewport.success:
                raise CommandError(f"Viewport query failed: {viewport.error}")
            shot = await self._run(Screenshot(), log, timer, "screenshot")
            if not shot.success:
                raise CommandError(f"Screenshot failed: {shot.error}")
        except Exception:
            if self._state.is_live_streaming or self.controller.stream_status().is_streaming:
                log.append(await self.controller.execute_command(StreamStop()))
                self._state.is_live_streaming = False
            raise

        return {
            "url": url,
            "page_title": nav.page_title,
            "screenshot": shot.screenshot,
            "viewport": viewport.viewport.to_dict() if viewport.viewport else None,
            "live_stream_active": self._state.is_live_streaming,
            "navigation_success": nav.success,
            "demo_completed": True,
        }

    async def _on_frame(self, frame: str) -> None:
        self._latest_frame = frame
        if self._frame_sink is not None:
            result = self._frame_sink(frame)
            if inspect.isawaitable(result):
                await result


def create_orchestrator(config: HummConfig | None = None, *, frame_sink: FrameSink | None = None) -> TaskOrchestrator:
    """Wire controller and gateways from configuration."""
    from .controller import BrowserController

    config = config or HummConfig.from_env()
    return TaskOrchestrator(
        BrowserController(config.browser_config()),
        build_language_model_gateway(config.groq_api_key, config.huggingface_api_key),
        build_image_gateway(config.huggingface_api_key),
        settle_delay=config.settle_delay,
        frame_rate=config.frame_rate,
        stream_quality=config.stream_quality,
        frame_sink=frame_sink,
    )
