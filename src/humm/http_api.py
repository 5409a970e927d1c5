# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP surface for the task orchestrator (Starlette + pydantic).

Routes:

- ``POST /api/agent``: ``{action, task?}`` with action one of
  initialize | status | execute | stop_stream | shutdown. The browser is
  initialized lazily by the first non-shutdown call.
- ``GET  /api/agent``: agent + browser state.
- ``GET  /api/agent/frame``: latest live-view frame.
- ``GET  /health``: liveness.

Errors are JSON bodies ``{success: false, error, details?}``.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .errors import HummError
from .orchestrator import TaskOrchestrator
from .tasks import Task, TaskType

logger = logging.getLogger(__name__)


class TaskPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: TaskType
    description: str = ""
    user_query: str = Field(default="", alias="userQuery")
    target_url: str | None = Field(default=None, alias="targetUrl")
    selector: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    enable_live_view: bool = Field(default=False, alias="enableLiveView")

    def to_task(self) -> Task:
        # ids are always generated server-side
        return Task(**self.model_dump())


class AgentRequest(BaseModel):
    action: Literal["initialize", "status", "execute", "stop_stream", "shutdown"]
    task: TaskPayload | None = None


def _error(error: str, status: int, details: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": error}
    if details:
        body["details"] = details
    return JSONResponse(body, status_code=status)


def create_app(orchestrator: TaskOrchestrator) -> Starlette:
    """Build the ASGI app around an existing orchestrator."""

    async def _ensure_initialized() -> JSONResponse | None:
        if orchestrator.get_state().browser_ready:
            return None
        try:
            await orchestrator.initialize()
        except HummError as exc:
            logger.error("Agent initialization failed: %s", exc)
            return _error("Failed to initialize AI Agent", 500, str(exc))
        return None

    async def agent_post(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error("Request body must be JSON", 400)
        try:
            req = AgentRequest.model_validate(body)
        except ValidationError as exc:
            return _error("Invalid request", 400, str(exc))

        if req.action != "shutdown":
            failure = await _ensure_initialized()
            if failure is not None:
                return failure

        try:
            match req.action:
                case "initialize":
                    return JSONResponse(
                        {
                            "success": True,
                            "message": "AI Agent initialized successfully",
                            "state": orchestrator.get_state().to_dict(),
                        }
                    )
                case "status":
                    browser = await orchestrator.get_browser_state()
                    return JSONResponse(
                        {
                            "success": True,
                            "agent_state": orchestrator.get_state().to_dict(),
                            "browser_state": browser.to_dict(),
                        }
                    )
                case "execute":
                    if req.task is None:
                        return _error("Task is required for execute action", 400)
                    result = await orchestrator.execute_task(req.task.to_task())
                    return JSONResponse({"success": True, "result": result.to_dict()})
                case "stop_stream":
                    await orchestrator.stop_live_stream()
                    return JSONResponse({"success": True, "message": "Live stream stopped successfully"})
                case "shutdown":
                    await orchestrator.shutdown()
                    return JSONResponse({"success": True, "message": "AI Agent shutdown successfully"})
        except Exception as exc:
            logger.exception("Agent API error during %s", req.action)
            return _error("Internal server error", 500, str(exc))
        return _error(f"Unknown action: {req.action}", 400)

    async def agent_get(request: Request) -> JSONResponse:
        state = orchestrator.get_state()
        if not state.browser_ready:
            return JSONResponse(
                {"success": True, "agent_initialized": False, "message": "AI Agent not initialized"}
            )
        browser = await orchestrator.get_browser_state()
        return JSONResponse(
            {
                "success": True,
                "agent_initialized": True,
                "agent_state": state.to_dict(),
                "browser_state": browser.to_dict(),
            }
        )

    async def frame_get(request: Request) -> JSONResponse:
        frame = orchestrator.latest_frame
        if frame is None:
            return _error("No live frame available", 404)
        return JSONResponse(
            {"success": True, "frame": frame, "is_streaming": orchestrator.get_state().is_live_streaming}
        )

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        try:
            await orchestrator.shutdown()
        except Exception:
            logger.warning("Error shutting down orchestrator", exc_info=True)

    return Starlette(
        routes=[
            Route("/api/agent", agent_post, methods=["POST"]),
            Route("/api/agent", agent_get, methods=["GET"]),
            Route("/api/agent/frame", frame_get, methods=["GET"]),
            Route("/health", health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
