# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Humm: one headless browser session driven by observable commands.

A BrowserController executes commands (navigate, click, input, extract,
scroll, screenshot, wait, stream start/stop, viewport) against a single
Playwright page and reports every outcome as an Observation. A
TaskOrchestrator sequences those commands into research, scrape, navigate,
monitor, live-demo and image-generation tasks.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Viewport:
    """Visible page area in CSS pixels."""

    width: int
    height: int
    scale: float = 1.0

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height, "scale": self.scale}


@dataclass(frozen=True, slots=True)
class StreamStatus:
    """Snapshot of the streaming capture loop."""

    is_streaming: bool
    frame_rate: float = 0.0
    quality: int = 0

    def to_dict(self) -> dict:
        return {"is_streaming": self.is_streaming, "frame_rate": self.frame_rate, "quality": self.quality}


STREAM_IDLE = StreamStatus(is_streaming=False)


@dataclass(frozen=True, slots=True)
class Observation:
    """Uniform result record of one command execution or task step.

    Immutable once built. ``data`` is stored as a read-only mapping. A failed
    observation always carries a non-empty ``error``.
    """

    success: bool
    timestamp: float = field(default_factory=time.time)
    data: Mapping[str, Any] | None = None
    screenshot: str | None = None  # data URI: "data:image/png;base64,..."
    page_title: str | None = None
    url: str | None = None
    content: str | None = None
    error: str | None = None
    viewport: Viewport | None = None
    stream: StreamStatus | None = None

    def __post_init__(self) -> None:
        if self.data is not None and not isinstance(self.data, MappingProxyType):
            object.__setattr__(self, "data", MappingProxyType(dict(self.data)))
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Unknown error")

    @classmethod
    def failure(cls, error: str | BaseException, **kwargs: Any) -> Observation:
        """Build a failed observation from an error message or exception."""
        message = str(error) if not isinstance(error, str) else error
        if not message and isinstance(error, BaseException):
            message = type(error).__name__
        return cls(success=False, error=message or "Unknown error", **kwargs)

    @property
    def payload(self) -> Mapping[str, Any]:
        """``data`` or an empty mapping."""
        return self.data if self.data is not None else _EMPTY

    def to_dict(self) -> dict:
        """JSON-ready representation; ``None`` fields are omitted."""
        d: dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.data is not None:
            d["data"] = _plain(self.data)
        for name in ("screenshot", "page_title", "url", "content", "error"):
            value = getattr(self, name)
            if value is not None:
                d[name] = value
        if self.viewport is not None:
            d["viewport"] = self.viewport.to_dict()
        if self.stream is not None:
            d["stream"] = self.stream.to_dict()
        return d


def _plain(value: Any) -> Any:
    """Recursively convert read-only mappings and dataclass-like values to JSON types."""
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value
