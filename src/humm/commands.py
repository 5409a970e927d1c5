# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Browser commands: a closed set of immutable values.

Each command validates itself at construction and raises
InvalidCommandError for malformed input. ``parse_command`` builds a command
from the tagged request shape ``{action, url?, selector?, text?, options?}``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from .errors import InvalidCommandError

DEFAULT_SCROLL_PIXELS = 500
DEFAULT_WAIT_TIMEOUT_MS = 10_000
DEFAULT_FRAME_RATE = 2.0
DEFAULT_STREAM_QUALITY = 60
MAX_FRAME_RATE = 30.0
MAX_SCROLL_PIXELS = 50_000
VALID_SCROLL_DIRECTIONS = ("up", "down")

FrameSink = Callable[[str], Awaitable[None] | None]


def _require_text(value: Any, field_name: str, action: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidCommandError(f"'{action}' requires a non-empty {field_name}")
    return value


@dataclass(frozen=True, slots=True)
class Navigate:
    action: ClassVar[str] = "navigate"
    url: str

    def __post_init__(self) -> None:
        _require_text(self.url, "url", self.action)


@dataclass(frozen=True, slots=True)
class Click:
    action: ClassVar[str] = "click"
    selector: str

    def __post_init__(self) -> None:
        _require_text(self.selector, "selector", self.action)


@dataclass(frozen=True, slots=True)
class Input:
    action: ClassVar[str] = "input"
    selector: str
    text: str

    def __post_init__(self) -> None:
        _require_text(self.selector, "selector", self.action)
        if not isinstance(self.text, str):
            raise InvalidCommandError("'input' requires text")


@dataclass(frozen=True, slots=True)
class Extract:
    action: ClassVar[str] = "extract"
    selector: str | None = None

    def __post_init__(self) -> None:
        if self.selector is not None:
            _require_text(self.selector, "selector", self.action)


@dataclass(frozen=True, slots=True)
class Scroll:
    action: ClassVar[str] = "scroll"
    direction: str = "down"
    pixels: int = DEFAULT_SCROLL_PIXELS
    target_selector: str | None = None

    def __post_init__(self) -> None:
        direction = str(self.direction).strip().lower()
        if direction not in VALID_SCROLL_DIRECTIONS:
            raise InvalidCommandError(f"Invalid scroll direction '{self.direction}'. Allowed: up, down.")
        object.__setattr__(self, "direction", direction)
        if isinstance(self.pixels, bool) or not isinstance(self.pixels, int):
            raise InvalidCommandError(f"Scroll pixels must be an integer, got {self.pixels!r}")
        if not 0 <= self.pixels <= MAX_SCROLL_PIXELS:
            raise InvalidCommandError(f"Scroll pixels must be between 0 and {MAX_SCROLL_PIXELS}, got {self.pixels}")
        if self.target_selector is not None:
            _require_text(self.target_selector, "target selector", self.action)

    @property
    def delta_y(self) -> int:
        return self.pixels if self.direction == "down" else -self.pixels


@dataclass(frozen=True, slots=True)
class Screenshot:
    action: ClassVar[str] = "screenshot"


@dataclass(frozen=True, slots=True)
class Wait:
    action: ClassVar[str] = "wait"
    selector: str
    timeout_ms: int = DEFAULT_WAIT_TIMEOUT_MS

    def __post_init__(self) -> None:
        _require_text(self.selector, "selector", self.action)
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise InvalidCommandError(f"Wait timeout must be a positive integer (ms), got {self.timeout_ms!r}")


@dataclass(frozen=True, slots=True)
class StreamStart:
    action: ClassVar[str] = "stream_start"
    frame_rate: float = DEFAULT_FRAME_RATE
    sink: FrameSink | None = None
    quality: int = DEFAULT_STREAM_QUALITY

    def __post_init__(self) -> None:
        if isinstance(self.frame_rate, bool) or not isinstance(self.frame_rate, (int, float)):
            raise InvalidCommandError(f"Frame rate must be a number, got {self.frame_rate!r}")
        if not 0 < self.frame_rate <= MAX_FRAME_RATE:
            raise InvalidCommandError(f"Frame rate must be in (0, {MAX_FRAME_RATE:g}], got {self.frame_rate}")
        if isinstance(self.quality, bool) or not isinstance(self.quality, int) or not 1 <= self.quality <= 100:
            raise InvalidCommandError(f"Stream quality must be between 1 and 100, got {self.quality}")
        if self.sink is not None and not callable(self.sink):
            raise InvalidCommandError("Stream sink must be callable")


@dataclass(frozen=True, slots=True)
class StreamStop:
    action: ClassVar[str] = "stream_stop"


@dataclass(frozen=True, slots=True)
class GetViewport:
    action: ClassVar[str] = "get_viewport"


Command = Navigate | Click | Input | Extract | Scroll | Screenshot | Wait | StreamStart | StreamStop | GetViewport

COMMAND_TYPES: tuple[type, ...] = (
    Navigate,
    Click,
    Input,
    Extract,
    Scroll,
    Screenshot,
    Wait,
    StreamStart,
    StreamStop,
    GetViewport,
)

# Page-mutating commands are serialized against frame capture
MUTATING_COMMANDS: tuple[type, ...] = (Navigate, Click, Input, Scroll)

ACTIONS: dict[str, type] = {cls.action: cls for cls in COMMAND_TYPES}


def _int_option(options: Mapping[str, Any], key: str, default: int) -> int:
    value = options.get(key, default)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return value
    return value


def parse_command(request: Mapping[str, Any]) -> Command:
    """Build a command from a tagged request.

    Raises:
        InvalidCommandError: unknown action or invalid fields.
    """
    if not isinstance(request, Mapping):
        raise InvalidCommandError("Command request must be a mapping")
    action = request.get("action")
    if action not in ACTIONS:
        raise InvalidCommandError(f"Unknown command action: {action}")

    options = request.get("options") or {}
    if not isinstance(options, Mapping):
        raise InvalidCommandError("Command options must be a mapping")
    url = request.get("url")
    selector = request.get("selector")

    match action:
        case "navigate":
            return Navigate(url=url)
        case "click":
            return Click(selector=selector)
        case "input":
            return Input(selector=selector, text=request.get("text"))
        case "extract":
            return Extract(selector=selector or None)
        case "scroll":
            return Scroll(
                direction=options.get("direction", "down"),
                pixels=_int_option(options, "pixels", DEFAULT_SCROLL_PIXELS),
                target_selector=options.get("to_element") or options.get("toElement") or selector or None,
            )
        case "screenshot":
            return Screenshot()
        case "wait":
            return Wait(selector=selector, timeout_ms=_int_option(options, "timeout", DEFAULT_WAIT_TIMEOUT_MS))
        case "stream_start":
            return StreamStart(
                frame_rate=options.get("frame_rate", options.get("frameRate", DEFAULT_FRAME_RATE)),
                sink=options.get("sink") or options.get("callback"),
                quality=_int_option(options, "quality", DEFAULT_STREAM_QUALITY),
            )
        case "stream_stop":
            return StreamStop()
        case _:
            return GetViewport()
