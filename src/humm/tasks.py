# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Task, result and state records for the orchestrator."""

from __future__ import annotations

import dataclasses
import secrets
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from . import Observation, _plain
from .errors import InvalidTaskError


class TaskType(str, Enum):
    RESEARCH = "research"
    SCRAPE = "scrape"
    NAVIGATE = "navigate"
    MONITOR = "monitor"
    LIVE_DEMO = "live_demo"
    GENERATE_IMAGE = "generate_image"


def new_task_id() -> str:
    return f"task_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


@dataclass(frozen=True, slots=True)
class Task:
    type: TaskType
    description: str = ""
    user_query: str = ""
    target_url: str | None = None
    selector: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    enable_live_view: bool = False
    id: str = field(default_factory=new_task_id)

    def __post_init__(self) -> None:
        if not isinstance(self.type, TaskType):
            try:
                object.__setattr__(self, "type", TaskType(self.type))
            except ValueError:
                raise InvalidTaskError(f"Unknown task type: {self.type}") from None
        if not self.id:
            object.__setattr__(self, "id", new_task_id())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "user_query": self.user_query,
            "target_url": self.target_url,
            "selector": self.selector,
            "parameters": _plain(self.parameters),
            "enable_live_view": self.enable_live_view,
        }


@dataclass(frozen=True, slots=True)
class AgentResult:
    task_id: str
    success: bool
    summary: str
    started_at: float
    execution_time_ms: float
    observations: tuple[Observation, ...] = ()
    data: Mapping[str, Any] | None = None
    step_timings: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "task_id": self.task_id,
            "success": self.success,
            "summary": self.summary,
            "started_at": self.started_at,
            "execution_time_ms": self.execution_time_ms,
            "observations": [o.to_dict() for o in self.observations],
            "step_timings": dict(self.step_timings),
        }
        if self.data is not None:
            d["data"] = _plain(self.data)
        return d


@dataclass(slots=True)
class AgentState:
    is_active: bool = False
    current_task: Task | None = None
    browser_ready: bool = False
    last_activity: float = field(default_factory=time.time)
    is_live_streaming: bool = False
    current_url: str | None = None

    def copy(self) -> AgentState:
        return dataclasses.replace(self)

    def to_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "current_task": self.current_task.to_dict() if self.current_task else None,
            "browser_ready": self.browser_ready,
            "last_activity": self.last_activity,
            "is_live_streaming": self.is_live_streaming,
            "current_url": self.current_url,
        }


class ObservationLog:
    """Append-only, execution-ordered observations of one task.

    Timestamps never decrease: an observation stamped earlier than its
    predecessor (wall clock stepped back) is re-stamped with the
    predecessor's time.
    """

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[Observation] = []

    def append(self, observation: Observation) -> Observation:
        if self._items and observation.timestamp < self._items[-1].timestamp:
            observation = dataclasses.replace(observation, timestamp=self._items[-1].timestamp)
        self._items.append(observation)
        return observation

    def successful(self) -> list[Observation]:
        return [o for o in self._items if o.success]

    def snapshot(self) -> tuple[Observation, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._items)
