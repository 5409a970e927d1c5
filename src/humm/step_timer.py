# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Task step timer for latency tracking and failure diagnostics.

Created before the task handler runs so it survives a handler exception and
can say which step was active when the task failed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(slots=True)
class StepRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


_HINTS = {
    "resolve_url": "Could not choose a site for the query. Pass target_url explicitly.",
    "navigate": "Page may be unreachable or slow to load. Check the URL and network access.",
    "extract": "Page content could not be read. The selector may not exist on this page.",
    "analyze": "Language-model analysis failed. Check GROQ_API_KEY / HUGGINGFACE_API_KEY.",
    "screenshot": "Screenshot capture failed. The browser may have crashed.",
    "stream_start": "Live view could not start. Retry without enable_live_view.",
    "settle": "Interrupted while waiting for the page to settle.",
    "viewport": "Viewport query failed. The browser may have crashed.",
    "plan_image": "Image request analysis failed.",
    "render_image": "Image models failed. Check HUGGINGFACE_API_KEY or retry later.",
}


class StepTimer:
    """Track handler step transitions.

    A step name may recur (a handler that extracts twice); elapsed times for
    the same name are summed.
    """

    __slots__ = ("_steps", "_current")

    def __init__(self) -> None:
        self._steps: list[StepRecord] = []
        self._current: StepRecord | None = None

    def step(self, name: str) -> None:
        """End previous step + start new step."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._steps.append(self._current)
        self._current = StepRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current step. Call on success or error."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._steps.append(self._current)
            self._current = None

    @property
    def current_step(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def last_step(self) -> str | None:
        """Active step, else the most recently finished one."""
        if self._current is not None:
            return self._current.name
        return self._steps[-1].name if self._steps else None

    def elapsed_per_step(self) -> dict[str, float]:
        """{step_name: elapsed_ms} in first-seen order, including the running step."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._steps:
            result[s.name] = round(result.get(s.name, 0.0) + s.elapsed_ms, 1)
        if self._current is not None:
            running = round((now - self._current.start_ns) / 1e6, 1)
            result[self._current.name] = round(result.get(self._current.name, 0.0) + running, 1)
        return result

    @staticmethod
    def hint_for_step(step: str) -> str:
        return _HINTS.get(step, f"Failed during '{step}' step.")

    def failure_report(self) -> dict:
        """Which step failed and what to try next."""
        failed = self.last_step or "dispatch"
        return {
            "failed_step": failed,
            "hint": self.hint_for_step(failed),
            "step_timings": self.elapsed_per_step(),
        }
