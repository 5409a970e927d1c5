# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Environment-driven configuration.

Leaf module: apart from the command limits, only ``browser_session`` is
imported (for BrowserConfig), and only lazily, so logging can be configured
from HummConfig before anything else loads.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .commands import MAX_FRAME_RATE

if TYPE_CHECKING:
    from .browser_session import BrowserConfig

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_FRAME_RATE = 2.0
DEFAULT_STREAM_QUALITY = 60
DEFAULT_SETTLE_DELAY = 2.0


def _flag(env: Mapping[str, str], *names: str, default: bool = False) -> bool:
    for name in names:
        raw = env.get(name, "").strip().lower()
        if raw:
            return raw in _TRUTHY
    return default


def _number(env: Mapping[str, str], name: str, default: float, cast=float, valid=None):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using default %s", name, raw, default)
        return default
    if valid is not None and not valid(value):
        logger.warning("Ignoring out-of-range %s=%r, using default %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True, slots=True)
class HummConfig:
    """Process configuration resolved once at startup."""

    automation_disabled: bool = False
    headless: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    frame_rate: float = DEFAULT_FRAME_RATE
    stream_quality: int = DEFAULT_STREAM_QUALITY
    settle_delay: float = DEFAULT_SETTLE_DELAY
    groq_api_key: str = ""
    huggingface_api_key: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> HummConfig:
        """Read configuration from environment variables.

        ``DISABLE_BROWSER_AUTOMATION=true`` (or the ``HUMM_``-prefixed form)
        hard-disables browser automation.
        """
        env = os.environ if env is None else env
        return cls(
            automation_disabled=_flag(env, "HUMM_DISABLE_BROWSER_AUTOMATION", "DISABLE_BROWSER_AUTOMATION"),
            headless=_flag(env, "HUMM_HEADLESS", default=True),
            timeout_ms=_number(env, "HUMM_TIMEOUT_MS", DEFAULT_TIMEOUT_MS, int, lambda v: v > 0),
            frame_rate=_number(env, "HUMM_FRAME_RATE", DEFAULT_FRAME_RATE, valid=lambda v: 0 < v <= MAX_FRAME_RATE),
            stream_quality=_number(env, "HUMM_STREAM_QUALITY", DEFAULT_STREAM_QUALITY, int, lambda v: 1 <= v <= 100),
            settle_delay=_number(env, "HUMM_SETTLE_DELAY", DEFAULT_SETTLE_DELAY, valid=lambda v: 0 <= v < float("inf")),
            groq_api_key=env.get("GROQ_API_KEY", "").strip(),
            huggingface_api_key=env.get("HUGGINGFACE_API_KEY", "").strip(),
            log_level=env.get("HUMM_LOG_LEVEL", "INFO").strip() or "INFO",
            log_json=_flag(env, "HUMM_LOG_JSON"),
        )

    def browser_config(self) -> BrowserConfig:
        from .browser_session import BrowserConfig

        return BrowserConfig(
            headless=self.headless,
            timeout_ms=self.timeout_ms,
            automation_disabled=self.automation_disabled,
            stream_quality=self.stream_quality,
        )
