# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Humm exception hierarchy.

All Humm-specific errors inherit from HummError. Three families mirror the
three layers that raise them:

- InitializationError: browser session acquisition (may reach the caller)
- CommandError: single browser command failures (converted to failed
  observations at the controller boundary, never raised past it)
- TaskError: task-level failures (converted to failed AgentResults)

GatewayError covers language-model and image providers; gateways degrade
through their provider lists before anything is reported.
"""

from __future__ import annotations


class HummError(Exception):
    """Base exception for all Humm errors."""


# ── Session lifecycle ─────────────────────────────────────────────


class InitializationError(HummError):
    """Browser launch or context creation failed, or session already exists."""


class AutomationDisabledError(InitializationError):
    """Browser automation is administratively disabled for this deployment."""


# ── Commands ──────────────────────────────────────────────────────


class CommandError(HummError):
    """A single browser command failed."""


class InvalidCommandError(CommandError):
    """Command request is malformed (unknown action, missing field, bad value)."""


class NavigationError(CommandError):
    """Page navigation failed."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class InteractionError(CommandError):
    """Click or input target missing or not interactable."""

    def __init__(self, message: str, *, selector: str = "") -> None:
        super().__init__(message)
        self.selector = selector


class ElementNotFoundError(CommandError):
    """Selector matched no element."""

    def __init__(self, message: str, *, selector: str = "") -> None:
        super().__init__(message)
        self.selector = selector


class ExtractionError(CommandError):
    """Content extraction failed."""


class WaitTimeoutError(CommandError, TimeoutError):
    """Selector did not appear within the wait bound."""

    def __init__(self, message: str, *, selector: str = "", timeout_ms: int = 0) -> None:
        super().__init__(message)
        self.selector = selector
        self.timeout_ms = timeout_ms


# ── Tasks ─────────────────────────────────────────────────────────


class TaskError(HummError):
    """A task could not be completed."""


class MissingParameterError(TaskError):
    """Task is missing a field its type requires (e.g. target URL)."""

    def __init__(self, message: str, *, parameter: str = "") -> None:
        super().__init__(message)
        self.parameter = parameter


class InvalidTaskError(TaskError):
    """Task payload is malformed (unknown type, wrong field types)."""


class DuplicateTaskError(TaskError):
    """Task id was already used by this orchestrator."""


class OrchestratorStateError(TaskError):
    """Orchestrator is not in a state that accepts tasks."""


class ImageGenerationError(TaskError):
    """Image gateway reported failure."""


# ── Gateways ──────────────────────────────────────────────────────


class GatewayError(HummError):
    """Language-model or image provider exhausted all fallbacks."""


class ProviderError(GatewayError):
    """A single provider failed; the gateway moves on to the next one."""

    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider
