# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Language-model gateway with ordered provider fallback.

``LanguageModelGateway.generate`` never raises. Providers are tried in
order (Groq chat models first, then Hugging Face text generation); the
first non-empty answer wins. When every provider fails the gateway returns
a canned, style-matched reply with low confidence.

The caller's communication style is detected from the prompt unless the
context pins one, and shapes both the system prompt and the final cleanup.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from ..errors import ProviderError

logger = logging.getLogger(__name__)

STYLES = ("casual", "professional", "technical", "friendly")

GROQ_MODELS = ("llama-3.1-8b-instant", "llama-3.3-70b-versatile")
HF_INFERENCE_URL = "https://api-inference.huggingface.co/models"
HF_TEXT_MODEL = "gpt2"

FALLBACK_PROVIDER = "fallback"
FALLBACK_CONFIDENCE = 60

# Replies shorter than this are treated as a refusal/glitch and skipped
_MIN_REPLY_CHARS = 20

_TECHNICAL_TERMS = ("rsi", "macd", "fibonacci", "bollinger", "volatility", "correlation", "algorithm", "selector", "json")
_CASUAL_TERMS = ("hey", "yo ", "sup", "gonna", "wanna", "lol", "btw", "thx")
_PROFESSIONAL_TERMS = ("analyze", "assessment", "evaluation", "recommendation", "portfolio", "strategy", "summary")
_FRIENDLY_TERMS = ("please", "thanks", "help", "explain", "understand", "learn")

_BASE_PERSONA = (
    "You are the assistant of a web research agent that browses pages on the user's behalf. "
    "You give accurate, grounded answers based on the material you are given."
)

_STYLE_PROMPTS = {
    "casual": "Be conversational and use everyday language while staying informative.",
    "professional": "Keep a precise, structured, professional tone.",
    "technical": "Focus on technical detail and concrete, data-driven statements.",
    "friendly": "Be warm and patient, and explain things step by step.",
}

_ANALYSIS_PROMPTS = {
    "technical": "Focus on patterns, indicators and measurable signals.",
    "fundamental": "Emphasize underlying facts, figures and their significance.",
    "sentiment": "Assess tone, mood and how the content is likely to be received.",
    "risk": "Point out risks, caveats and what could go wrong.",
    "strategy": "Give actionable recommendations.",
}

_FALLBACK_REPLIES = {
    "casual": "My language models are offline right now, so I can't add commentary. The raw results are still available.",
    "professional": (
        "Language-model analysis is currently unavailable. The collected results are provided without commentary."
    ),
    "technical": "All language-model providers failed. Returning collected data without model analysis.",
    "friendly": "Sorry, I couldn't reach my language models just now. Your results are still here for you to look at.",
}

_ARTIFACT_PREFIX_RE = re.compile(r"^\s*(?:assistant|ai|response)\s*:\s*", re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True, slots=True)
class GenerationContext:
    """Optional hints that shape a generation."""

    user_style: str | None = None
    analysis_type: str | None = None
    extra_context: str | None = None
    previous_messages: tuple[str, ...] = ()

    @classmethod
    def coerce(cls, value: GenerationContext | Mapping[str, Any] | None) -> GenerationContext:
        if value is None:
            return cls()
        if isinstance(value, GenerationContext):
            return value
        return cls(
            user_style=value.get("user_style"),
            analysis_type=value.get("analysis_type"),
            extra_context=value.get("extra_context"),
            previous_messages=tuple(value.get("previous_messages") or ()),
        )


@dataclass(frozen=True, slots=True)
class GatewayResponse:
    text: str
    confidence: int  # 0-100
    provider_used: str
    latency_ms: float
    adapted_style: str

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "provider_used": self.provider_used,
            "latency_ms": self.latency_ms,
            "adapted_style": self.adapted_style,
        }


@runtime_checkable
class TextProvider(Protocol):
    """A language-model backend. ``complete`` raises ProviderError on failure."""

    name: str
    confidence: int

    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


# ── Prompt shaping ────────────────────────────────────────────────


def detect_style(message: str) -> str:
    """Guess the caller's communication style from keywords. Default: professional."""
    lower = message.lower()
    if any(term in lower for term in _TECHNICAL_TERMS):
        return "technical"
    if any(term in lower for term in _CASUAL_TERMS):
        return "casual"
    if any(term in lower for term in _PROFESSIONAL_TERMS):
        return "professional"
    if any(term in lower for term in _FRIENDLY_TERMS):
        return "friendly"
    return "professional"


def build_system_prompt(style: str, analysis_type: str | None = None) -> str:
    prompt = f"{_BASE_PERSONA} {_STYLE_PROMPTS.get(style, _STYLE_PROMPTS['professional'])}"
    if analysis_type in _ANALYSIS_PROMPTS:
        prompt += f" {_ANALYSIS_PROMPTS[analysis_type]}"
    prompt += (
        "\n\nGuidelines:\n"
        "- Be accurate; say so when the material does not answer the question\n"
        "- Keep responses concise but informative\n"
        "- Adapt to the user's communication style"
    )
    return prompt


def build_user_prompt(message: str, context: GenerationContext) -> str:
    prompt = message
    if context.extra_context:
        prompt += f"\n\nContext: {context.extra_context}"
    if context.previous_messages:
        prompt += f"\n\nPrevious conversation context: {' → '.join(context.previous_messages[-2:])}"
    return prompt


def clean_response(text: str) -> str:
    """Strip role prefixes and excess blank lines."""
    cleaned = _ARTIFACT_PREFIX_RE.sub("", text.strip())
    return _BLANK_LINES_RE.sub("\n\n", cleaned).strip()


# ── Providers ─────────────────────────────────────────────────────


class GroqProvider:
    """Groq chat completions, trying each model in order."""

    name = "groq"
    confidence = 90

    def __init__(self, api_key: str, *, models: Sequence[str] = GROQ_MODELS, client: Any = None) -> None:
        self._api_key = api_key
        self._models = tuple(models)
        self._client = client

    def _get_client(self):
        if self._client is None:
            from groq import AsyncGroq

            self._client = AsyncGroq(api_key=self._api_key)
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        client = self._get_client()
        last_error: Exception | None = None
        for model in self._models:
            try:
                completion = await client.chat.completions.create(
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    model=model,
                    temperature=0.7,
                    max_tokens=500,
                    top_p=0.9,
                )
            except Exception as exc:
                logger.warning("Groq model %s failed: %s", model, exc)
                last_error = exc
                continue
            content = completion.choices[0].message.content if completion.choices else None
            if content and len(content.strip()) > _MIN_REPLY_CHARS:
                return content.strip()
            logger.info("Groq model %s returned an unusable reply", model)
        raise ProviderError(f"All Groq models failed: {last_error or 'empty replies'}", provider=self.name)


class HuggingFaceTextProvider:
    """Hugging Face Inference API text generation."""

    name = "huggingface"
    confidence = 75

    def __init__(
        self,
        token: str,
        *,
        model: str = HF_TEXT_MODEL,
        base_url: str = HF_INFERENCE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._token = token
        self._model = model
        self._url = f"{base_url.rstrip('/')}/{model}"
        self._client = client
        self._timeout = timeout

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "inputs": f"{system_prompt}\n\nUser: {user_prompt}\n\nAssistant:",
            "parameters": {"max_new_tokens": 150, "temperature": 0.8, "top_p": 0.9, "return_full_text": False},
        }
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=payload, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self._url, json=payload, headers=headers)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"Hugging Face request failed: {exc}", provider=self.name) from exc

        if isinstance(body, list) and body and isinstance(body[0], dict):
            text = body[0].get("generated_text") or ""
        elif isinstance(body, dict):
            if body.get("error"):
                raise ProviderError(f"Hugging Face error: {body['error']}", provider=self.name)
            text = body.get("generated_text") or ""
        else:
            text = ""
        if not text.strip():
            raise ProviderError("Hugging Face returned no text", provider=self.name)
        return text.strip()


# ── Gateway ───────────────────────────────────────────────────────


class LanguageModelGateway:
    """Ordered provider chain collapsing to a canned reply."""

    def __init__(self, providers: Sequence[TextProvider] = ()) -> None:
        self._providers = tuple(providers)

    @property
    def providers(self) -> tuple[TextProvider, ...]:
        return self._providers

    async def generate(
        self,
        prompt: str,
        context: GenerationContext | Mapping[str, Any] | None = None,
    ) -> GatewayResponse:
        """Answer *prompt*. Never raises."""
        started = time.monotonic()
        ctx = GenerationContext.coerce(context)
        style = ctx.user_style if ctx.user_style in STYLES else detect_style(prompt)
        system_prompt = build_system_prompt(style, ctx.analysis_type)
        user_prompt = build_user_prompt(prompt, ctx)

        for provider in self._providers:
            try:
                text = clean_response(await provider.complete(system_prompt, user_prompt))
            except Exception as exc:
                logger.warning("Language-model provider %s failed: %s", provider.name, exc)
                continue
            if not text:
                logger.info("Language-model provider %s returned empty text", provider.name)
                continue
            return GatewayResponse(
                text=text,
                confidence=provider.confidence,
                provider_used=provider.name,
                latency_ms=round((time.monotonic() - started) * 1000, 1),
                adapted_style=style,
            )

        logger.warning("All language-model providers failed; using canned reply")
        return self.fallback(style, started)

    @staticmethod
    def fallback(style: str, started: float | None = None) -> GatewayResponse:
        elapsed = (time.monotonic() - started) * 1000 if started is not None else 0.0
        return GatewayResponse(
            text=_FALLBACK_REPLIES.get(style, _FALLBACK_REPLIES["professional"]),
            confidence=FALLBACK_CONFIDENCE,
            provider_used=FALLBACK_PROVIDER,
            latency_ms=round(elapsed, 1),
            adapted_style=style,
        )

    async def health_check(self) -> dict[str, bool]:
        """Probe every provider with a tiny prompt."""
        results: dict[str, bool] = {}
        for provider in self._providers:
            try:
                await provider.complete("Reply with OK.", "Health check: reply with a short sentence.")
                results[provider.name] = True
            except Exception:
                logger.info("Health check failed for %s", provider.name, exc_info=True)
                results[provider.name] = False
        return results


def build_language_model_gateway(groq_api_key: str = "", huggingface_api_key: str = "") -> LanguageModelGateway:
    """Gateway over the providers that have credentials configured."""
    providers: list[TextProvider] = []
    if groq_api_key:
        providers.append(GroqProvider(groq_api_key))
    if huggingface_api_key:
        providers.append(HuggingFaceTextProvider(huggingface_api_key))
    if not providers:
        logger.warning("No language-model credentials configured; every answer will be the canned fallback")
    return LanguageModelGateway(providers)
