# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Image-synthesis gateway.

The request prompt is enhanced for its type and style, then sent to the
primary model (SDXL) and, if that fails, to the alternate model (FLUX).
``ImageGateway.generate`` never raises; exhausting both models yields an
unsuccessful ImageResult.
"""

from __future__ import annotations

import base64
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ..errors import ProviderError
from .llm import HF_INFERENCE_URL

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("chart", "graph", "diagram", "visualization", "creative", "analysis")
IMAGE_STYLES = ("financial", "technical", "minimal", "detailed", "professional")

DEFAULT_SIZE = 1024

_CHART_STYLES = {
    "financial": "professional financial chart, clean lines, business colors, grid background",
    "technical": "technical analysis chart, candlesticks, indicators, trading view style",
    "minimal": "minimal design, clean lines, simple colors, white background",
    "detailed": "detailed chart with annotations, labels, comprehensive data visualization",
    "professional": "corporate style, professional color scheme, clear typography",
}


@dataclass(frozen=True, slots=True)
class ImageRequest:
    prompt: str
    type: str = "creative"
    style: str = "professional"
    width: int = DEFAULT_SIZE
    height: int = DEFAULT_SIZE
    steps: int | None = None
    guidance: float | None = None
    seed: int | None = None
    data: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class ImageResult:
    success: bool
    prompt: str
    provider_used: str
    generation_time_ms: float
    image_base64: str | None = None  # data URI
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "success": self.success,
            "prompt": self.prompt,
            "provider_used": self.provider_used,
            "generation_time_ms": self.generation_time_ms,
        }
        if self.image_base64 is not None:
            d["image_base64"] = self.image_base64
        if self.error is not None:
            d["error"] = self.error
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d


class ImageModel(Protocol):
    name: str

    async def render(self, prompt: str, request: ImageRequest) -> bytes: ...


# ── Prompt enhancement ────────────────────────────────────────────


def enhance_chart_prompt(prompt: str, style: str | None = None) -> str:
    modifier = _CHART_STYLES.get(style or "professional", _CHART_STYLES["professional"])
    return (
        f"{prompt}, high quality chart visualization, professional design, clean and readable, "
        f"{modifier}, vector style, infographic quality"
    )


def enhance_visualization_prompt(prompt: str, style: str | None = None) -> str:
    addition = "technical diagram style" if style == "technical" else "business presentation style"
    return f"{prompt}, professional diagram, clear visualization, informative design, {addition}, high quality, vector graphics style"


def enhance_creative_prompt(prompt: str, style: str | None = None) -> str:
    addition = "financial theme, business context" if style == "financial" else "modern clean design"
    return f"{prompt}, high quality illustration, professional design, {addition}, detailed, artistic quality"


def is_chart_data(data: Mapping[str, Any] | None) -> bool:
    return (
        data is not None
        and isinstance(data.get("type"), str)
        and isinstance(data.get("title"), str)
        and isinstance(data.get("data"), list)
    )


def describe_chart_data(data: Mapping[str, Any]) -> str:
    points = ", ".join(
        f"{item.get('label')}: {item.get('value')}" for item in data["data"] if isinstance(item, Mapping)
    )
    return (
        f"Chart type: {data['type']}\n"
        f"Title: {data['title']}\n"
        f"Data points: {points}\n"
        f"X-axis: {data.get('xAxis') or data.get('x_axis') or 'Categories'}\n"
        f"Y-axis: {data.get('yAxis') or data.get('y_axis') or 'Values'}"
    )


def enhance_prompt(request: ImageRequest) -> str:
    """Final model prompt for *request*, chosen by image type."""
    if request.type in ("chart", "graph"):
        if is_chart_data(request.data):
            return (
                f"{request.prompt}\n\nData visualization requirements:\n{describe_chart_data(request.data)}"
                f"\n\nStyle: Professional financial chart, clean design, {request.style or 'minimal'} style"
            )
        return enhance_chart_prompt(request.prompt, request.style)
    if request.type in ("diagram", "visualization"):
        return enhance_visualization_prompt(request.prompt, request.style)
    return enhance_creative_prompt(request.prompt, request.style)


# ── Models ────────────────────────────────────────────────────────


class HuggingFaceImageModel:
    """Text-to-image through the Hugging Face Inference API."""

    def __init__(
        self,
        name: str,
        model_id: str,
        token: str,
        *,
        default_steps: int,
        default_guidance: float,
        send_seed: bool = True,
        base_url: str = HF_INFERENCE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.name = name
        self.model_id = model_id
        self._token = token
        self._default_steps = default_steps
        self._default_guidance = default_guidance
        self._send_seed = send_seed
        self._url = f"{base_url.rstrip('/')}/{model_id}"
        self._client = client
        self._timeout = timeout

    def parameters(self, request: ImageRequest) -> dict[str, Any]:
        params: dict[str, Any] = {
            "num_inference_steps": request.steps or self._default_steps,
            "guidance_scale": request.guidance or self._default_guidance,
            "width": request.width,
            "height": request.height,
        }
        if self._send_seed and request.seed is not None:
            params["seed"] = request.seed
        return params

    async def render(self, prompt: str, request: ImageRequest) -> bytes:
        payload = {"inputs": prompt, "parameters": self.parameters(request)}
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=payload, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} request failed: {exc}", provider=self.name) from exc
        if resp.status_code >= 400:
            raise ProviderError(
                f"{self.name} API error: {resp.status_code} {resp.reason_phrase}", provider=self.name
            )
        if resp.headers.get("content-type", "").startswith("application/json"):
            raise ProviderError(f"{self.name} returned JSON instead of an image: {resp.text[:200]}", provider=self.name)
        if not resp.content:
            raise ProviderError(f"{self.name} returned an empty image", provider=self.name)
        return resp.content


def sdxl_model(token: str, **kwargs: Any) -> HuggingFaceImageModel:
    return HuggingFaceImageModel(
        "stable-diffusion-xl",
        "stabilityai/stable-diffusion-xl-base-1.0",
        token,
        default_steps=20,
        default_guidance=7.5,
        **kwargs,
    )


def flux_model(token: str, **kwargs: Any) -> HuggingFaceImageModel:
    return HuggingFaceImageModel(
        "flux-dev",
        "black-forest-labs/FLUX.1-dev",
        token,
        default_steps=15,
        default_guidance=3.5,
        send_seed=False,
        **kwargs,
    )


# ── Gateway ───────────────────────────────────────────────────────


class ImageGateway:
    """Primary then alternate image model."""

    def __init__(self, models: Sequence[ImageModel] = ()) -> None:
        self._models = tuple(models)

    @property
    def models(self) -> tuple[ImageModel, ...]:
        return self._models

    async def generate(self, request: ImageRequest) -> ImageResult:
        """Render *request*. Never raises."""
        started = time.monotonic()
        prompt = enhance_prompt(request)
        last_error = "no image models configured"

        for model in self._models:
            try:
                image = await model.render(prompt, request)
            except Exception as exc:
                logger.warning("Image model %s failed: %s", model.name, exc)
                last_error = str(exc) or type(exc).__name__
                continue
            elapsed = round((time.monotonic() - started) * 1000, 1)
            logger.info("Image generated by %s in %.0fms (%d bytes)", model.name, elapsed, len(image))
            return ImageResult(
                success=True,
                prompt=prompt,
                provider_used=f"{model.name} ({request.type})",
                generation_time_ms=elapsed,
                image_base64="data:image/png;base64," + base64.b64encode(image).decode("ascii"),
                metadata={
                    "dimensions": {"width": request.width, "height": request.height},
                    "format": "png",
                    "size": len(image),
                },
            )

        return ImageResult(
            success=False,
            prompt=prompt,
            provider_used="none",
            generation_time_ms=round((time.monotonic() - started) * 1000, 1),
            error=f"All image generation models failed: {last_error}",
        )


def build_image_gateway(huggingface_api_key: str = "") -> ImageGateway:
    if not huggingface_api_key:
        logger.warning("HUGGINGFACE_API_KEY not set; image generation will fail")
        return ImageGateway()
    return ImageGateway([sdxl_model(huggingface_api_key), flux_model(huggingface_api_key)])
