# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the image gateway, driven through httpx.MockTransport."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from humm.errors import ProviderError
from humm.gateways.image import (
    ImageGateway,
    ImageRequest,
    build_image_gateway,
    describe_chart_data,
    enhance_prompt,
    flux_model,
    is_chart_data,
    sdxl_model,
)

_PNG = b"\x89PNG\r\n\x1a\nfake-image-bytes"

_CHART = {
    "type": "bar",
    "title": "Revenue",
    "data": [{"label": "Q1", "value": 10}, {"label": "Q2", "value": 12}],
    "xAxis": "Quarter",
}


class _Router:
    """Answer per model id; record request bodies."""

    def __init__(self, **responses: httpx.Response):
        self._responses = responses
        self.bodies: dict[str, dict] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        for key, response in self._responses.items():
            if key in request.url.path.lower():
                self.bodies[key] = json.loads(request.content)
                return response
        return httpx.Response(404)


def _gateway(router: _Router) -> ImageGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    return ImageGateway([sdxl_model("hf", client=client), flux_model("hf", client=client)])


class TestGateway:
    async def test_primary_model_succeeds(self):
        router = _Router(stable=httpx.Response(200, content=_PNG, headers={"content-type": "image/png"}))
        result = await _gateway(router).generate(ImageRequest("a lighthouse", width=512, height=768))
        assert result.success
        assert result.provider_used == "stable-diffusion-xl (creative)"
        assert result.image_base64 == "data:image/png;base64," + base64.b64encode(_PNG).decode()
        assert result.metadata == {"dimensions": {"width": 512, "height": 768}, "format": "png", "size": len(_PNG)}
        assert "flux" not in router.bodies

    async def test_falls_back_to_flux(self):
        router = _Router(stable=httpx.Response(503), flux=httpx.Response(200, content=_PNG))
        result = await _gateway(router).generate(ImageRequest("a chart", type="chart"))
        assert result.success
        assert result.provider_used == "flux-dev (chart)"

    async def test_json_response_rejected(self):
        router = _Router(
            stable=httpx.Response(200, json={"error": "loading"}),
            flux=httpx.Response(200, json={"error": "loading"}),
        )
        result = await _gateway(router).generate(ImageRequest("x"))
        assert not result.success
        assert result.provider_used == "none"
        assert result.error.startswith("All image generation models failed: flux-dev returned JSON")

    async def test_both_fail(self):
        router = _Router(stable=httpx.Response(500), flux=httpx.Response(429))
        result = await _gateway(router).generate(ImageRequest("x"))
        assert not result.success
        assert "flux-dev API error: 429" in result.error
        assert "image_base64" not in result.to_dict()

    async def test_no_models(self):
        result = await ImageGateway().generate(ImageRequest("x"))
        assert result.error == "All image generation models failed: no image models configured"

    async def test_enhanced_prompt_sent(self):
        router = _Router(stable=httpx.Response(200, content=_PNG))
        await _gateway(router).generate(ImageRequest("sunset", style="financial", steps=25, seed=7))
        body = router.bodies["stable"]
        assert body["inputs"].startswith("sunset, high quality illustration")
        assert "financial theme" in body["inputs"]
        assert body["parameters"]["num_inference_steps"] == 25
        assert body["parameters"]["seed"] == 7


class TestModels:
    def test_sdxl_defaults(self):
        params = sdxl_model("hf").parameters(ImageRequest("x", seed=3))
        assert params == {"num_inference_steps": 20, "guidance_scale": 7.5, "width": 1024, "height": 1024, "seed": 3}

    def test_flux_omits_seed(self):
        params = flux_model("hf").parameters(ImageRequest("x", seed=3))
        assert "seed" not in params
        assert (params["num_inference_steps"], params["guidance_scale"]) == (15, 3.5)

    async def test_empty_body(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"")))
        with pytest.raises(ProviderError, match="empty image"):
            await sdxl_model("hf", client=client).render("x", ImageRequest("x"))

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderError, match="request failed"):
            await flux_model("hf", client=client).render("x", ImageRequest("x"))


class TestPromptEnhancement:
    def test_chart_with_data(self):
        prompt = enhance_prompt(ImageRequest("Revenue", type="chart", data=_CHART))
        assert "Data visualization requirements" in prompt
        assert "Q1: 10, Q2: 12" in prompt

    def test_chart_without_data(self):
        prompt = enhance_prompt(ImageRequest("Revenue", type="graph", style="technical"))
        assert "candlesticks" in prompt

    def test_diagram(self):
        assert "technical diagram style" in enhance_prompt(ImageRequest("flow", type="diagram", style="technical"))

    def test_chart_data_detection(self):
        assert is_chart_data(_CHART)
        assert not is_chart_data({"type": "bar"})
        assert not is_chart_data(None)

    def test_describe_chart_data_axes(self):
        text = describe_chart_data(_CHART)
        assert "X-axis: Quarter" in text
        assert "Y-axis: Values" in text


class TestBuilder:
    def test_without_key(self):
        assert build_image_gateway().models == ()

    def test_with_key(self):
        assert [m.name for m in build_image_gateway("hf").models] == ["stable-diffusion-xl", "flux-dev"]
