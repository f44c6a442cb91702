"""Tests for the Ollama HTTP client using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from src.config import GenerationConfig, Settings
from src.errors import GenerationError
from src.ollama_client import OllamaClient


def _client(handler) -> OllamaClient:
    return OllamaClient(
        base_url="http://ollama.test/api",
        transport=httpx.MockTransport(handler),
    )


class TestListModels:
    @pytest.mark.asyncio
    async def test_returns_model_names(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            return httpx.Response(
                200,
                json={"models": [{"name": "llama3.2:latest"}, {"name": "qwen2.5:7b"}]},
            )

        async with _client(handler) as client:
            models = await client.list_models()

        assert seen == [("GET", "/api/tags")]
        assert [m.id for m in models] == ["llama3.2:latest", "qwen2.5:7b"]
        assert [m.display_name for m in models] == ["llama3.2:latest", "qwen2.5:7b"]

    @pytest.mark.asyncio
    async def test_empty_backend(self):
        async with _client(lambda request: httpx.Response(200, json={"models": []})) as client:
            assert await client.list_models() == []

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(GenerationError) as exc_info:
                await client.list_models()
        assert exc_info.value.status_code == 503
        assert str(exc_info.value).startswith("Failed to fetch models")

    @pytest.mark.asyncio
    async def test_unreachable_backend(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(GenerationError) as exc_info:
                await client.list_models()
        assert exc_info.value.status_code is None


class TestGenerate:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "Paris", "done": True})

        async with _client(handler) as client:
            text = await client.generate(
                "llama3.2",
                "What is the capital of France?",
                GenerationConfig(context_window_size=2048, temperature=0.2),
            )

        assert text == "Paris"
        assert captured["path"] == "/api/generate"
        assert captured["body"] == {
            "model": "llama3.2",
            "prompt": "What is the capital of France?",
            "stream": False,
            "options": {"num_ctx": 2048, "temperature": 0.2},
        }

    @pytest.mark.asyncio
    async def test_default_options(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["options"] = json.loads(request.content)["options"]
            return httpx.Response(200, json={"response": "ok"})

        async with _client(handler) as client:
            await client.generate("m", "p")

        assert captured["options"] == {"num_ctx": 4096, "temperature": 0.7}

    @pytest.mark.asyncio
    async def test_mapping_config_is_clamped(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["options"] = json.loads(request.content)["options"]
            return httpx.Response(200, json={"response": "ok"})

        async with _client(handler) as client:
            await client.generate("m", "p", {"contextWindowSize": 100000, "temperature": 5})

        assert captured["options"] == {"num_ctx": 8192, "temperature": 2.0}

    @pytest.mark.asyncio
    async def test_empty_response_text_is_allowed(self):
        async with _client(lambda request: httpx.Response(200, json={"response": ""})) as client:
            assert await client.generate("m", "p") == ""

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        async with _client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(GenerationError) as exc_info:
                await client.generate("missing-model", "p")
        assert exc_info.value.status_code == 404
        assert "Failed to generate response" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_response_field(self):
        async with _client(lambda request: httpx.Response(200, json={"done": True})) as client:
            with pytest.raises(GenerationError):
                await client.generate("m", "p")

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        async with _client(lambda request: httpx.Response(200, text="not json")) as client:
            with pytest.raises(GenerationError):
                await client.generate("m", "p")

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(GenerationError) as exc_info:
                await client.generate("m", "p")
        assert "Failed to reach model backend" in str(exc_info.value)


class TestFromSettings:
    def test_uses_configured_base_url(self):
        client = OllamaClient.from_settings(
            Settings(ollama_base_url="http://gpu-box:11434/api/", request_timeout=30)
        )
        assert client.base_url == "http://gpu-box:11434/api"
