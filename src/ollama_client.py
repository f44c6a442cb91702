"""Generation client for a locally hosted Ollama backend.

Talks to two endpoints:
    GET  {base}/tags      -> installed models
    POST {base}/generate  -> one non-streaming completion

One attempt per call. Whatever goes wrong is surfaced as GenerationError
with the backend's status text in the message, so the pipeline can record
it on the test case unmodified.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from src.config import DEFAULT_OLLAMA_BASE_URL, GenerationConfig, Settings
from src.errors import GenerationError
from src.schemas.test_case import ModelInfo

logger = structlog.get_logger(__name__)


def _status_text(response: httpx.Response) -> str:
    return response.reason_phrase or f"HTTP {response.status_code}"


class OllamaClient:
    """Async client for the Ollama HTTP API.

    Args:
        base_url: API root including the ``/api`` prefix.
        timeout: Seconds per request. None disables the client-side timeout.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> OllamaClient:
        return cls(base_url=settings.ollama_base_url, timeout=settings.request_timeout)

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_models(self) -> list[ModelInfo]:
        """Return the models installed on the backend (possibly none)."""
        try:
            response = await self._client.get("/tags")
        except httpx.HTTPError as exc:
            logger.error("list_models_unreachable", base_url=self.base_url, error=str(exc))
            raise GenerationError(f"Failed to fetch models: {exc}") from exc

        if not response.is_success:
            logger.error("list_models_failed", status=response.status_code)
            raise GenerationError(
                f"Failed to fetch models: {_status_text(response)}",
                status_code=response.status_code,
            )

        data = _json_body(response, "Failed to fetch models")
        models = data.get("models") or []
        result = [
            ModelInfo(id=m["name"], display_name=m["name"])
            for m in models
            if isinstance(m, dict) and m.get("name")
        ]
        logger.debug("models_listed", count=len(result))
        return result

    async def generate(
        self,
        model_id: str,
        prompt: str,
        config: GenerationConfig | Mapping[str, Any] | None = None,
    ) -> str:
        """Send one prompt and return the completion text."""
        options = GenerationConfig.coerce(config)
        payload = {
            "model": model_id,
            "prompt": prompt,
            "stream": False,
            "options": options.to_options(),
        }
        try:
            response = await self._client.post("/generate", json=payload)
        except httpx.HTTPError as exc:
            logger.error("generation_unreachable", model=model_id, error=str(exc))
            raise GenerationError(f"Failed to reach model backend: {exc}") from exc

        if not response.is_success:
            logger.error(
                "generation_failed",
                model=model_id,
                status=response.status_code,
                reason=_status_text(response),
            )
            raise GenerationError(
                f"Failed to generate response: {_status_text(response)}",
                status_code=response.status_code,
            )

        data = _json_body(response, "Failed to generate response")
        text = data.get("response")
        if not isinstance(text, str):
            raise GenerationError("Failed to generate response: backend returned no text")
        logger.debug("generation_completed", model=model_id, chars=len(text))
        return text


def _json_body(response: httpx.Response, context: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise GenerationError(f"{context}: invalid JSON from backend") from exc
    if not isinstance(data, dict):
        raise GenerationError(f"{context}: unexpected payload from backend")
    return data
