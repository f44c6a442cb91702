"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable

import pytest

from src.errors import GenerationError
from src.schemas.test_case import ModelInfo, TestCase

# Ensure tests don't accidentally call a real backend
os.environ.setdefault("OLLAMA_BASE_URL", "http://ollama.invalid/api")
os.environ.setdefault("API_CORS_ORIGINS", "")

JUDGE_REPLY = '{"explanation": "Matches the expected answer.", "score": 9}'


class FakeClient:
    """In-memory stand-in for OllamaClient.

    ``responder(model_id, prompt)`` returns the reply text or raises. Every
    call is recorded in ``calls`` as (model_id, prompt, config).
    """

    base_url = "http://fake/api"

    def __init__(
        self,
        responder: Callable[[str, str], str] | None = None,
        models: list[str] | None = None,
        models_error: GenerationError | None = None,
    ) -> None:
        self.responder = responder or default_responder
        self.models = models if models is not None else ["llama3.2", "qwen2.5"]
        self.models_error = models_error
        self.calls: list[tuple[str, str, object]] = []
        self.closed = False

    async def generate(self, model_id, prompt, config=None) -> str:
        self.calls.append((model_id, prompt, config))
        return self.responder(model_id, prompt)

    async def list_models(self) -> list[ModelInfo]:
        if self.models_error is not None:
            raise self.models_error
        return [ModelInfo(id=name, display_name=name) for name in self.models]

    async def aclose(self) -> None:
        self.closed = True


def default_responder(model_id: str, prompt: str) -> str:
    if model_id == "judge":
        return JUDGE_REPLY
    return f"answer to: {prompt}"


def make_cases(count: int) -> list[TestCase]:
    return [
        TestCase(id=f"tc-{i}", input=f"question {i}", expected_output=f"answer {i}")
        for i in range(1, count + 1)
    ]


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture()
def cases() -> list[TestCase]:
    return make_cases(3)


@pytest.fixture()
def make_client() -> type[FakeClient]:
    return FakeClient


@pytest.fixture()
def make_test_cases() -> Callable[[int], list[TestCase]]:
    return make_cases
