"""Request/response Pydantic models for the API layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.schemas.events import LogEntry
from src.schemas.test_case import ModelInfo, TestCase


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RunCreateRequest(BaseModel):
    """Request body for starting an evaluation run."""

    eval_model: str = Field(
        default="",
        description="Model that answers the test inputs. Blank = evaluatoor.toml default.",
    )
    judge_model: str = Field(
        default="",
        description="Model that scores the answers. Blank = evaluatoor.toml default.",
    )
    context_window_size: int | None = Field(
        default=None,
        description="Context window in tokens (clamped to 512..8192). None = configured value.",
    )
    temperature: float | None = Field(
        default=None,
        description="Sampling temperature (clamped to 0.0..2.0). None = configured value.",
    )
    only_pending: bool = Field(
        default=False,
        description="Only evaluate test cases without results or errors.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SummaryResponse(BaseModel):
    """Aggregate metrics over the loaded test cases."""

    total: int = 0
    pending: int = 0
    generated: int = 0
    judged: int = 0
    errors: int = 0
    average_score: float | None = None
    passed: int = 0
    needs_review: int = 0
    failed: int = 0


class TestCaseListResponse(BaseModel):
    """Snapshot of the store."""

    __test__ = False

    test_cases: list[TestCase]
    summary: SummaryResponse


class TestCaseUploadResponse(BaseModel):
    """Response after replacing the test cases."""

    __test__ = False

    count: int
    message: str = "Test cases loaded."


class ModelListResponse(BaseModel):
    models: list[ModelInfo]


class RunStatusResponse(BaseModel):
    """Response for run status queries."""

    run_id: str | None = None
    status: str = Field(description="idle | running | done | cancelled | failed")
    eval_model: str | None = None
    judge_model: str | None = None
    context_window_size: int | None = None
    temperature: float | None = None
    only_pending: bool = False
    total: int = 0
    completed: int = 0
    percent: int = 0
    created_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


class LogListResponse(BaseModel):
    """Run log entries from ``since`` onwards."""

    entries: list[LogEntry]
    next_index: int = Field(description="Pass as ?since= to fetch only newer entries")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    run_status: str = "idle"
    test_cases: int = 0
    version: str = "0.1.0"


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
