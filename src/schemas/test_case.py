"""Test case and judgment schemas.

TestCase is the single record type that flows from CSV import, through the
evaluation pipeline, into the store and back out through export.
"""

from __future__ import annotations

import uuid
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

MIN_SCORE = 0.0
MAX_SCORE = 10.0


def new_case_id() -> str:
    return str(uuid.uuid4())


class CaseStatus(StrEnum):
    """Where a test case is in the generate → judge lifecycle."""

    PENDING = "pending"
    GENERATED = "generated"
    JUDGED = "judged"
    ERROR = "error"


class TestCase(BaseModel):
    """One input/expected-output pair plus its accumulated evaluation state."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_case_id, min_length=1)
    input: str
    expected_output: str
    generated_output: str | None = None
    judgment_explanation: str | None = Field(
        default=None,
        validation_alias=AliasChoices("judgment_explanation", "judgment"),
    )
    judgment_score: float | None = Field(default=None, ge=MIN_SCORE, le=MAX_SCORE)
    error: str | None = None

    @property
    def status(self) -> CaseStatus:
        if self.error:
            return CaseStatus.ERROR
        if self.judgment_score is not None:
            return CaseStatus.JUDGED
        if self.generated_output is not None:
            return CaseStatus.GENERATED
        return CaseStatus.PENDING

    @property
    def is_pending(self) -> bool:
        return self.status == CaseStatus.PENDING

    def reset_results(self) -> TestCase:
        """Return a copy with error and all results from a previous run dropped."""
        return self.model_copy(
            update={
                "generated_output": None,
                "judgment_explanation": None,
                "judgment_score": None,
                "error": None,
            }
        )


class ExtractionStrategy(StrEnum):
    """Which extraction tier produced a judgment."""

    JSON = "json"
    EMBEDDED_JSON = "embedded_json"
    PATTERN = "pattern"


class JudgmentResult(BaseModel):
    explanation: str
    score: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    strategy: ExtractionStrategy = ExtractionStrategy.JSON


class ModelInfo(BaseModel):
    """A model installed on the generation backend."""

    id: str
    display_name: str
