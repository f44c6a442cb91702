"""Error taxonomy for the evaluation subsystem.

Nothing here is fatal to the process. Import and selection errors stop the
action that raised them; generation errors are recorded on the affected
test case and the run moves on.
"""

from __future__ import annotations


class EvaluatoorError(Exception):
    """Base class for all evaluatoor errors."""


class DatasetImportError(EvaluatoorError):
    """A CSV upload is empty, malformed, or lacks the required columns."""


class GenerationError(EvaluatoorError):
    """The model backend is unreachable or answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ModelSelectionError(EvaluatoorError):
    """An evaluation or judge model was not chosen before starting a run."""


class NoTestCasesError(EvaluatoorError):
    """A run was requested with an empty test suite."""


class RunInProgressError(EvaluatoorError):
    """The action needs the run slot, but an evaluation is already running."""
