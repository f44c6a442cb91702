"""In-memory test case store.

The store is the source of truth read by the CLI report, the API and the
exporters. It has a single writer (the evaluation pipeline, one item at a
time) and any number of readers, which always receive copies.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from src.errors import DatasetImportError
from src.schemas.test_case import CaseStatus, TestCase

logger = structlog.get_logger(__name__)

PASS_THRESHOLD = 8.0
REVIEW_THRESHOLD = 5.0


@dataclass(frozen=True)
class StoreSummary:
    """Aggregate view of the collection."""

    total: int
    pending: int
    generated: int
    judged: int
    errors: int
    average_score: float | None
    passed: int
    needs_review: int
    failed: int


class TestCaseStore:
    """Versioned collection of test cases behind a single-writer discipline."""

    __test__ = False  # not a pytest class

    def __init__(self, cases: Iterable[TestCase] = ()) -> None:
        self._lock = threading.Lock()
        self._cases: list[TestCase] = []
        self._version = 0
        cases = list(cases)
        if cases:
            self.replace_all(cases)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cases)

    @property
    def version(self) -> int:
        """Incremented on every mutation; lets readers detect change cheaply."""
        with self._lock:
            return self._version

    def replace_all(self, cases: Iterable[TestCase]) -> None:
        """Swap in a new collection (a fresh upload)."""
        new_cases = [c.model_copy(deep=True) for c in cases]
        seen: set[str] = set()
        for case in new_cases:
            if case.id in seen:
                raise DatasetImportError(f"Duplicate test case id: {case.id}")
            seen.add(case.id)
        with self._lock:
            self._cases = new_cases
            self._version += 1
        logger.info("store_replaced", count=len(new_cases))

    def snapshot(self) -> list[TestCase]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._cases]

    def get(self, case_id: str) -> TestCase | None:
        with self._lock:
            for case in self._cases:
                if case.id == case_id:
                    return case.model_copy(deep=True)
        return None

    def commit(self, index: int, case: TestCase) -> None:
        """Replace the item at ``index``; its id must not change."""
        with self._lock:
            if not 0 <= index < len(self._cases):
                raise KeyError(f"No test case at index {index}")
            current_id = self._cases[index].id
            if current_id != case.id:
                raise KeyError(
                    f"Test case id mismatch at index {index}: {current_id} != {case.id}"
                )
            self._cases[index] = case.model_copy(deep=True)
            self._version += 1

    def pending_indices(self) -> list[int]:
        """Indices of items with neither results nor an error."""
        with self._lock:
            return [i for i, c in enumerate(self._cases) if c.is_pending]

    def summary(self) -> StoreSummary:
        cases = self.snapshot()
        counts = {status: 0 for status in CaseStatus}
        for case in cases:
            counts[case.status] += 1

        scores = [
            c.judgment_score
            for c in cases
            if c.status == CaseStatus.JUDGED and c.judgment_score is not None
        ]
        return StoreSummary(
            total=len(cases),
            pending=counts[CaseStatus.PENDING],
            generated=counts[CaseStatus.GENERATED],
            judged=counts[CaseStatus.JUDGED],
            errors=counts[CaseStatus.ERROR],
            average_score=sum(scores) / len(scores) if scores else None,
            passed=sum(1 for s in scores if s >= PASS_THRESHOLD),
            needs_review=sum(1 for s in scores if REVIEW_THRESHOLD <= s < PASS_THRESHOLD),
            failed=sum(1 for s in scores if s < REVIEW_THRESHOLD),
        )
