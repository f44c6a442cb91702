"""Background execution of evaluation runs for the API.

A single RunManager owns the test case store, the run log and at most one
running pipeline (an asyncio task). Cancellation is cooperative: the
pipeline checks the cancel event between test cases, so the item in
flight always finishes and is committed.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

import structlog

from src.api.metrics import (
    record_item,
    record_run_finished,
    record_run_started,
    set_run_progress,
    set_test_cases_loaded,
)
from src.config import GenerationConfig
from src.errors import ModelSelectionError, NoTestCasesError, RunInProgressError
from src.evals.dataset import parse_csv
from src.evals.pipeline import EvaluationPipeline, GenerationClient, evaluate_store
from src.evals.store import TestCaseStore
from src.schemas.events import LogEntry, LogLevel, PipelineProgress
from src.schemas.test_case import CaseStatus, TestCase

logger = structlog.get_logger(__name__)


class RunStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RunInfo:
    """Tracked metadata for an evaluation run."""

    run_id: str
    status: RunStatus
    eval_model: str
    judge_model: str
    config: GenerationConfig
    only_pending: bool = False
    total: int = 0
    completed: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    error: str | None = None

    @property
    def percent(self) -> int:
        return PipelineProgress(self.total, self.completed, 0).percent


class RunManager:
    """Holds the store and drives one evaluation run at a time.

    Args:
        client: Generation backend handed to the pipeline.
        store: Existing store to serve; a new empty one by default.
    """

    def __init__(self, client: GenerationClient, store: TestCaseStore | None = None) -> None:
        self.store = store if store is not None else TestCaseStore()
        self._pipeline = EvaluationPipeline(client)
        self._task: asyncio.Task | None = None
        self._cancel_event = asyncio.Event()
        self._logs: list[LogEntry] = []
        self._last_update: TestCase | None = None
        self.current: RunInfo | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def status(self) -> RunStatus:
        if self.current is None:
            return RunStatus.IDLE
        return self.current.status

    # ------------------------------------------------------------------
    # Test cases
    # ------------------------------------------------------------------

    def load_csv_text(self, text: str) -> int:
        """Replace the store with the cases in ``text``. Returns the count."""
        if self.is_running:
            raise RunInProgressError("Cannot replace test cases while an evaluation is running")
        cases = parse_csv(text)
        self.store.replace_all(cases)
        set_test_cases_loaded(len(cases))
        self._append_log(LogEntry(message=f"Loaded {len(cases)} test cases", level=LogLevel.SUCCESS))
        return len(cases)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def logs(self, since: int = 0) -> list[LogEntry]:
        return [entry.model_copy() for entry in self._logs[max(since, 0) :]]

    @property
    def log_count(self) -> int:
        return len(self._logs)

    def _append_log(self, entry: LogEntry) -> None:
        self._logs.append(entry)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start(
        self,
        eval_model: str,
        judge_model: str,
        config: GenerationConfig | None = None,
        only_pending: bool = False,
    ) -> RunInfo:
        """Validate the request and launch the pipeline in the background.

        Raises:
            RunInProgressError: a run is already active.
            ModelSelectionError: either model is blank.
            NoTestCasesError: nothing to evaluate.
        """
        if self.is_running:
            raise RunInProgressError("An evaluation is already running")
        if not eval_model.strip() or not judge_model.strip():
            raise ModelSelectionError("Please select both evaluation and judge models")
        if len(self.store) == 0:
            raise NoTestCasesError("Please upload test cases first")
        total = len(self.store.pending_indices()) if only_pending else len(self.store)
        if total == 0:
            raise NoTestCasesError("No pending test cases to evaluate")

        run_info = RunInfo(
            run_id=str(uuid.uuid4()),
            status=RunStatus.RUNNING,
            eval_model=eval_model.strip(),
            judge_model=judge_model.strip(),
            config=GenerationConfig.coerce(config),
            only_pending=only_pending,
            total=total,
        )
        self.current = run_info
        self._cancel_event = asyncio.Event()
        self._logs = []
        self._last_update = None

        self._task = asyncio.create_task(self._execute(run_info))
        self._task.add_done_callback(self._on_task_done)
        record_run_started()
        logger.info(
            "run_started",
            run_id=run_info.run_id,
            total=total,
            only_pending=only_pending,
        )
        return run_info

    async def _execute(self, run_info: RunInfo) -> None:
        try:
            await evaluate_store(
                self.store,
                self._pipeline,
                run_info.eval_model,
                run_info.judge_model,
                run_info.config,
                only_pending=run_info.only_pending,
                on_item_update=self._on_item_update,
                on_log=self._append_log,
                on_progress=lambda progress: self._on_progress(run_info, progress),
                cancel_event=self._cancel_event,
            )
            if run_info.completed < run_info.total:
                run_info.status = RunStatus.CANCELLED
            else:
                run_info.status = RunStatus.DONE
            logger.info(
                "run_finished",
                run_id=run_info.run_id,
                status=run_info.status.value,
                completed=run_info.completed,
            )

        except asyncio.CancelledError:
            run_info.status = RunStatus.CANCELLED
            logger.info("run_cancelled", run_id=run_info.run_id)
            raise

        except Exception as exc:
            run_info.status = RunStatus.FAILED
            run_info.error = str(exc)
            self._append_log(LogEntry(message=f"Evaluation failed: {exc}", level=LogLevel.ERROR))
            logger.error("run_failed", run_id=run_info.run_id, error=str(exc), exc_info=True)

        finally:
            run_info.finished_at = datetime.now(timezone.utc)
            record_run_finished(run_info.status.value)

    def _on_item_update(self, index: int, case: TestCase) -> None:
        self._last_update = case

    def _on_progress(self, run_info: RunInfo, progress: PipelineProgress) -> None:
        run_info.completed = progress.completed
        set_run_progress(progress.percent)
        case = self._last_update
        if case is None:
            return
        if case.status == CaseStatus.ERROR:
            record_item("error")
        elif case.status == CaseStatus.JUDGED:
            record_item("judged", case.judgment_score)

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Callback when the run task completes (success, failure, or cancellation)."""
        self._task = None

    def cancel(self) -> bool:
        """Ask the active run to stop after the current item. Returns False if idle."""
        if not self.is_running:
            return False
        self._cancel_event.set()
        logger.info("run_cancel_requested", run_id=self.current.run_id if self.current else None)
        return True

    async def wait(self) -> None:
        """Wait for the active run, if any, to finish."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Abort the active run without waiting for the item in flight."""
        task = self._task
        if task is None:
            return
        self._cancel_event.set()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
