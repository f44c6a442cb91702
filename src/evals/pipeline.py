"""Evaluation pipeline: generate with one model, judge with another.

Items are processed strictly in order, one HTTP call in flight at a time,
so load on the local backend stays bounded and progress is monotonic. A
failure on one item is written onto that item and the loop moves on; the
only way to stop early is the cancel event, which is checked between items.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

import structlog

from src.config import GenerationConfig
from src.errors import GenerationError, ModelSelectionError, NoTestCasesError
from src.evals.extractor import extract
from src.evals.store import TestCaseStore
from src.logging_config import bind_run_context, clear_run_context
from src.prompts.templates import build_judge_prompt
from src.schemas.events import LogEntry, LogLevel, PipelineProgress
from src.schemas.test_case import JudgmentResult, TestCase

logger = structlog.get_logger(__name__)

ItemCallback = Callable[[int, TestCase], None]
LogCallback = Callable[[LogEntry], None]
ProgressCallback = Callable[[PipelineProgress], None]
Extractor = Callable[[str, str | None], JudgmentResult]


class GenerationClient(Protocol):
    async def generate(
        self,
        model_id: str,
        prompt: str,
        config: GenerationConfig | Mapping[str, Any] | None = None,
    ) -> str: ...


class EvaluationPipeline:
    """Drives test cases through generation and judgment.

    Args:
        client: Anything with an async ``generate(model_id, prompt, config)``.
        extractor: Turns the judge reply into a JudgmentResult.
    """

    def __init__(self, client: GenerationClient, extractor: Extractor = extract) -> None:
        self.client = client
        self.extractor = extractor

    async def run(
        self,
        test_cases: Sequence[TestCase],
        eval_model_id: str,
        judge_model_id: str,
        config: GenerationConfig | Mapping[str, Any] | None = None,
        *,
        on_item_update: ItemCallback | None = None,
        on_log: LogCallback | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[TestCase]:
        """Evaluate every case and return the updated copies, in input order.

        Raises:
            ModelSelectionError: either model id is blank.
            NoTestCasesError: ``test_cases`` is empty.
        """
        if not (eval_model_id or "").strip() or not (judge_model_id or "").strip():
            raise ModelSelectionError("Please select both evaluation and judge models")
        if not test_cases:
            raise NoTestCasesError("Please upload test cases first")

        options = GenerationConfig.coerce(config)
        working = [case.model_copy(deep=True) for case in test_cases]
        total = len(working)
        completed = 0

        def emit(message: str, level: LogLevel = LogLevel.INFO) -> None:
            if on_log is not None:
                on_log(LogEntry(message=message, level=level))

        def publish(index: int) -> None:
            if on_item_update is not None:
                on_item_update(index, working[index].model_copy(deep=True))

        bind_run_context(uuid.uuid4().hex[:12], eval_model_id, judge_model_id)
        try:
            logger.info(
                "evaluation_started",
                total=total,
                context_window_size=options.context_window_size,
                temperature=options.temperature,
            )
            emit(
                f"Starting evaluation with models: {eval_model_id} (eval) and "
                f"{judge_model_id} (judge), context window {options.context_window_size}, "
                f"temperature {options.temperature}"
            )

            for index in range(total):
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning("evaluation_cancelled", completed=completed, total=total)
                    emit(
                        f"Evaluation cancelled after {completed} of {total} test cases",
                        LogLevel.WARNING,
                    )
                    return working

                await self._process_item(
                    index, working, eval_model_id, judge_model_id, options, emit, publish
                )

                completed += 1
                if on_progress is not None:
                    on_progress(
                        PipelineProgress(total=total, completed=completed, current_index=index)
                    )

            logger.info("evaluation_finished", total=total)
            emit("All evaluations and judgments completed", LogLevel.SUCCESS)
            return working
        finally:
            clear_run_context()

    async def _process_item(
        self,
        index: int,
        working: list[TestCase],
        eval_model_id: str,
        judge_model_id: str,
        options: GenerationConfig,
        emit: Callable[[str, LogLevel], None],
        publish: Callable[[int], None],
    ) -> None:
        case = working[index].reset_results()
        working[index] = case
        log = logger.bind(test_case_id=case.id, index=index)

        # Generation
        emit(f"Evaluating test case {case.id}...", LogLevel.INFO)
        try:
            generated = await self.client.generate(eval_model_id, case.input, options)
        except Exception as exc:
            self._record_failure(index, working, exc, emit, publish, log)
            return
        case = case.model_copy(update={"generated_output": generated})
        working[index] = case
        publish(index)
        log.debug("generation_done", chars=len(generated))
        emit(f"Completed evaluation for test case {case.id}", LogLevel.SUCCESS)

        # Judgment
        emit(f"Judging test case {case.id}...", LogLevel.INFO)
        try:
            raw = await self.client.generate(judge_model_id, build_judge_prompt(case), options)
            judgment = self.extractor(raw, case.id)
        except Exception as exc:
            self._record_failure(index, working, exc, emit, publish, log)
            return
        case = case.model_copy(
            update={
                "judgment_explanation": judgment.explanation,
                "judgment_score": judgment.score,
            }
        )
        working[index] = case
        publish(index)
        log.info("judgment_done", score=judgment.score, strategy=judgment.strategy.value)
        emit(
            f"Completed judgment for test case {case.id} with score: {judgment.score:g}",
            LogLevel.SUCCESS,
        )

    @staticmethod
    def _record_failure(
        index: int,
        working: list[TestCase],
        exc: Exception,
        emit: Callable[[str, LogLevel], None],
        publish: Callable[[int], None],
        log: Any,
    ) -> None:
        message = str(exc) or type(exc).__name__
        # An errored item carries only its inputs and the error.
        working[index] = working[index].reset_results().model_copy(update={"error": message})
        publish(index)
        if isinstance(exc, GenerationError):
            log.error("test_case_failed", error=message)
        else:
            log.error("test_case_failed_unexpectedly", error=message, exc_info=exc)
        emit(f"Error processing test case {working[index].id}: {message}", LogLevel.ERROR)


async def evaluate_store(
    store: TestCaseStore,
    pipeline: EvaluationPipeline,
    eval_model_id: str,
    judge_model_id: str,
    config: GenerationConfig | Mapping[str, Any] | None = None,
    *,
    only_pending: bool = False,
    on_item_update: ItemCallback | None = None,
    on_log: LogCallback | None = None,
    on_progress: ProgressCallback | None = None,
    cancel_event: asyncio.Event | None = None,
) -> list[TestCase]:
    """Run the pipeline over a store, committing each item as it changes.

    With ``only_pending`` the run covers only items that have neither results
    nor an error (resuming a re-imported export). ``on_item_update`` receives
    store indices, after the change is committed.
    """
    snapshot = store.snapshot()
    if only_pending:
        indices = [i for i, case in enumerate(snapshot) if case.is_pending]
    else:
        indices = list(range(len(snapshot)))
    subset = [snapshot[i] for i in indices]

    def commit(position: int, case: TestCase) -> None:
        store.commit(indices[position], case)
        if on_item_update is not None:
            on_item_update(indices[position], case)

    return await pipeline.run(
        subset,
        eval_model_id,
        judge_model_id,
        config,
        on_item_update=commit,
        on_log=on_log,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )
