"""Prometheus metrics for the Evaluatoor API.

Tracks evaluation runs, processed test cases and judge scores.
Metrics are exposed via /api/v1/metrics endpoint in Prometheus format.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

RUNS_STARTED = Counter(
    "evaluatoor_runs_started_total",
    "Total evaluation runs started",
)
RUNS_FINISHED = Counter(
    "evaluatoor_runs_finished_total",
    "Total evaluation runs finished",
    ["status"],
)
ITEMS_PROCESSED = Counter(
    "evaluatoor_items_processed_total",
    "Test cases processed, by outcome",
    ["outcome"],
)
JUDGE_SCORE = Histogram(
    "evaluatoor_judge_score",
    "Scores assigned by the judge model",
    buckets=[float(b) for b in range(11)],
)
RUN_PROGRESS = Gauge(
    "evaluatoor_run_progress_percent",
    "Progress of the current run",
)
TEST_CASES_LOADED = Gauge(
    "evaluatoor_test_cases_loaded",
    "Test cases in the store",
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_run_started() -> None:
    RUNS_STARTED.inc()
    RUN_PROGRESS.set(0)


def record_run_finished(status: str) -> None:
    RUNS_FINISHED.labels(status=status).inc()


def record_item(outcome: str, score: float | None = None) -> None:
    ITEMS_PROCESSED.labels(outcome=outcome).inc()
    if score is not None:
        JUDGE_SCORE.observe(score)


def set_run_progress(percent: int) -> None:
    RUN_PROGRESS.set(percent)


def set_test_cases_loaded(count: int) -> None:
    TEST_CASES_LOADED.set(count)


def get_metrics_text() -> str:
    """Generate Prometheus metrics text output."""
    return generate_latest().decode("utf-8")
