"""Structured logging configuration using structlog.

Two renderers: a human-friendly console renderer for the CLI and JSON lines
for the API server. Run-scoped fields (run id, model names) are bound
through contextvars so every event emitted during a run carries them.
"""

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog output on stderr.

    Args:
        log_level: Python log level name (DEBUG, INFO, WARNING, ERROR).
        json_logs: Render events as JSON lines instead of coloured text.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_run_context(run_id: str, eval_model: str, judge_model: str) -> None:
    """Attach run identifiers to every log event until cleared."""
    structlog.contextvars.bind_contextvars(
        run_id=run_id, eval_model=eval_model, judge_model=judge_model
    )


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars("run_id", "eval_model", "judge_model")
