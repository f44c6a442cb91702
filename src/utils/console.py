"""Rich console output for evaluation runs.

Renders the run log, per-item progress, the results table and the
aggregate metrics. Score colouring follows the usual bands:
>= 8 green, >= 5 yellow, below that red.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from src.config import GenerationConfig
from src.evals.store import PASS_THRESHOLD, REVIEW_THRESHOLD, StoreSummary
from src.schemas.events import LogEntry, LogLevel, PipelineProgress
from src.schemas.test_case import CaseStatus, ModelInfo, TestCase

console = Console()

LOG_STYLES = {
    LogLevel.INFO: "cyan",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "bold red",
}


def score_style(score: float | None) -> str:
    if score is None:
        return "dim"
    if score >= PASS_THRESHOLD:
        return "green"
    if score >= REVIEW_THRESHOLD:
        return "yellow"
    return "red"


def _preview(text: str | None, limit: int) -> str:
    if not text:
        return "-"
    if len(text) > limit:
        return escape(f"{text[:limit]}...")
    return escape(text)


def print_header(
    eval_model: str,
    judge_model: str,
    base_url: str,
    config: GenerationConfig,
    case_count: int,
) -> None:
    """Print the startup banner."""
    console.print()
    console.print(
        Panel(
            f"[bold]Evaluatoor: Local LLM Evaluation[/bold]\n\n"
            f"  Test cases: [cyan]{case_count}[/cyan]\n"
            f"  Evaluation model: [cyan]{eval_model}[/cyan]\n"
            f"  Judge model: [cyan]{judge_model}[/cyan]\n"
            f"  Backend: [cyan]{base_url}[/cyan]\n"
            f"  Context window: [cyan]{config.context_window_size}[/cyan] tokens\n"
            f"  Temperature: [cyan]{config.temperature}[/cyan]",
            border_style="bright_blue",
            padding=(1, 2),
        )
    )
    console.print()


def print_log_entry(entry: LogEntry) -> None:
    """Print one run log line, coloured by level."""
    style = LOG_STYLES.get(entry.level, "white")
    stamp = entry.timestamp.astimezone().strftime("%H:%M:%S")
    console.print(f"  [dim]{stamp}[/dim] [{style}]{escape(entry.message)}[/{style}]", highlight=False)


def print_progress(progress: PipelineProgress) -> None:
    console.print(
        f"  [bold bright_yellow]→ Progress: {progress.completed}/{progress.total} "
        f"({progress.percent}%)[/bold bright_yellow]"
    )


def print_models(models: list[ModelInfo]) -> None:
    if not models:
        console.print("[yellow]No models installed on the backend.[/yellow]")
        return
    table = Table(title="Available Models")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Model", style="cyan")
    for i, model in enumerate(models, 1):
        table.add_row(str(i), model.display_name)
    console.print(table)


def print_results_table(cases: list[TestCase], preview_chars: int = 100) -> None:
    """Print a formatted table of test cases and their judgments."""
    if not cases:
        console.print("[yellow]No results to display.[/yellow]")
        return

    table = Table(title="Evaluation Results", show_lines=True)
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Input", style="cyan", max_width=40)
    table.add_column("Expected", max_width=40)
    table.add_column("Generated", max_width=40)
    table.add_column("Score", justify="center")
    table.add_column("Judgment / Error", max_width=50)

    for case in cases:
        if case.status == CaseStatus.ERROR:
            score_cell = "[red]ERR[/red]"
            note = f"[red]{escape(case.error or '')}[/red]"
        elif case.judgment_score is not None:
            style = score_style(case.judgment_score)
            score_cell = f"[{style}]{case.judgment_score:.1f}[/{style}]"
            note = _preview(case.judgment_explanation, preview_chars)
        else:
            score_cell = "[dim]-[/dim]"
            note = "[dim]pending[/dim]"
        table.add_row(
            case.id[:12],
            _preview(case.input, preview_chars),
            _preview(case.expected_output, preview_chars),
            _preview(case.generated_output, preview_chars),
            score_cell,
            note,
        )

    console.print(table)


def print_summary(summary: StoreSummary) -> None:
    """Print aggregate metrics for the collection."""
    console.print("\n[bold]Aggregate Metrics:[/bold]")
    console.print(f"  Test cases: {summary.total}")
    console.print(f"  Judged: {summary.judged} | Errors: {summary.errors} | Pending: {summary.pending}")
    if summary.average_score is None:
        console.print("  Avg Score: -")
    else:
        style = score_style(summary.average_score)
        console.print(f"  Avg Score: [{style}]{summary.average_score:.2f}[/{style}]")
    console.print(
        f"  Bands: [green]{summary.passed} >= {PASS_THRESHOLD:g}[/green] | "
        f"[yellow]{summary.needs_review} >= {REVIEW_THRESHOLD:g}[/yellow] | "
        f"[red]{summary.failed} below[/red]"
    )
    if summary.judged:
        console.print(f"  Pass Rate: {summary.passed / summary.judged * 100:.0f}%\n")


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"  [dim]{message}[/dim]")


def print_error(message: str) -> None:
    console.print(f"[bold red]{escape(message)}[/bold red]")
