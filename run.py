"""CLI entry point for Evaluatoor.

Usage:
    python run.py --list-models                    # Show models installed on the backend
    python run.py --file cases.csv --eval-model llama3.2 --judge-model qwen2.5
    python run.py --file cases.csv --output results.json   # Models from evaluatoor.toml
    python run.py --file results.csv --only-pending --output resumed.csv
    python run.py --file cases.csv --save                  # Timestamped file under [export] directory
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from collections.abc import Callable
from pathlib import Path

from src.config import GenerationConfig, get_app_settings, get_settings
from src.errors import DatasetImportError, EvaluatoorError, GenerationError
from src.evals.dataset import export_filename, load_csv, write_export
from src.evals.pipeline import EvaluationPipeline, evaluate_store
from src.evals.store import TestCaseStore
from src.logging_config import setup_logging
from src.ollama_client import OllamaClient
from src.utils.console import (
    console,
    print_error,
    print_header,
    print_info,
    print_log_entry,
    print_models,
    print_progress,
    print_results_table,
    print_summary,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Evaluatoor: evaluate local LLMs against expected outputs with an LLM judge",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        default=False,
        help="List the models installed on the backend and exit.",
    )
    parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="CSV file with 'input' and 'expected_output' columns (and optionally 'id').",
    )
    parser.add_argument(
        "--eval-model",
        type=str,
        default=None,
        help="Model that answers the test inputs (default: evaluatoor.toml [defaults]).",
    )
    parser.add_argument(
        "--judge-model",
        type=str,
        default=None,
        help="Model that scores the answers (default: evaluatoor.toml [defaults]).",
    )
    parser.add_argument(
        "--context-window",
        type=int,
        default=None,
        help="Context window in tokens, clamped to 512..8192.",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=None,
        help="Sampling temperature, clamped to 0.0..2.0.",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write results to this .csv or .json file.",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        default=False,
        help="Write results to the evaluatoor.toml [export] directory with a timestamped name.",
    )
    parser.add_argument(
        "--only-pending",
        action="store_true",
        default=False,
        help="Only evaluate rows without results or errors (resume an exported file).",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Ollama API base URL, including /api (default: OLLAMA_BASE_URL or localhost).",
    )
    args = parser.parse_args(argv)
    if not args.list_models and not args.file:
        parser.error("one of --file or --list-models is required")
    return args


def build_generation_config(args: argparse.Namespace, base: GenerationConfig) -> GenerationConfig:
    """Overlay CLI overrides on the evaluatoor.toml [generation] table."""
    overrides = {}
    if args.context_window is not None:
        overrides["context_window_size"] = args.context_window
    if args.temperature is not None:
        overrides["temperature"] = args.temperature
    return GenerationConfig.coerce({**base.model_dump(), **overrides})


def _sigint_handler(cancel_event: asyncio.Event, task: asyncio.Task) -> Callable[[], None]:
    """First Ctrl-C cancels between test cases; a second one aborts ``task``."""

    def _on_sigint() -> None:
        if cancel_event.is_set():
            console.print("\n[red]Aborting the in-flight request.[/red]")
            # default handling again, so a further Ctrl-C raises KeyboardInterrupt
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            task.cancel()
            return
        console.print(
            "\n[yellow]Cancelling: finishing the current test case, then stopping... "
            "(Ctrl-C again to abort)[/yellow]"
        )
        cancel_event.set()

    return _on_sigint


def _install_cancel_handler(cancel_event: asyncio.Event) -> bool:
    """Route Ctrl-C to the cancel event. Returns False where signals are unsupported."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    try:
        loop.add_signal_handler(signal.SIGINT, _sigint_handler(cancel_event, task))
    except (NotImplementedError, RuntimeError):
        return False
    return True


async def _list_models(client: OllamaClient) -> int:
    try:
        models = await client.list_models()
    except GenerationError as e:
        print_error(str(e))
        return 1
    print_models(models)
    return 0


async def _evaluate(args: argparse.Namespace, client: OllamaClient) -> int:
    app_settings = get_app_settings()

    try:
        store = TestCaseStore(load_csv(args.file))
    except DatasetImportError as e:
        print_error(str(e))
        return 1

    eval_model, judge_model = app_settings.resolve_models(args.eval_model, args.judge_model)
    config = build_generation_config(args, app_settings.generation)
    print_header(eval_model, judge_model, client.base_url, config, len(store))

    cancel_event = asyncio.Event()
    handler_installed = _install_cancel_handler(cancel_event)
    pipeline = EvaluationPipeline(client)
    try:
        await evaluate_store(
            store,
            pipeline,
            eval_model,
            judge_model,
            config,
            only_pending=args.only_pending,
            on_log=print_log_entry,
            on_progress=print_progress,
            cancel_event=cancel_event,
        )
    except asyncio.CancelledError:
        print_error("Evaluation aborted; showing results committed so far")
    except EvaluatoorError as e:
        print_error(str(e))
        return 1
    finally:
        if handler_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

    cases = store.snapshot()
    console.print()
    print_results_table(cases, preview_chars=app_settings.display.preview_chars)
    print_summary(store.summary())

    output = args.output
    if output is None and args.save:
        output = Path(app_settings.export.directory) / export_filename(app_settings.export.format)
    if output:
        try:
            path = write_export(cases, output)
        except (ValueError, OSError) as e:
            print_error(str(e))
            return 1
        print_info(f"Results written to {path}")
    return 130 if cancel_event.is_set() else 0


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    setup_logging(settings.log_level)
    if args.base_url:
        settings = settings.model_copy(update={"ollama_base_url": args.base_url})

    async with OllamaClient.from_settings(settings) as client:
        if args.list_models:
            return await _list_models(client)
        return await _evaluate(args, client)


def main() -> None:
    sys.exit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
