"""FastAPI application for Evaluatoor.

Provides REST API endpoints for uploading test cases, listing backend
models, starting and cancelling evaluation runs, following the run log
and exporting results.

Usage:
    uvicorn src.api.app:app --reload          # Development
    uvicorn src.api.app:app --host 0.0.0.0    # Production (behind reverse proxy)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import (
    get_client,
    get_run_manager,
    init_dependencies,
    reset_dependencies,
)
from src.api.metrics import get_metrics_text
from src.api.runner import RunInfo, RunManager
from src.api.schemas import (
    ErrorResponse,
    HealthResponse,
    LogListResponse,
    ModelListResponse,
    RunCreateRequest,
    RunStatusResponse,
    SummaryResponse,
    TestCaseListResponse,
    TestCaseUploadResponse,
)
from src.config import GenerationConfig, get_app_settings, get_settings
from src.errors import (
    DatasetImportError,
    GenerationError,
    ModelSelectionError,
    NoTestCasesError,
    RunInProgressError,
)
from src.evals.dataset import EXPORT_FORMATS, export_filename, render_export
from src.logging_config import setup_logging
from src.ollama_client import OllamaClient

logger = structlog.get_logger(__name__)

EXPORT_MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}


def _run_status_response(manager: RunManager) -> RunStatusResponse:
    run_info: RunInfo | None = manager.current
    if run_info is None:
        return RunStatusResponse(status=manager.status.value)
    return RunStatusResponse(
        run_id=run_info.run_id,
        status=run_info.status.value,
        eval_model=run_info.eval_model,
        judge_model=run_info.judge_model,
        context_window_size=run_info.config.context_window_size,
        temperature=run_info.config.temperature,
        only_pending=run_info.only_pending,
        total=run_info.total,
        completed=run_info.completed,
        percent=run_info.percent,
        created_at=run_info.created_at,
        finished_at=run_info.finished_at,
        error=run_info.error,
    )


def create_app(client: OllamaClient | None = None) -> FastAPI:
    """Build the API app.

    Args:
        client: Backend client to serve; one is built from Settings when None.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize shared resources on startup, clean up on shutdown."""
        setup_logging(settings.log_level, json_logs=settings.log_json)
        backend = client if client is not None else OllamaClient.from_settings(settings)
        manager = RunManager(backend)
        init_dependencies(manager, backend)
        logger.info("api_started", base_url=getattr(backend, "base_url", None))

        yield

        # Shutdown: abort the active run, then release the HTTP client
        await manager.shutdown()
        if client is None:
            await backend.aclose()
        reset_dependencies()
        logger.info("api_shutdown")

    app = FastAPI(
        title="Evaluatoor API",
        description=(
            "REST API for evaluating local LLMs: upload test cases, generate answers "
            "with one model and score them with a judge model."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    # -----------------------------------------------------------------------
    # Models & test cases
    # -----------------------------------------------------------------------

    @app.get(
        "/api/v1/models",
        response_model=ModelListResponse,
        responses={502: {"model": ErrorResponse}},
    )
    async def list_models(client: OllamaClient = Depends(get_client)):
        """List the models installed on the backend."""
        try:
            models = await client.list_models()
        except GenerationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return ModelListResponse(models=models)

    @app.post(
        "/api/v1/test-cases",
        response_model=TestCaseUploadResponse,
        responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    )
    async def upload_test_cases(
        request: Request,
        manager: RunManager = Depends(get_run_manager),
    ):
        """Replace the test cases with the CSV in the request body."""
        body = await request.body()
        try:
            text = body.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=422, detail="CSV body is not UTF-8 text") from exc
        try:
            count = manager.load_csv_text(text)
        except RunInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except DatasetImportError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return TestCaseUploadResponse(count=count, message=f"Loaded {count} test cases.")

    @app.get("/api/v1/test-cases", response_model=TestCaseListResponse)
    async def list_test_cases(manager: RunManager = Depends(get_run_manager)):
        """Current test cases with their results and aggregate metrics."""
        return TestCaseListResponse(
            test_cases=manager.store.snapshot(),
            summary=SummaryResponse(**asdict(manager.store.summary())),
        )

    # -----------------------------------------------------------------------
    # Runs
    # -----------------------------------------------------------------------

    @app.post(
        "/api/v1/runs",
        response_model=RunStatusResponse,
        status_code=202,
        responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    )
    async def create_run(
        request: RunCreateRequest,
        manager: RunManager = Depends(get_run_manager),
    ):
        """Start evaluating the loaded test cases.

        The run executes asynchronously: poll GET /runs/current and /logs.
        """
        app_settings = get_app_settings()
        eval_model, judge_model = app_settings.resolve_models(
            request.eval_model, request.judge_model
        )
        overrides = request.model_dump(
            include={"context_window_size", "temperature"}, exclude_none=True
        )
        config = GenerationConfig.coerce({**app_settings.generation.model_dump(), **overrides})
        try:
            manager.start(eval_model, judge_model, config, only_pending=request.only_pending)
        except RunInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except (ModelSelectionError, NoTestCasesError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return _run_status_response(manager)

    @app.get("/api/v1/runs/current", response_model=RunStatusResponse)
    async def get_current_run(manager: RunManager = Depends(get_run_manager)):
        """Status and progress of the latest run."""
        return _run_status_response(manager)

    @app.delete(
        "/api/v1/runs/current",
        response_model=RunStatusResponse,
        responses={409: {"model": ErrorResponse}},
    )
    async def cancel_run(manager: RunManager = Depends(get_run_manager)):
        """Stop the active run once the current test case finishes."""
        if not manager.cancel():
            raise HTTPException(status_code=409, detail="No evaluation is running.")
        return _run_status_response(manager)

    @app.get("/api/v1/logs", response_model=LogListResponse)
    async def get_logs(since: int = 0, manager: RunManager = Depends(get_run_manager)):
        """Run log entries, optionally only those after index ``since``."""
        return LogListResponse(entries=manager.logs(since), next_index=manager.log_count)

    # -----------------------------------------------------------------------
    # Export
    # -----------------------------------------------------------------------

    @app.get("/api/v1/export/{fmt}", responses={404: {"model": ErrorResponse}})
    async def export_results(fmt: str, manager: RunManager = Depends(get_run_manager)):
        """Download the test cases and results as CSV or JSON."""
        fmt = fmt.lower()
        if fmt not in EXPORT_FORMATS:
            raise HTTPException(status_code=404, detail=f"Unsupported export format: {fmt}")
        filename = export_filename(fmt)
        return Response(
            content=render_export(manager.store.snapshot(), fmt),
            media_type=EXPORT_MEDIA_TYPES[fmt],
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # -----------------------------------------------------------------------
    # Health & Metrics
    # -----------------------------------------------------------------------

    @app.get("/api/v1/health", response_model=HealthResponse)
    async def health_check(manager: RunManager = Depends(get_run_manager)):
        """Health check endpoint for load balancers and monitoring."""
        return HealthResponse(
            status="healthy",
            run_status=manager.status.value,
            test_cases=len(manager.store),
        )

    @app.get("/api/v1/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=get_metrics_text(),
            media_type="text/plain; charset=utf-8",
        )


app = create_app()
