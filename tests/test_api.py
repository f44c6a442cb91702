"""Tests for the API layer: schemas, run manager, and HTTP endpoints."""

from __future__ import annotations

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.runner import RunManager, RunStatus
from src.api.schemas import RunCreateRequest, RunStatusResponse
from src.errors import (
    DatasetImportError,
    GenerationError,
    ModelSelectionError,
    NoTestCasesError,
    RunInProgressError,
)
from src.evals.store import TestCaseStore
from src.schemas.test_case import CaseStatus

CSV_TEXT = "id,input,expected_output\nq1,What is 2+2?,4\nq2,Capital of France?,Paris\n"


def _wait_until_finished(client: TestClient, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/api/v1/runs/current").json()
        if body["status"] != "running":
            return body
        if time.monotonic() > deadline:
            raise AssertionError("run did not finish in time")
        time.sleep(0.01)


# ===========================================================================
# Schema Tests
# ===========================================================================


class TestSchemas:
    def test_run_create_defaults(self):
        req = RunCreateRequest()
        assert req.eval_model == ""
        assert req.context_window_size is None
        assert req.only_pending is False

    def test_run_status_idle(self):
        resp = RunStatusResponse(status="idle")
        assert resp.run_id is None
        assert resp.percent == 0


# ===========================================================================
# RunManager Tests
# ===========================================================================


class TestRunManager:
    @pytest.mark.asyncio
    async def test_full_run(self, fake_client, cases):
        manager = RunManager(fake_client, TestCaseStore(cases))
        info = manager.start("eval", "judge")
        assert manager.status == RunStatus.RUNNING

        await manager.wait()

        assert info.status == RunStatus.DONE
        assert info.completed == 3
        assert info.percent == 100
        assert info.finished_at is not None
        assert all(c.status == CaseStatus.JUDGED for c in manager.store.snapshot())
        assert manager.logs()[-1].message == "All evaluations and judgments completed"

    @pytest.mark.asyncio
    async def test_start_validation(self, fake_client, cases):
        manager = RunManager(fake_client)
        with pytest.raises(ModelSelectionError):
            manager.start("", "judge")
        with pytest.raises(NoTestCasesError):
            manager.start("eval", "judge")
        assert manager.status == RunStatus.IDLE

    @pytest.mark.asyncio
    async def test_only_pending_with_nothing_pending(self, fake_client, cases):
        done = [c.model_copy(update={"error": "old"}) for c in cases]
        manager = RunManager(fake_client, TestCaseStore(done))
        with pytest.raises(NoTestCasesError, match="pending"):
            manager.start("eval", "judge", only_pending=True)

    @pytest.mark.asyncio
    async def test_single_active_run(self, make_client, cases):
        gate = asyncio.Event()

        class SlowClient(make_client):
            async def generate(self, model_id, prompt, config=None):
                await gate.wait()
                return await super().generate(model_id, prompt, config)

        manager = RunManager(SlowClient(), TestCaseStore(cases))
        manager.start("eval", "judge")
        with pytest.raises(RunInProgressError):
            manager.start("eval", "judge")
        with pytest.raises(RunInProgressError):
            manager.load_csv_text(CSV_TEXT)
        gate.set()
        await manager.wait()
        assert manager.status == RunStatus.DONE

    @pytest.mark.asyncio
    async def test_cancel_stops_between_items(self, make_client, cases):
        manager_ref: list[RunManager] = []

        def responder(model_id, prompt):
            if model_id == "judge":
                manager_ref[0].cancel()
                return '{"score": 7, "explanation": "ok"}'
            return "answer"

        manager = RunManager(make_client(responder), TestCaseStore(cases))
        manager_ref.append(manager)
        info = manager.start("eval", "judge")
        await manager.wait()

        assert info.status == RunStatus.CANCELLED
        assert info.completed == 1
        statuses = [c.status for c in manager.store.snapshot()]
        assert statuses == [CaseStatus.JUDGED, CaseStatus.PENDING, CaseStatus.PENDING]
        assert manager.logs()[-1].message == "Evaluation cancelled after 1 of 3 test cases"

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, fake_client):
        assert RunManager(fake_client).cancel() is False

    @pytest.mark.asyncio
    async def test_load_csv_text(self, fake_client):
        manager = RunManager(fake_client)
        assert manager.load_csv_text(CSV_TEXT) == 2
        assert [c.id for c in manager.store.snapshot()] == ["q1", "q2"]
        with pytest.raises(DatasetImportError):
            manager.load_csv_text("foo,bar\n1,2\n")
        assert len(manager.store) == 2

    @pytest.mark.asyncio
    async def test_logs_since(self, fake_client, cases):
        manager = RunManager(fake_client, TestCaseStore(cases))
        manager.start("eval", "judge")
        await manager.wait()
        total = manager.log_count
        assert len(manager.logs(total - 1)) == 1
        assert manager.logs(total) == []


# ===========================================================================
# HTTP Endpoint Tests
# ===========================================================================


@pytest.fixture()
def api(fake_client):
    with TestClient(create_app(client=fake_client)) as client:
        yield client


class TestEndpoints:
    def test_health(self, api):
        resp = api.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "healthy",
            "run_status": "idle",
            "test_cases": 0,
            "version": "0.1.0",
        }

    def test_models(self, api):
        resp = api.get("/api/v1/models")
        assert resp.status_code == 200
        assert [m["id"] for m in resp.json()["models"]] == ["llama3.2", "qwen2.5"]

    def test_models_backend_down(self, make_client):
        backend = make_client(models_error=GenerationError("Failed to fetch models: refused"))
        with TestClient(create_app(client=backend)) as client:
            resp = client.get("/api/v1/models")
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Failed to fetch models: refused"

    def test_upload_and_list(self, api):
        resp = api.post(
            "/api/v1/test-cases", content=CSV_TEXT, headers={"Content-Type": "text/csv"}
        )
        assert resp.status_code == 200
        assert resp.json()["count"] == 2

        listing = api.get("/api/v1/test-cases").json()
        assert [c["id"] for c in listing["test_cases"]] == ["q1", "q2"]
        assert listing["summary"]["pending"] == 2
        assert listing["summary"]["average_score"] is None

    def test_upload_bad_csv(self, api):
        resp = api.post("/api/v1/test-cases", content="foo,bar\n1,2\n")
        assert resp.status_code == 422

    def test_run_requires_models(self, api):
        api.post("/api/v1/test-cases", content=CSV_TEXT)
        resp = api.post("/api/v1/runs", json={"eval_model": "eval"})
        assert resp.status_code == 422
        assert "select both" in resp.json()["detail"]

    def test_run_requires_test_cases(self, api):
        resp = api.post("/api/v1/runs", json={"eval_model": "eval", "judge_model": "judge"})
        assert resp.status_code == 422

    def test_cancel_when_idle(self, api):
        assert api.delete("/api/v1/runs/current").status_code == 409

    def test_full_run(self, api, fake_client):
        api.post("/api/v1/test-cases", content=CSV_TEXT)
        resp = api.post(
            "/api/v1/runs",
            json={
                "eval_model": "eval",
                "judge_model": "judge",
                "context_window_size": 1024,
                "temperature": 0.1,
            },
        )
        assert resp.status_code == 202
        assert resp.json()["total"] == 2

        final = _wait_until_finished(api)
        assert final["status"] == "done"
        assert final["completed"] == 2
        assert final["percent"] == 100
        assert final["context_window_size"] == 1024

        listing = api.get("/api/v1/test-cases").json()
        assert all(c["judgment_score"] == 9.0 for c in listing["test_cases"])
        assert listing["summary"]["passed"] == 2

        sent = fake_client.calls[0][2]
        assert sent.to_options() == {"num_ctx": 1024, "temperature": 0.1}

        logs = api.get("/api/v1/logs").json()
        assert logs["entries"][-1]["message"] == "All evaluations and judgments completed"
        assert logs["entries"][-1]["level"] == "success"
        newer = api.get("/api/v1/logs", params={"since": logs["next_index"]}).json()
        assert newer["entries"] == []

    def test_export_csv(self, api):
        api.post("/api/v1/test-cases", content=CSV_TEXT)
        resp = api.get("/api/v1/export/csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="llm-evaluation-' in resp.headers["content-disposition"]
        assert resp.text.splitlines()[0].startswith("id,input,expected_output")

    def test_export_json(self, api):
        api.post("/api/v1/test-cases", content=CSV_TEXT)
        resp = api.get("/api/v1/export/json")
        assert resp.status_code == 200
        assert [row["id"] for row in resp.json()] == ["q1", "q2"]

    def test_export_unknown_format(self, api):
        assert api.get("/api/v1/export/xlsx").status_code == 404

    def test_metrics(self, api):
        resp = api.get("/api/v1/metrics")
        assert resp.status_code == 200
        assert "evaluatoor_runs_started_total" in resp.text
