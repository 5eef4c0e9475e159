"""
API endpoint tests
"""

from datetime import datetime
from types import SimpleNamespace
import uuid

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from api.dependencies import get_context
from api.main import app
from core.exceptions import CatalogNotReadyError, NotFoundError
from extraction.catalog import Catalog, DEFAULT_MARKERS
from extraction.scheduler import TriggerResult
from models.base import CursorType, RunStatus
from schemas.catalog import QueryTemplate
from schemas.records import Watermark


def _template():
    return QueryTemplate(
        name="lecturers",
        sql="SELECT id, operation, seq, course_id FROM courses WHERE seq > :watermark",
        parameters=["watermark"],
        defaults={},
        output={"course_id": "course_id"},
        row_id_column="id",
        operation_column="operation",
        cursor_column="seq",
        cursor_type=CursorType.INTEGER,
        initial_watermark=0,
        operation_markers=dict(DEFAULT_MARKERS),
        schedule="*/15 * * * *",
        description="Lecturer course records",
    )


def _run(status=RunStatus.SUCCESS):
    return SimpleNamespace(
        run_id=uuid.uuid4(),
        query_name="lecturers",
        status=status,
        started_at=datetime(2024, 3, 1, 8, 0),
        completed_at=datetime(2024, 3, 1, 8, 1),
        duration_seconds=60.0,
        rows_read=5,
        rows_emitted=5,
        pages_delivered=3,
        watermark_before="0",
        watermark_after="9",
        error_message=None,
    )


@pytest.fixture
def context(tmp_path):
    """Stand-in for the application context built at startup"""
    context = MagicMock()
    context.ready = True
    context.catalog = Catalog({"lecturers": _template()})
    context.scheduler.is_running.return_value = False
    context.scheduler.in_flight.return_value = []
    context.scheduler.default_schedule = None
    context.watermarks.get = AsyncMock(
        return_value=Watermark(query_name="lecturers", value=9, last_success_at=datetime(2024, 3, 1, 8, 1))
    )
    context.runs.recent = AsyncMock(return_value=[_run()])
    context.stop = AsyncMock()
    context.source_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'source.db'}", poolclass=NullPool
    )
    context.state_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'state.db'}", poolclass=NullPool
    )
    return context


@pytest.fixture
def client(context):
    """Create test client around a pre-configured context"""
    app.state.context = context

    with TestClient(app) as test_client:
        yield test_client

    app.state.context = None


def test_trigger_accepted(client, context):
    context.scheduler.trigger.return_value = TriggerResult.ACCEPTED

    response = client.post("/queries/lecturers/runs")

    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert body["data"]["result"] == "accepted"
    assert body["data"]["status_url"] == "/queries/lecturers"
    context.scheduler.trigger.assert_called_once_with("lecturers")


def test_trigger_already_running(client, context):
    context.scheduler.trigger.return_value = TriggerResult.ALREADY_RUNNING

    response = client.post("/queries/lecturers/runs")

    assert response.status_code == 200
    assert response.json()["data"]["result"] == "already_running"


def test_trigger_unknown_query(client, context):
    context.scheduler.trigger.side_effect = NotFoundError("Unknown query: nope")

    response = client.post("/queries/nope/runs")

    assert response.status_code == 404
    assert response.json() == {"success": False, "data": None, "message": "Unknown query: nope"}


def test_trigger_before_catalog_ready(client, context):
    context.scheduler.trigger.side_effect = CatalogNotReadyError("Catalog not yet validated")

    response = client.post("/queries/lecturers/runs")

    assert response.status_code == 503
    assert response.json()["success"] is False


def test_list_queries(client):
    response = client.get("/queries")

    assert response.status_code == 200
    queries = response.json()["data"]
    assert len(queries) == 1
    assert queries[0]["name"] == "lecturers"
    assert queries[0]["fields"] == ["course_id"]
    assert queries[0]["cursor_type"] == "integer"
    assert queries[0]["incremental"] is True


def test_list_queries_not_ready(client, context):
    context.ready = False

    response = client.get("/queries")

    assert response.status_code == 503


def test_query_status(client):
    response = client.get("/queries/lecturers")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["watermark"] == "9"
    assert data["watermark_is_initial"] is False
    assert data["running"] is False
    assert data["recent_runs"][0]["status"] == "success"
    assert data["recent_runs"][0]["pages_delivered"] == 3


def test_query_status_unknown(client):
    response = client.get("/queries/nope")
    assert response.status_code == 404


def test_list_runs(client, context):
    response = client.get("/runs?query_name=lecturers&limit=5")

    assert response.status_code == 200
    assert len(response.json()["data"]) == 1
    context.runs.recent.assert_awaited_with(query_name="lecturers", limit=5)


def test_request_id_header(client):
    response = client.get("/", headers={"X-Request-ID": "req_test"})

    assert response.headers["X-Request-ID"] == "req_test"
    assert "X-API-Latency-ms" in response.headers


def test_health_healthy(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["catalog_ready"] is True
    assert data["source_connected"] is True
    assert data["state_connected"] is True
    assert data["total_queries"] == 1
    assert data["last_runs"] == {"lecturers": "success"}


def test_health_degraded_after_failed_run(client, context):
    context.runs.recent = AsyncMock(return_value=[_run(RunStatus.FAILED)])

    response = client.get("/health")

    assert response.json()["status"] == "degraded"


def test_health_unhealthy_when_catalog_not_ready(client, context):
    context.ready = False

    response = client.get("/health")

    assert response.json()["status"] == "unhealthy"


def test_get_context_without_startup():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    with pytest.raises(CatalogNotReadyError):
        get_context(request)


def test_get_run(client, context):
    run = _run(RunStatus.PARTIAL)
    context.runs.get = AsyncMock(return_value=run)

    response = client.get(f"/runs/{run.run_id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["run_id"] == str(run.run_id)
    assert data["status"] == "partial"
    assert data["watermark_after"] == "9"
    context.runs.get.assert_awaited_once_with(run.run_id)


def test_get_run_unknown(client, context):
    context.runs.get = AsyncMock(return_value=None)

    response = client.get(f"/runs/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_get_run_rejects_malformed_id(client):
    response = client.get("/runs/not-a-uuid")
    assert response.status_code == 422
