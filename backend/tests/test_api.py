"""API route tests. Lifespan is disabled; the store and dispatcher are injected via dependency overrides."""
from __future__ import annotations

from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from shared.models.enums import JobStatus

from api.app import create_app
from api.dependencies import get_db, get_dispatcher, get_redis, get_store
from conftest import InMemoryJobStore


class FakeDispatcher:
    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.busy: set[str] = set()
        self.closed = False

    def running(self, job_id: str) -> bool:
        return job_id in self.busy

    @property
    def active_jobs(self) -> list[str]:
        return sorted(self.busy)

    def submit(self, job_id: str) -> bool:
        if self.closed:
            return False
        self.submitted.append(job_id)
        return True


@pytest.fixture
def store() -> InMemoryJobStore:
    store = InMemoryJobStore()
    store.add_job("job-1", [("Jane Doe", "c1", "p1"), ("John Roe", "c2", "p2")])
    return store


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def client(store: InMemoryJobStore, dispatcher: FakeDispatcher) -> Iterator[TestClient]:
    """Test client with lifespan disabled so routes run without DB/Redis."""
    app = create_app(use_lifespan=False)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as c:
        yield c


def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("service") == "api"


def test_health_returns_json(client: TestClient) -> None:
    """GET /health returns application/json."""
    r = client.get("/health")
    assert r.headers.get("content-type", "").startswith("application/json")


def test_request_id_is_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["x-request-id"] == "abc123"


def test_process_schedules_and_returns_immediately(client: TestClient, dispatcher: FakeDispatcher) -> None:
    r = client.post("/v1/jobs/job-1/process")
    assert r.status_code == 202
    assert r.json() == {
        "success": True,
        "job_id": "job-1",
        "message": "Job processing started in background",
    }
    assert dispatcher.submitted == ["job-1"]


def test_process_unknown_job_is_404(client: TestClient, dispatcher: FakeDispatcher) -> None:
    r = client.post("/v1/jobs/nope/process")
    assert r.status_code == 404
    body = r.json()
    assert body["error"] == "not_found"
    assert "nope" in body["message"]
    assert dispatcher.submitted == []


def test_process_already_running_is_409(client: TestClient, dispatcher: FakeDispatcher) -> None:
    dispatcher.busy.add("job-1")
    r = client.post("/v1/jobs/job-1/process")
    assert r.status_code == 409
    assert dispatcher.submitted == []


def test_process_while_shutting_down_is_503(client: TestClient, dispatcher: FakeDispatcher) -> None:
    dispatcher.closed = True
    r = client.post("/v1/jobs/job-1/process")
    assert r.status_code == 503


def test_get_job_progress(client: TestClient, store: InMemoryJobStore) -> None:
    store.set_status("job-1", JobStatus.PROCESSING)
    store.jobs["job-1"].snapshot.completed_submissions = 1

    r = client.get("/v1/jobs/job-1")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "Processing"
    assert data["total_submissions"] == 2
    assert data["completed_submissions"] == 1
    assert data["progress_pct"] == 50.0
    assert data["completion_email_sent"] is False


def test_get_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/v1/jobs/nope").status_code == 404


def test_ready_reports_dependencies(store: InMemoryJobStore, dispatcher: FakeDispatcher) -> None:
    session = MagicMock()
    session.execute = AsyncMock()
    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=session)
    session_cm.__aexit__ = AsyncMock(return_value=None)
    db = MagicMock()
    db.read_session.return_value = session_cm

    dispatcher.busy.add("job-1")
    app = create_app(use_lifespan=False)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_redis] = lambda: None
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    with TestClient(app) as c:
        r = c.get("/ready")

    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": True, "redis": True, "active_jobs": 1}
