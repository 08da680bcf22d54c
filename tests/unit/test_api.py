from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from catalog_sync.api import create_app
from catalog_sync.domain.models import PageRange, SyncResult, WorkerAssignment
from catalog_sync.errors import ProbeError, RollupFailed
from catalog_sync.pipeline.service import WorkerService
from catalog_sync.rollup.engine import RollupOutcome, RollupReport

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


class _FakeRegistry:
    async def resources_for(self, owner_id: str):
        return owner_id


class _FakeWorker:
    def __init__(self, resources) -> None:
        self.owner_id = resources

    async def run(self, page_range, credential) -> SyncResult:
        return SyncResult(owner_id=self.owner_id, page_range=page_range)


class _FakeDispatcher:
    def __init__(self, error: Exception = None) -> None:
        self.error = error
        self.calls = []

    async def dispatch(self, credential, base_address):
        self.calls.append((credential, base_address))
        if self.error:
            raise self.error
        return [
            WorkerAssignment(
                worker_index=0, worker_id="worker-1", page_range=PageRange(start=1, end=2)
            )
        ]

    async def drain(self) -> None:
        return None


class _FakeEngine:
    def __init__(self, outcome=RollupOutcome.SUCCESS, fail=False) -> None:
        self.outcome = outcome
        self.fail = fail

    async def run(self) -> RollupReport:
        report = RollupReport(started_at=NOW, outcome=self.outcome)
        if self.fail:
            report.error = "RuntimeError('boom')"
            raise RollupFailed("rollup failed", report)
        return report


@pytest.fixture
def make_client(settings_factory):
    def _make(dispatcher=None, engine=None, **overrides) -> TestClient:
        settings = settings_factory(
            worker_base_url="http://workers", worker_api_keys={"worker-2": "k2"}, **overrides
        )
        service = WorkerService(settings, _FakeRegistry(), worker_factory=_FakeWorker)
        app = create_app(
            settings,
            service=service,
            dispatcher=dispatcher or _FakeDispatcher(),
            engine=engine or _FakeEngine(),
        )
        return TestClient(app)

    return _make


def test_healthz(make_client) -> None:
    with make_client() as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_worker_sync_accepts_valid_range(make_client) -> None:
    with make_client() as client:
        response = client.post("/api/workers/worker-2/sync", json={"pageStart": 1, "pageEnd": 5})

    assert response.status_code == 202
    assert "1-5" in response.json()["message"]


@pytest.mark.parametrize(
    "content",
    [b"", b"not json", b"[1, 2]", b'{"pageStart": 1}', b'{"pageStart": "a", "pageEnd": 2}'],
)
def test_worker_sync_rejects_bad_bodies(make_client, content: bytes) -> None:
    with make_client() as client:
        response = client.post(
            "/api/workers/worker-1/sync",
            content=content,
            headers={"content-type": "application/json"},
        )

    assert response.status_code == 400


def test_worker_sync_rejects_inverted_range(make_client) -> None:
    with make_client() as client:
        response = client.post("/api/workers/worker-1/sync", json={"pageStart": 9, "pageEnd": 3})

    assert response.status_code == 400


def test_worker_sync_unknown_worker(make_client) -> None:
    with make_client() as client:
        response = client.post("/api/workers/worker-99/sync", json={"pageStart": 1, "pageEnd": 1})

    assert response.status_code == 404


def test_worker_sync_without_credential(make_client) -> None:
    with make_client(api_key=None) as client:
        response = client.post("/api/workers/worker-1/sync", json={"pageStart": 1, "pageEnd": 1})

    assert response.status_code == 500


@pytest.mark.parametrize("method", ["GET", "POST"])
def test_dispatch_trigger(make_client, method: str) -> None:
    dispatcher = _FakeDispatcher()
    with make_client(dispatcher=dispatcher) as client:
        response = client.request(method, "/api/dispatch")

    assert response.status_code == 202
    assert response.json()["assignments"] == [
        {"workerId": "worker-1", "pageStart": 1, "pageEnd": 2}
    ]
    assert dispatcher.calls == [("shared-key", "http://workers")]


def test_dispatch_probe_failure(make_client) -> None:
    with make_client(dispatcher=_FakeDispatcher(ProbeError("no total"))) as client:
        response = client.post("/api/dispatch")

    assert response.status_code == 502


def test_rollup_skipped_is_not_an_error(make_client) -> None:
    with make_client(engine=_FakeEngine(outcome=RollupOutcome.SKIPPED)) as client:
        response = client.post("/api/rollup")

    assert response.status_code == 200
    assert response.json()["outcome"] == "skipped"


def test_rollup_failure_returns_report(make_client) -> None:
    with make_client(engine=_FakeEngine(outcome=RollupOutcome.FAILURE, fail=True)) as client:
        response = client.post("/api/rollup")

    assert response.status_code == 500
    assert response.json()["report"]["error"] == "RuntimeError('boom')"
