from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from catalog_sync.errors import ConfigurationError, DispatchError, ProbeError
from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.pipeline.dispatcher import (
    Dispatcher,
    HttpWorkerTransport,
    LocalWorkerTransport,
    worker_url,
)
from catalog_sync.pipeline.service import Acceptance

WORKERS = ["worker-1", "worker-2", "worker-3"]


def _probe_client(settings, total_count=None, status=200) -> CatalogClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"data": [], "totalCount": total_count})

    return CatalogClient.from_settings(
        settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


class _RecordingTransport:
    def __init__(self, failing=(), gate: asyncio.Event = None) -> None:
        self.sent = []
        self.failing = set(failing)
        self.gate = gate

    async def send(self, assignment, base_address) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if assignment.worker_id in self.failing:
            raise DispatchError(f"{assignment.worker_id} unreachable")
        self.sent.append((assignment.worker_id, str(assignment.page_range), base_address))


@pytest.mark.asyncio
async def test_dispatch_probes_partitions_and_sends_each_range(unit_settings) -> None:
    transport = _RecordingTransport()
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=2_500), transport, WORKERS)

    assignments = await dispatcher.dispatch("secret", "http://workers")
    await dispatcher.drain()

    assert [str(a.page_range) for a in assignments] == ["1-4", "5-7", "8-10"]
    assert sorted(transport.sent) == [
        ("worker-1", "1-4", "http://workers"),
        ("worker-2", "5-7", "http://workers"),
        ("worker-3", "8-10", "http://workers"),
    ]


@pytest.mark.asyncio
async def test_dispatch_returns_before_deliveries_finish(unit_settings) -> None:
    gate = asyncio.Event()
    transport = _RecordingTransport(gate=gate)
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=750), transport, WORKERS)

    assignments = await dispatcher.dispatch("secret", "http://workers")

    assert len(assignments) == 3
    assert transport.sent == []
    gate.set()
    await dispatcher.drain()
    assert len(transport.sent) == 3


@pytest.mark.asyncio
async def test_probe_failure_sends_nothing(unit_settings) -> None:
    transport = _RecordingTransport()
    dispatcher = Dispatcher(_probe_client(unit_settings, status=503), transport, WORKERS)

    with pytest.raises(ProbeError):
        await dispatcher.dispatch("secret", "http://workers")
    await dispatcher.drain()

    assert transport.sent == []


@pytest.mark.asyncio
async def test_missing_probe_credential_is_a_configuration_error(unit_settings) -> None:
    transport = _RecordingTransport()
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=10), transport, WORKERS)

    with pytest.raises(ConfigurationError):
        await dispatcher.dispatch("", "http://workers")
    assert transport.sent == []


@pytest.mark.asyncio
async def test_one_failed_send_does_not_affect_the_others(unit_settings) -> None:
    transport = _RecordingTransport(failing={"worker-2"})
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=750), transport, WORKERS)

    await dispatcher.dispatch("secret", "http://workers")
    await dispatcher.drain()

    assert sorted(worker for worker, _, _ in transport.sent) == ["worker-1", "worker-3"]


@pytest.mark.asyncio
async def test_fewer_pages_than_workers_only_reaches_assigned_workers(unit_settings) -> None:
    transport = _RecordingTransport()
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=400), transport, WORKERS)

    assignments = await dispatcher.dispatch("secret", "http://workers")
    await dispatcher.drain()

    assert [a.worker_id for a in assignments] == ["worker-1", "worker-2"]
    assert len(transport.sent) == 2


@pytest.mark.asyncio
async def test_http_transport_posts_range_to_worker_url(unit_settings) -> None:
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append((str(request.url), json.loads(request.content)))
        return httpx.Response(202, json={"message": "ok"})

    transport = HttpWorkerTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=250), transport, WORKERS)

    await dispatcher.dispatch("secret", "http://workers/")
    await dispatcher.drain()

    assert posted == [
        ("http://workers/api/workers/worker-1/sync", {"pageStart": 1, "pageEnd": 1})
    ]


@pytest.mark.asyncio
async def test_http_transport_treats_non_2xx_as_failure(unit_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "down"})

    transport = HttpWorkerTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=250), transport, WORKERS)
    (assignment,) = await dispatcher.dispatch("secret", "http://workers")
    await dispatcher.drain()

    with pytest.raises(DispatchError):
        await transport.send(assignment, "http://workers")


@pytest.mark.asyncio
async def test_local_transport_raises_when_worker_rejects(unit_settings) -> None:
    class _RejectingService:
        def accept(self, worker_id, body) -> Acceptance:
            return Acceptance(500, "credential missing")

    transport = LocalWorkerTransport(_RejectingService())
    dispatcher = Dispatcher(_probe_client(unit_settings, total_count=250), transport, WORKERS)
    (assignment,) = await dispatcher.dispatch("secret", "")
    await dispatcher.drain()

    with pytest.raises(DispatchError, match="credential missing"):
        await transport.send(assignment, "")


def test_worker_url_joins_base_and_worker_id() -> None:
    assert worker_url("http://h:8000/", "worker-4") == "http://h:8000/api/workers/worker-4/sync"
