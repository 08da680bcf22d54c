"""
Partitioner / dispatcher ("manager").

Probes the catalog for its size, splits ``[1, totalPages]`` across a fixed set
of workers, and hands each worker its range without waiting for the worker to
finish. Delivery is at-most-once: a send that fails is logged for that worker
and not retried, and the other workers are still reached.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Sequence, Set, runtime_checkable

import httpx

from catalog_sync.config import Settings
from catalog_sync.domain.models import PageRange, WorkerAssignment
from catalog_sync.errors import ConfigurationError, DispatchError
from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.pipeline.service import WorkerService
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


def partition_pages(total_pages: int, worker_count: int) -> List[Optional[PageRange]]:
    """
    Split ``[1, total_pages]`` across ``worker_count`` workers.

    Every worker gets ``total_pages // worker_count`` pages and the first
    ``total_pages % worker_count`` workers get one more. Ranges follow each
    other in worker order. A worker whose share is zero pages gets ``None``.

    Example
    -------
        >>> [str(r) for r in partition_pages(10, 3)]
        ['1-4', '5-7', '8-10']
    """
    if worker_count < 1:
        raise ValueError("worker_count must be >= 1")
    if total_pages < 0:
        raise ValueError("total_pages must be >= 0")

    base, extra = divmod(total_pages, worker_count)
    ranges: List[Optional[PageRange]] = []
    next_start = 1
    for index in range(worker_count):
        size = base + (1 if index < extra else 0)
        if size == 0:
            ranges.append(None)
            continue
        ranges.append(PageRange(start=next_start, end=next_start + size - 1))
        next_start += size
    return ranges


def assign_pages(total_pages: int, worker_ids: Sequence[str]) -> List[WorkerAssignment]:
    """Bind the partition to worker identities, dropping empty shares."""
    return [
        WorkerAssignment(worker_index=index, worker_id=worker_ids[index], page_range=page_range)
        for index, page_range in enumerate(partition_pages(total_pages, len(worker_ids)))
        if page_range is not None
    ]


@runtime_checkable
class WorkerTransport(Protocol):
    """Delivers one assignment to its worker; raises on failure."""

    async def send(self, assignment: WorkerAssignment, base_address: str) -> None:
        ...


def worker_url(base_address: str, worker_id: str) -> str:
    return f"{base_address.rstrip('/')}/api/workers/{worker_id}/sync"


class HttpWorkerTransport:
    """POST ``{pageStart, pageEnd}`` to the worker's HTTP entry point."""

    def __init__(self, client: httpx.AsyncClient, timeout_seconds: float = 5.0) -> None:
        self._client = client
        self._timeout = timeout_seconds

    async def send(self, assignment: WorkerAssignment, base_address: str) -> None:
        url = worker_url(base_address, assignment.worker_id)
        try:
            response = await self._client.post(
                url,
                json={
                    "pageStart": assignment.page_range.start,
                    "pageEnd": assignment.page_range.end,
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DispatchError(f"posting to {url} failed: {exc!r}") from exc


class LocalWorkerTransport:
    """Hand the range to an in-process ``WorkerService``."""

    def __init__(self, service: WorkerService) -> None:
        self._service = service

    async def send(self, assignment: WorkerAssignment, base_address: str) -> None:
        del base_address
        acceptance = self._service.accept(
            assignment.worker_id,
            {"pageStart": assignment.page_range.start, "pageEnd": assignment.page_range.end},
        )
        if not acceptance.accepted:
            raise DispatchError(
                f"{assignment.worker_id} rejected range {assignment.page_range}: "
                f"{acceptance.status_code} {acceptance.message}"
            )


class Dispatcher:
    """
    Probe, partition, and fire one delivery per worker.

    Parameters
    ----------
    catalog : CatalogClient
        Used for the total-count probe.
    transport : WorkerTransport
        How ranges reach workers.
    worker_ids : sequence of str
        Fixed worker identities, in partition order.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        transport: WorkerTransport,
        worker_ids: Sequence[str],
    ) -> None:
        if not worker_ids:
            raise ValueError("at least one worker id is required")
        self.catalog = catalog
        self.transport = transport
        self.worker_ids = list(worker_ids)
        self._inflight: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls, settings: Settings, catalog: CatalogClient, transport: WorkerTransport
    ) -> "Dispatcher":
        return cls(catalog=catalog, transport=transport, worker_ids=settings.worker_ids())

    async def dispatch(self, credential: str, base_address: str) -> List[WorkerAssignment]:
        """
        Assign ranges and start delivering them; returns without waiting.

        Raises
        ------
        ConfigurationError
            Missing probe credential; nothing is dispatched.
        ProbeError
            Total page count unavailable; nothing is dispatched.
        """
        if not credential:
            raise ConfigurationError("catalog credential for the total-count probe is not configured")

        total_pages = await self.catalog.probe_total_pages(credential)
        assignments = assign_pages(total_pages, self.worker_ids)
        log.info(
            f"[DISPATCH] {total_pages} pages across {len(self.worker_ids)} workers",
            extra={
                "total_pages": total_pages,
                "workers": len(self.worker_ids),
                "assigned": len(assignments),
            },
        )

        for assignment in assignments:
            task = asyncio.create_task(
                self._deliver(assignment, base_address), name=f"dispatch-{assignment.worker_id}"
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
        return assignments

    async def _deliver(self, assignment: WorkerAssignment, base_address: str) -> bool:
        try:
            await self.transport.send(assignment, base_address)
        except Exception as exc:  # noqa: BLE001 - one unreachable worker must not stop the rest
            log.error(
                f"[DISPATCH] failed to reach {assignment.worker_id}",
                extra={
                    "worker_id": assignment.worker_id,
                    "page_start": assignment.page_range.start,
                    "page_end": assignment.page_range.end,
                    "error": repr(exc),
                },
            )
            return False
        log.info(
            f"[DISPATCH] sent pages {assignment.page_range} to {assignment.worker_id}",
            extra={"worker_id": assignment.worker_id},
        )
        return True

    async def drain(self) -> None:
        """Wait until every pending delivery has either landed or failed."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


__all__ = [
    "partition_pages",
    "assign_pages",
    "worker_url",
    "WorkerTransport",
    "HttpWorkerTransport",
    "LocalWorkerTransport",
    "Dispatcher",
]
