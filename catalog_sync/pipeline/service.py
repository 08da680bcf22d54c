"""
Worker entry point.

Validates an incoming ``{pageStart, pageEnd}`` request for one worker identity,
answers immediately, and runs the sync in the background. The answer is a
status code plus message so the HTTP layer and the in-process transport share
the same rules:

- 202: accepted, processing continues in the background
- 400: body missing, not an object, non-integer bounds, or an invalid range
- 404: unknown worker id
- 500: the worker's catalog credential is not configured
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Set

from pydantic import BaseModel, Field, StrictInt, ValidationError

from catalog_sync.config import Settings
from catalog_sync.domain.models import PageRange, SyncResult
from catalog_sync.errors import ConfigurationError
from catalog_sync.pipeline.registry import OwnerResources, WorkerRegistry
from catalog_sync.pipeline.worker import SyncWorker
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


class SyncRequest(BaseModel):
    """Body accepted by the worker entry point."""

    page_start: StrictInt = Field(..., alias="pageStart")
    page_end: StrictInt = Field(..., alias="pageEnd")

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class Acceptance:
    status_code: int
    message: str
    page_range: Optional[PageRange] = None

    @property
    def accepted(self) -> bool:
        return self.status_code == 202


def _mask(credential: str) -> str:
    return f"{credential[:6]}***"


class WorkerService:
    """
    Accept page ranges for the configured worker identities.

    Parameters
    ----------
    settings : Settings
        Worker ids and per-worker credentials.
    registry : WorkerRegistry
        Source of each worker's queue, client, and stores.
    worker_factory : callable, optional
        Builds a ``SyncWorker`` from owner resources.
    """

    def __init__(
        self,
        settings: Settings,
        registry: WorkerRegistry,
        worker_factory: Callable[[OwnerResources], SyncWorker] = SyncWorker,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self._worker_factory = worker_factory
        self._inflight: Set["asyncio.Task[Optional[SyncResult]]"] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def validate(self, worker_id: str, body: Any) -> Acceptance:
        """Apply the entry-point rules without starting any work."""
        if worker_id not in self.settings.worker_ids():
            return Acceptance(404, f"Unknown worker {worker_id}")
        if not isinstance(body, dict):
            return Acceptance(400, "Missing or invalid JSON body")
        try:
            request = SyncRequest.model_validate(body)
        except ValidationError:
            return Acceptance(400, "Missing or invalid pageStart/pageEnd")
        if request.page_start < 1 or request.page_end < request.page_start:
            return Acceptance(
                400, f"Invalid page range {request.page_start}-{request.page_end}"
            )
        if not self.settings.credential_for(worker_id):
            return Acceptance(500, f"Catalog credential for {worker_id} is not configured")
        page_range = PageRange(start=request.page_start, end=request.page_end)
        return Acceptance(202, f"Worker {worker_id} started for pages {page_range}", page_range)

    def accept(self, worker_id: str, body: Any) -> Acceptance:
        """
        Validate and, when valid, start the sync in the background.

        Must be called from a running event loop. Does not wait for any page.
        """
        acceptance = self.validate(worker_id, body)
        page_range = acceptance.page_range
        if not acceptance.accepted or page_range is None:
            log.warning(
                f"[WORKER] {worker_id} rejected request ({acceptance.status_code})",
                extra={"worker_id": worker_id, "status": acceptance.status_code},
            )
            return acceptance

        credential = self.settings.credential_for(worker_id) or ""
        log.info(
            f"[WORKER] {worker_id} received range {page_range}",
            extra={"worker_id": worker_id, "credential": _mask(credential)},
        )
        task = asyncio.create_task(
            self._run_background(worker_id, page_range, credential),
            name=f"sync-{worker_id}-{page_range}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return acceptance

    async def run(self, worker_id: str, page_range: PageRange) -> SyncResult:
        """Run a range in the foreground and return its result."""
        credential = self.settings.credential_for(worker_id)
        if not credential:
            raise ConfigurationError(f"Catalog credential for {worker_id} is not configured")
        resources = await self.registry.resources_for(worker_id)
        return await self._worker_factory(resources).run(page_range, credential)

    async def _run_background(
        self, worker_id: str, page_range: PageRange, credential: str
    ) -> Optional[SyncResult]:
        try:
            resources = await self.registry.resources_for(worker_id)
            result = await self._worker_factory(resources).run(page_range, credential)
        except Exception:  # noqa: BLE001 - nobody awaits this task; log and end
            log.exception(
                f"[WORKER] {worker_id} error processing pages {page_range}",
                extra={"worker_id": worker_id},
            )
            return None
        log.info(
            f"[WORKER] {worker_id} finished pages {page_range}",
            extra={"worker_id": worker_id, "processed_pages": result.processed_page_count},
        )
        return result

    async def drain(self) -> None:
        """Wait for background syncs (used at shutdown and in local mode)."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


__all__ = ["Acceptance", "SyncRequest", "WorkerService"]
