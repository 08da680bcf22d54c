"""
Sync worker: fetch a page range and feed its writes through the owner's queue.

Pages are fetched one after another in increasing order. Each fetched page is
handed to the owner's ``WorkQueue`` as one transform-and-upsert unit without
waiting for it, so fetching page N+1 overlaps the writes of page N while the
number of pages writing at once stays within the queue bound. Once every page
has been fetched and submitted, the worker waits for all submitted units to
settle and reports counts.

Failure isolation:
- a page that still fails after the fetch retries is recorded and skipped;
- an entity that fails to write is logged and its siblings continue;
- a failed sample batch is logged and does not fail the page.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from catalog_sync.domain.models import PageRange, PriceSample, SyncResult
from catalog_sync.errors import ConfigurationError, PageFetchError
from catalog_sync.pipeline.registry import OwnerResources
from catalog_sync.pipeline.transform import build_entity_record, build_price_sample
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PageOutcome:
    page: int
    entities_upserted: int = 0
    entity_failures: int = 0
    samples_appended: int = 0


class SyncWorker:
    """
    Process page ranges for one owner.

    Parameters
    ----------
    resources : OwnerResources
        The owner's queue, catalog client, and stores.
    params : mapping, optional
        Extra query parameters sent with every page request.
    clock : callable, optional
        Source of sample timestamps.
    """

    def __init__(
        self,
        resources: OwnerResources,
        params: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.resources = resources
        self.params: Dict[str, Any] = dict(params or {})
        self._clock = clock

    @property
    def owner_id(self) -> str:
        return self.resources.owner_id

    async def _process_page(self, page: int, entities: Sequence[Mapping[str, Any]]) -> PageOutcome:
        outcome = PageOutcome(page=page)
        samples: List[PriceSample] = []

        for raw in entities:
            entity_id = raw.get("id") if isinstance(raw, Mapping) else None
            try:
                record = build_entity_record(raw)
                await self.resources.entity_store.replace_entity(record)
            except Exception as exc:  # noqa: BLE001 - one entity must not sink its page
                outcome.entity_failures += 1
                log.error(
                    f"[SYNC] {self.owner_id} entity {entity_id} failed on page {page}",
                    extra={
                        "owner_id": self.owner_id,
                        "page": page,
                        "entity_id": entity_id,
                        "error": repr(exc),
                    },
                )
                continue
            outcome.entities_upserted += 1
            samples.append(build_price_sample(raw, self._clock()))

        try:
            outcome.samples_appended = await self.resources.price_store.append_samples(samples)
        except Exception as exc:  # noqa: BLE001 - entity rows are already committed
            log.error(
                f"[SYNC] {self.owner_id} price samples for page {page} not recorded",
                extra={
                    "owner_id": self.owner_id,
                    "page": page,
                    "samples": len(samples),
                    "error": repr(exc),
                },
            )

        log.info(
            f"[SYNC] {self.owner_id} done page {page}",
            extra={
                "owner_id": self.owner_id,
                "page": page,
                "upserted": outcome.entities_upserted,
                "failures": outcome.entity_failures,
            },
        )
        return outcome

    async def run(self, page_range: PageRange, credential: str) -> SyncResult:
        """
        Fetch every page of ``page_range`` and wait for all page writes to settle.

        Raises
        ------
        ConfigurationError
            If no credential is given; nothing is fetched.
        """
        if not credential:
            raise ConfigurationError(f"{self.owner_id}: catalog credential is not configured")

        result = SyncResult(owner_id=self.owner_id, page_range=page_range)
        queue = self.resources.queue
        handles: List["asyncio.Future[PageOutcome]"] = []

        log.info(
            f"[SYNC START] {self.owner_id} pages {page_range}",
            extra={
                "owner_id": self.owner_id,
                "page_start": page_range.start,
                "page_end": page_range.end,
            },
        )

        for page in page_range.pages():
            try:
                fetched = await self.resources.catalog.fetch_page(self.params, page, credential)
            except PageFetchError as exc:
                result.failed_pages.append(page)
                log.error(
                    f"[SYNC] {self.owner_id} skipping page {page}",
                    extra={"owner_id": self.owner_id, "page": page, "error": repr(exc.cause)},
                )
                continue

            result.processed_page_count += 1
            result.total_entities_seen += len(fetched.data)
            log.info(
                f"[SYNC] {self.owner_id} fetched page {page} with {len(fetched.data)} entities",
                extra={"owner_id": self.owner_id, "page": page, "entities": len(fetched.data)},
            )

            entities = fetched.data
            handles.append(queue.push(lambda p=page, e=entities: self._process_page(p, e)))

        log.info(
            f"[SYNC] {self.owner_id} submitted {len(handles)} page tasks; waiting for writes",
            extra={"owner_id": self.owner_id, "pending": queue.pending, "running": queue.running},
        )

        for outcome in await asyncio.gather(*handles, return_exceptions=True):
            if isinstance(outcome, BaseException):
                result.failed_tasks += 1
                log.error(
                    f"[SYNC] {self.owner_id} page task failed",
                    extra={"owner_id": self.owner_id, "error": repr(outcome)},
                )
                continue
            result.entities_upserted += outcome.entities_upserted
            result.entity_failures += outcome.entity_failures
            result.samples_appended += outcome.samples_appended

        log.info(
            f"[SYNC COMPLETE] {self.owner_id} pages {page_range}",
            extra=result.model_dump(mode="json"),
        )
        return result


__all__ = ["SyncWorker", "PageOutcome"]
