"""
Per-owner resource registry.

Each worker identity owns its own bounded work queue, catalog HTTP client, and
database pools. The registry is created once at process start (FastAPI
lifespan or CLI entry point), handed to the dispatcher-side and worker-side
services by reference, and closed at shutdown.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import asyncpg

from catalog_sync.config import Settings
from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.infrastructure.db_factory import TRANSIENT_DB_ERRORS, create_async_pool
from catalog_sync.infrastructure.entity_store import EntityStore, PostgresEntityStore
from catalog_sync.infrastructure.price_history import (
    PostgresPriceHistoryStore,
    PriceHistoryStore,
)
from catalog_sync.infrastructure.retry import RetryPolicy
from catalog_sync.pipeline.work_queue import WorkQueue
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class OwnerResources:
    """Everything one worker identity uses; never shared with another owner."""

    owner_id: str
    queue: WorkQueue
    catalog: CatalogClient
    entity_store: EntityStore
    price_store: PriceHistoryStore
    pools: List[asyncpg.Pool] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.catalog.aclose()
        for pool in self.pools:
            await pool.close()


ResourceFactory = Callable[[str], Awaitable[OwnerResources]]


def db_write_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.db_write_max_attempts,
        base_delay=settings.db_write_delay_seconds,
        backoff="exponential",
        retry_on=TRANSIENT_DB_ERRORS,
    )


class WorkerRegistry:
    """
    Lazily builds and caches ``OwnerResources`` per owner id.

    Parameters
    ----------
    settings : Settings
        Source of pool sizes, DSNs, and queue bounds.
    factory : callable, optional
        Builds resources for an owner id; defaults to Postgres + httpx backed
        resources. Tests inject in-memory fakes here.

    Example
    -------
        async with WorkerRegistry(settings) as registry:
            resources = await registry.resources_for("worker-1")
    """

    def __init__(self, settings: Settings, factory: Optional[ResourceFactory] = None) -> None:
        self.settings = settings
        self._factory = factory or self._build_postgres_resources
        self._resources: Dict[str, OwnerResources] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def _build_postgres_resources(self, owner_id: str) -> OwnerResources:
        settings = self.settings
        size = settings.db_max_concurrency
        write_policy = db_write_policy(settings)

        entity_pool = await create_async_pool(settings.dsn, min_size=1, max_size=size)
        pools = [entity_pool]
        if settings.timeseries_dsn == settings.dsn:
            series_pool = entity_pool
        else:
            series_pool = await create_async_pool(settings.timeseries_dsn, min_size=1, max_size=size)
            pools.append(series_pool)

        return OwnerResources(
            owner_id=owner_id,
            queue=WorkQueue(size, name=owner_id),
            catalog=CatalogClient.from_settings(settings),
            entity_store=PostgresEntityStore(entity_pool, write_policy),
            price_store=PostgresPriceHistoryStore(series_pool, write_policy),
            pools=pools,
        )

    async def resources_for(self, owner_id: str) -> OwnerResources:
        if not owner_id:
            raise ValueError("owner_id is required")
        if self._closed:
            raise RuntimeError("registry is closed")
        async with self._lock:
            resources = self._resources.get(owner_id)
            if resources is None:
                resources = await self._factory(owner_id)
                self._resources[owner_id] = resources
                log.info(
                    f"[REGISTRY] created resources for {owner_id}",
                    extra={"owner_id": owner_id, "concurrency": resources.queue.concurrency},
                )
            return resources

    def owners(self) -> List[str]:
        return sorted(self._resources)

    async def aclose(self) -> None:
        """Close every owner's client and pools; safe to call twice."""
        async with self._lock:
            self._closed = True
            resources, self._resources = list(self._resources.values()), {}
        for entry in resources:
            try:
                await entry.aclose()
            except Exception:  # noqa: BLE001 - keep closing the remaining owners
                log.exception(
                    f"[REGISTRY] failed to close resources for {entry.owner_id}",
                    extra={"owner_id": entry.owner_id},
                )

    async def __aenter__(self) -> "WorkerRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


__all__ = ["OwnerResources", "WorkerRegistry", "db_write_policy"]
