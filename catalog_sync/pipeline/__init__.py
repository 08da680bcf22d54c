"""
Fan-out ingestion pipeline.

Dispatcher -> per-worker ``SyncWorker`` -> per-owner ``WorkQueue`` -> store
writes. Per-owner resources live in a ``WorkerRegistry`` created once per
process.
"""

from catalog_sync.pipeline.dispatcher import (
    Dispatcher,
    HttpWorkerTransport,
    LocalWorkerTransport,
    assign_pages,
    partition_pages,
)
from catalog_sync.pipeline.registry import OwnerResources, WorkerRegistry
from catalog_sync.pipeline.service import Acceptance, WorkerService
from catalog_sync.pipeline.work_queue import WorkQueue
from catalog_sync.pipeline.worker import SyncWorker

__all__ = [
    "Dispatcher",
    "HttpWorkerTransport",
    "LocalWorkerTransport",
    "assign_pages",
    "partition_pages",
    "OwnerResources",
    "WorkerRegistry",
    "Acceptance",
    "WorkerService",
    "WorkQueue",
    "SyncWorker",
]
