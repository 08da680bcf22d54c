"""
Domain package for Catalog Sync.

Exports the data definitions shared by the fan-out pipeline and the rollup
engine. Keep this package focused on data definitions and validation concerns.
"""

from catalog_sync.domain.models import (
    EntityRecord,
    PageRange,
    PageResult,
    PriceSample,
    SyncResult,
    WorkerAssignment,
)

__all__ = [
    "EntityRecord",
    "PageRange",
    "PageResult",
    "PriceSample",
    "SyncResult",
    "WorkerAssignment",
]
