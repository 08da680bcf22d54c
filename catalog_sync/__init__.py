"""
Catalog Sync - paginated catalog ingestion with a tiered price time-series.

This package ingests a large paginated trading-card catalog into PostgreSQL and
keeps a derived price history downsampled and bounded:

- Partitioner / dispatcher fanning page ranges out to a fixed set of workers
- Sync workers with per-owner bounded work queues
- Transactional entity replacement and append-only price samples
- Tiered rollup (daily, 3-day, monthly, 6-month) with batched pruning under a
  cluster-wide run lock
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from catalog_sync.config import Settings, get_settings
from catalog_sync.errors import CatalogSyncError
from catalog_sync.utils.logging import configure_logging, get_logger
from catalog_sync.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "CatalogSyncError",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
