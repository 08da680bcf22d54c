"""
Infrastructure package for Catalog Sync.

Centralizes I/O concerns: database connectivity, the remote catalog client,
the entity and price-history stores, and the shared retry policy. Keep this
layer focused on I/O and resource management, decoupled from pipeline and
rollup logic.
"""

from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.infrastructure.db_factory import (
    create_async_pool,
    get_async_connection,
    get_sync_connection,
)
from catalog_sync.infrastructure.entity_store import EntityStore, PostgresEntityStore
from catalog_sync.infrastructure.price_history import PostgresPriceHistoryStore, PriceHistoryStore
from catalog_sync.infrastructure.retry import RetryPolicy

__all__ = [
    "CatalogClient",
    "create_async_pool",
    "get_async_connection",
    "get_sync_connection",
    "EntityStore",
    "PostgresEntityStore",
    "PostgresPriceHistoryStore",
    "PriceHistoryStore",
    "RetryPolicy",
]
