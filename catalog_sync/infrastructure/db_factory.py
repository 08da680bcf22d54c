"""
Database connection factory utilities for Catalog Sync.

Async access (sync workers, rollup engine) goes through asyncpg pools and
connections; synchronous tooling (``ping``, seed script, integration fixtures)
uses psycopg. Every session runs in UTC so bucket arithmetic in SQL matches
the Python side.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

from typing import Optional

import asyncpg
import psycopg
from psycopg import Connection
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from catalog_sync.config import get_settings

_SERVER_SETTINGS = {"timezone": "UTC", "application_name": "catalog-sync"}

TRANSIENT_DB_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    ConnectionError,
    OSError,
    TimeoutError,
)

_CONNECT_ERRORS = (OSError, asyncpg.exceptions.PostgresConnectionError)


def build_dsn() -> str:
    """Compose the entity store DSN from settings."""
    return get_settings().dsn


def build_timeseries_dsn() -> str:
    """DSN of the time-series store (entity store when ``TIMESCALE_URL`` is unset)."""
    return get_settings().timeseries_dsn


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Parameters
    ----------
    dsn : str, optional
        Override; defaults to the entity store DSN.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn(), options="-c timezone=UTC")


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(_CONNECT_ERRORS),
    reraise=True,
)
async def get_async_connection(dsn: str) -> asyncpg.Connection:
    """
    Open a dedicated asyncpg connection with automatic retry.

    Used where a session must outlive individual statements (the rollup run
    lock is a session-level advisory lock).
    """
    return await asyncpg.connect(dsn, server_settings=_SERVER_SETTINGS)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(_CONNECT_ERRORS),
    reraise=True,
)
async def create_async_pool(dsn: str, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    """
    Create an asyncpg pool with automatic retry.

    Parameters
    ----------
    dsn : str
        Target database.
    min_size : int
        Minimum number of idle connections to keep.
    max_size : int
        Maximum total connections in the pool.
    """
    return await asyncpg.create_pool(
        dsn,
        min_size=min(min_size, max_size),
        max_size=max_size,
        server_settings=_SERVER_SETTINGS,
    )


__all__ = [
    "TRANSIENT_DB_ERRORS",
    "build_dsn",
    "build_timeseries_dsn",
    "get_sync_connection",
    "get_async_connection",
    "create_async_pool",
]
