"""
Cluster-wide run lock for the rollup engine.

A Postgres session advisory lock held on a dedicated connection. Acquisition
never waits: if another process holds the lock the caller gets ``False`` and
skips its run. The lock lives as long as the session, so closing the
connection releases it even if the explicit unlock is never reached.
"""

from __future__ import annotations

import hashlib
from typing import Awaitable, Callable, Optional, Protocol

import asyncpg

from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)

Connect = Callable[[], Awaitable[asyncpg.Connection]]


def lock_key(name: str) -> int:
    """Stable signed 64-bit key for ``name`` (the ``bigint`` advisory lock space)."""
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class RunLockLike(Protocol):
    async def acquire(self) -> bool:
        ...

    async def release(self) -> None:
        ...


class RunLock:
    """
    Non-blocking advisory lock keyed by ``lock_key(name)``.

    Parameters
    ----------
    name : str
        Lock identity shared by every process that must not run concurrently.
    connect : callable
        Opens the dedicated connection the lock is held on.
    """

    def __init__(self, name: str, connect: Connect) -> None:
        self.name = name
        self.key = lock_key(name)
        self._connect = connect
        self._conn: Optional[asyncpg.Connection] = None

    @property
    def held(self) -> bool:
        return self._conn is not None

    async def acquire(self) -> bool:
        if self._conn is not None:
            raise RuntimeError(f"run lock {self.name!r} is already held by this instance")
        conn = await self._connect()
        try:
            acquired = await conn.fetchval("SELECT pg_try_advisory_lock($1::bigint)", self.key)
        except BaseException:
            await conn.close()
            raise
        if not acquired:
            await conn.close()
            return False
        self._conn = conn
        log.debug(f"[LOCK] acquired {self.name}", extra={"lock": self.name, "key": self.key})
        return True

    async def release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.fetchval("SELECT pg_advisory_unlock($1::bigint)", self.key)
        finally:
            await conn.close()
            log.debug(f"[LOCK] released {self.name}", extra={"lock": self.name})


__all__ = ["RunLock", "RunLockLike", "lock_key"]
