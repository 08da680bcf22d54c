"""
Append-only writer for the raw ``price_history`` time-series table.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

import asyncpg

from catalog_sync.domain.models import PriceSample
from catalog_sync.infrastructure.retry import RetryPolicy

RAW_TABLE = "price_history"

_INSERT_SAMPLE = (
    "INSERT INTO price_history (entity_id, observed_at, value, source) VALUES ($1, $2, $3, $4)"
)


@runtime_checkable
class PriceHistoryStore(Protocol):
    async def append_samples(self, samples: Sequence[PriceSample]) -> int:
        ...


class PostgresPriceHistoryStore:
    """Appends one page's samples as a single batch."""

    def __init__(self, pool: asyncpg.Pool, retry: RetryPolicy) -> None:
        self._pool = pool
        self._retry = retry

    async def _insert(self, samples: Sequence[PriceSample]) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    _INSERT_SAMPLE,
                    [(s.entity_id, s.observed_at, s.value, s.source) for s in samples],
                )

    async def append_samples(self, samples: Sequence[PriceSample]) -> int:
        if not samples:
            return 0
        await self._retry.call(f"append {len(samples)} price samples", lambda: self._insert(samples))
        return len(samples)


__all__ = ["PriceHistoryStore", "PostgresPriceHistoryStore", "RAW_TABLE"]
