"""
Relational entity store.

Writes one ``EntityRecord`` as a single transaction: connect-or-create the
parent set, delete the card's owned child rows, upsert the card row, and
recreate the children. Either the whole replacement lands or none of it does,
so a reader never sees a card with half of its children.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Protocol, Sequence, Tuple, runtime_checkable

import asyncpg

from catalog_sync.domain.models import EntityRecord
from catalog_sync.infrastructure.retry import RetryPolicy

ROOT_TABLE = "card"
PARENT_TABLE = "card_set"

# Owned collections of a card, all keyed by ``card_id``.
CHILD_TABLES: Tuple[str, ...] = (
    "card_attack",
    "card_ability",
    "card_weakness",
    "card_resistance",
    "card_legality",
    "card_image",
    "card_tcgplayer_price",
    "card_cardmarket_price",
)


@runtime_checkable
class EntityStore(Protocol):
    """Idempotent-by-primary-key writer for catalog entities."""

    async def replace_entity(self, record: EntityRecord) -> None:
        ...


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


@lru_cache(maxsize=64)
def _insert_sql(table: str, columns: Tuple[str, ...]) -> str:
    placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
    column_list = ", ".join(_quote(column) for column in columns)
    return f"INSERT INTO {_quote(table)} ({column_list}) VALUES ({placeholders})"


@lru_cache(maxsize=16)
def _upsert_sql(table: str, columns: Tuple[str, ...], key: str, update: bool) -> str:
    base = _insert_sql(table, columns)
    if not update:
        return f"{base} ON CONFLICT ({_quote(key)}) DO NOTHING"
    assignments = ", ".join(
        f"{_quote(column)} = EXCLUDED.{_quote(column)}" for column in columns if column != key
    )
    return f"{base} ON CONFLICT ({_quote(key)}) DO UPDATE SET {assignments}"


def _row_values(row: Dict[str, Any], columns: Sequence[str]) -> List[Any]:
    return [row.get(column) for column in columns]


class PostgresEntityStore:
    """
    ``EntityStore`` backed by an asyncpg pool scoped to one worker.

    Parameters
    ----------
    pool : asyncpg.Pool
        Pool owned by the worker's registry entry.
    retry : RetryPolicy
        Policy for transient connection/serialization failures; a retried
        attempt replays the whole transaction.
    """

    def __init__(self, pool: asyncpg.Pool, retry: RetryPolicy) -> None:
        self._pool = pool
        self._retry = retry

    async def _write(self, record: EntityRecord) -> None:
        unknown = set(record.children) - set(CHILD_TABLES)
        if unknown:
            raise ValueError(f"unknown child tables for {record.entity_id}: {sorted(unknown)}")

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                if record.parent:
                    parent_columns = tuple(record.parent)
                    await conn.execute(
                        _upsert_sql(PARENT_TABLE, parent_columns, "id", False),
                        *_row_values(record.parent, parent_columns),
                    )

                for table in CHILD_TABLES:
                    await conn.execute(
                        f"DELETE FROM {_quote(table)} WHERE card_id = $1", record.entity_id
                    )

                root_columns = tuple(record.root)
                await conn.execute(
                    _upsert_sql(ROOT_TABLE, root_columns, "id", True),
                    *_row_values(record.root, root_columns),
                )

                for table, rows in record.children.items():
                    if not rows:
                        continue
                    columns = ("card_id", *rows[0].keys())
                    await conn.executemany(
                        _insert_sql(table, columns),
                        [[record.entity_id, *_row_values(row, columns[1:])] for row in rows],
                    )

    async def replace_entity(self, record: EntityRecord) -> None:
        """Replace the card and its children in one transaction."""
        await self._retry.call(f"replace entity {record.entity_id}", lambda: self._write(record))


__all__ = ["EntityStore", "PostgresEntityStore", "CHILD_TABLES"]
