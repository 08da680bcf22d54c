"""
Rollup / retention engine.

One run moves through ``Idle -> LockAcquired -> Rolling -> Pruning -> Released``:

- Idle: try the cluster-wide run lock; if another process holds it the run is
  ``skipped`` (logged at INFO, not an error).
- LockAcquired: sanity ping, ensure the rollup tables exist.
- Rolling: per tier, fine to coarse, upsert the last non-null value of every
  bucket touched by the tier's lookback window. Never deletes.
- Pruning: execute the prune plan computed once from the run's ``now``. A step
  that still fails after retries is recorded and the next step runs.
- Released: the lock is released whatever happened before.

Any error outside a prune step ends the run as ``failure`` and is re-raised as
``RollupFailed`` once the lock has been released.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import asyncpg

from catalog_sync.config import Settings
from catalog_sync.errors import RollupError, RollupFailed
from catalog_sync.infrastructure.db_factory import (
    TRANSIENT_DB_ERRORS,
    create_async_pool,
    get_async_connection,
)
from catalog_sync.infrastructure.price_history import RAW_TABLE
from catalog_sync.infrastructure.retry import RetryPolicy
from catalog_sync.rollup.lock import RunLock, RunLockLike
from catalog_sync.rollup.tiers import (
    PruneStep,
    Tier,
    lookback_start,
    plan_from_settings,
    tiers_from_settings,
)
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


class RollupState(str, enum.Enum):
    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    ROLLING = "rolling"
    PRUNING = "pruning"
    RELEASED = "released"


class RollupOutcome(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILURE = "failure"


@dataclass
class RollupReport:
    """What one run did; returned on success/skip, attached to ``RollupFailed``."""

    started_at: datetime
    outcome: Optional[RollupOutcome] = None
    states: List[RollupState] = field(default_factory=lambda: [RollupState.IDLE])
    upserted: Dict[str, int] = field(default_factory=dict)
    deleted: Dict[str, int] = field(default_factory=dict)
    prune_failures: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    finished_at: Optional[datetime] = None

    def enter(self, state: RollupState) -> None:
        self.states.append(state)

    @property
    def state(self) -> RollupState:
        return self.states[-1]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value if self.outcome else None,
            "states": [state.value for state in self.states],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "upserted": dict(self.upserted),
            "deleted": dict(self.deleted),
            "prune_failures": dict(self.prune_failures),
            "error": self.error,
        }


class StatementRunner(Protocol):
    """The slice of ``asyncpg.Pool`` the engine needs."""

    async def execute(self, query: str, *args: Any) -> str:
        ...

    async def fetchval(self, query: str, *args: Any) -> Any:
        ...

    async def close(self) -> None:
        ...


LockFactory = Callable[[], RunLockLike]
PoolFactory = Callable[[], Awaitable[StatementRunner]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def affected_rows(status: str) -> int:
    """Row count from a command tag such as ``INSERT 0 12`` or ``DELETE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


@lru_cache(maxsize=8)
def ensure_table_sql(table: str) -> str:
    return (
        f"CREATE TABLE IF NOT EXISTS {table} ("
        " entity_id TEXT NOT NULL,"
        " bucket_start TIMESTAMPTZ NOT NULL,"
        " last_value DOUBLE PRECISION NOT NULL,"
        " last_observed_at TIMESTAMPTZ NOT NULL,"
        " PRIMARY KEY (entity_id, bucket_start)"
        f"); CREATE INDEX IF NOT EXISTS {table}_bucket_start_idx ON {table} (bucket_start)"
    )


@lru_cache(maxsize=8)
def rollup_sql(tier: Tier) -> str:
    """
    Upsert the latest non-null sample per (entity, bucket) from ``$1`` onwards.

    ``$1`` may be NULL (no lower bound). Ties on ``observed_at`` resolve to the
    larger value so reruns pick the same row. An existing bucket is only
    overwritten by a sample at least as recent as the one it holds.
    """
    return f"""
        INSERT INTO {tier.table} AS t (entity_id, bucket_start, last_value, last_observed_at)
        SELECT DISTINCT ON (entity_id, bucket)
            entity_id, bucket, value, observed_at
        FROM (
            SELECT entity_id, {tier.bucket_sql} AS bucket, value, observed_at
            FROM {RAW_TABLE}
            WHERE value IS NOT NULL
              AND ($1::timestamptz IS NULL OR observed_at >= $1::timestamptz)
        ) AS samples
        ORDER BY entity_id, bucket, observed_at DESC, value DESC
        ON CONFLICT (entity_id, bucket_start) DO UPDATE
        SET last_value = EXCLUDED.last_value,
            last_observed_at = EXCLUDED.last_observed_at
        WHERE EXCLUDED.last_observed_at >= t.last_observed_at
    """


@lru_cache(maxsize=16)
def prune_sql(table: str, column: str) -> str:
    return (
        f"DELETE FROM {table} WHERE ctid IN ("
        f"SELECT ctid FROM {table} WHERE {column} < $1 LIMIT $2)"
    )


def rollup_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.rollup_max_attempts,
        base_delay=settings.rollup_base_delay_seconds,
        backoff="exponential",
        jitter=True,
        retry_on=TRANSIENT_DB_ERRORS,
    )


class RollupEngine:
    """
    Runs rollup passes against the time-series store.

    Parameters
    ----------
    settings : Settings
        Tier windows, batch size, lock name, retry ceiling.
    lock_factory : callable, optional
        Builds a fresh run lock per run.
    pool_factory : callable, optional
        Opens the connection pool used for rollup/prune statements.
    clock : callable, optional
        Source of the run's fixed ``now``.
    """

    def __init__(
        self,
        settings: Settings,
        lock_factory: Optional[LockFactory] = None,
        pool_factory: Optional[PoolFactory] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self.tiers: Sequence[Tier] = tiers_from_settings(settings)
        self.retry = rollup_policy(settings)
        self._lock_factory = lock_factory or self._default_lock
        self._pool_factory = pool_factory or self._default_pool
        self._clock = clock

    def _default_lock(self) -> RunLock:
        dsn = self.settings.timeseries_dsn
        return RunLock(self.settings.rollup_lock_name, lambda: get_async_connection(dsn))

    async def _default_pool(self) -> asyncpg.Pool:
        return await create_async_pool(self.settings.timeseries_dsn, min_size=1, max_size=2)

    async def run(self) -> RollupReport:
        """
        Execute one rollup/retention pass.

        Raises
        ------
        RollupFailed
            When the run failed outside an individual prune step. The lock has
            already been released and ``report`` is attached.
        """
        now = self._clock()
        report = RollupReport(started_at=now)
        lock = self._lock_factory()

        try:
            acquired = await lock.acquire()
        except Exception as exc:
            report.outcome = RollupOutcome.FAILURE
            report.error = repr(exc)
            report.finished_at = self._clock()
            log.error("[ROLLUP] could not reach the run lock", extra={"error": repr(exc)})
            raise RollupFailed("rollup could not acquire its run lock", report) from exc

        if not acquired:
            report.outcome = RollupOutcome.SKIPPED
            report.finished_at = self._clock()
            log.info(
                "[ROLLUP] another run holds the lock; skipping",
                extra={"lock": self.settings.rollup_lock_name},
            )
            return report

        failure: Optional[BaseException] = None
        pool: Optional[StatementRunner] = None
        log.info("[ROLLUP START]", extra={"now": now.isoformat()})
        try:
            report.enter(RollupState.LOCK_ACQUIRED)
            pool = await self._pool_factory()
            await self._prepare(pool)

            report.enter(RollupState.ROLLING)
            for tier in self.tiers:
                report.upserted[tier.name] = await self._rollup_tier(pool, tier, now)

            report.enter(RollupState.PRUNING)
            for step in plan_from_settings(now, self.settings):
                await self._run_prune_step(pool, step, report)

            report.outcome = RollupOutcome.SUCCESS
        except Exception as exc:  # noqa: BLE001 - surfaced as RollupFailed after release
            failure = exc
            report.outcome = RollupOutcome.FAILURE
            report.error = repr(exc)
            log.error(
                f"[ROLLUP] failed while {report.state.value}",
                extra={"state": report.state.value, "error": repr(exc)},
            )
        finally:
            if pool is not None:
                try:
                    await pool.close()
                except Exception:  # noqa: BLE001 - the lock must still be released
                    log.exception("[ROLLUP] failed to close statement pool")
            try:
                await lock.release()
            except Exception:  # noqa: BLE001 - session end releases the lock anyway
                log.exception("[ROLLUP] failed to release run lock")
            report.enter(RollupState.RELEASED)
            report.finished_at = self._clock()

        if failure is not None:
            raise RollupFailed(f"rollup failed: {failure!r}", report) from failure

        log.info(
            "[ROLLUP COMPLETE]",
            extra={
                "upserted": report.upserted,
                "deleted": report.deleted,
                "prune_failures": len(report.prune_failures),
            },
        )
        return report

    async def _prepare(self, pool: StatementRunner) -> None:
        ping = await self.retry.call("sanity ping", lambda: pool.fetchval("SELECT 1"))
        if ping != 1:
            raise RollupError("time-series store sanity check returned an unexpected value")
        for tier in self.tiers:
            ddl = ensure_table_sql(tier.table)
            await self.retry.call(f"ensure {tier.table}", lambda: pool.execute(ddl))

    async def _rollup_tier(self, pool: StatementRunner, tier: Tier, now: datetime) -> int:
        since = lookback_start(tier, now)
        status = await self.retry.call(
            f"rollup {tier.name}", lambda: pool.execute(rollup_sql(tier), since)
        )
        count = affected_rows(status)
        log.info(
            f"[ROLLUP] {tier.name}: {count} buckets upserted",
            extra={
                "tier": tier.name,
                "since": since.isoformat() if since else None,
                "upserted": count,
            },
        )
        return count

    async def _run_prune_step(
        self, pool: StatementRunner, step: PruneStep, report: RollupReport
    ) -> None:
        try:
            report.deleted[step.name] = await self._prune(pool, step)
        except Exception as exc:  # noqa: BLE001 - remaining prune steps still run
            report.prune_failures[step.name] = repr(exc)
            log.error(
                f"[ROLLUP] prune {step.name} failed",
                extra={"step": step.name, "table": step.table, "error": repr(exc)},
            )

    async def _prune(self, pool: StatementRunner, step: PruneStep) -> int:
        batch_size = self.settings.prune_batch_size
        sql = prune_sql(step.table, step.column)
        total = 0
        while True:
            status = await self.retry.call(
                f"prune {step.name}", lambda: pool.execute(sql, step.cutoff, batch_size)
            )
            deleted = affected_rows(status)
            total += deleted
            if deleted < batch_size:
                break
        log.info(
            f"[ROLLUP] prune {step.name}: {total} rows older than {step.cutoff.isoformat()}",
            extra={"step": step.name, "table": step.table, "deleted": total},
        )
        return total


__all__ = [
    "RollupEngine",
    "RollupOutcome",
    "RollupReport",
    "RollupState",
    "affected_rows",
    "ensure_table_sql",
    "prune_sql",
    "rollup_policy",
    "rollup_sql",
]
