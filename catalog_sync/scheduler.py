"""
Fixed cron schedules for ingestion and rollup.

Both jobs run on the API process's event loop through APScheduler. Job errors
are logged and never stop the scheduler; the next tick simply tries again.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from catalog_sync.config import Settings
from catalog_sync.errors import CatalogSyncError
from catalog_sync.pipeline.dispatcher import Dispatcher
from catalog_sync.rollup.engine import RollupEngine
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


def _guarded(name: str, job: Callable[[], Awaitable[object]]) -> Callable[[], Awaitable[None]]:
    async def _run() -> None:
        try:
            await job()
        except CatalogSyncError as exc:
            log.error(f"[SCHEDULE] {name} run failed", extra={"job": name, "error": repr(exc)})
        except Exception:  # noqa: BLE001 - keep the scheduler alive for the next tick
            log.exception(f"[SCHEDULE] {name} run crashed", extra={"job": name})

    return _run


def build_scheduler(
    settings: Settings, dispatcher: Dispatcher, engine: RollupEngine
) -> AsyncIOScheduler:
    """
    Register the dispatch and rollup cron jobs (UTC) on a new scheduler.

    The scheduler is returned unstarted; the caller owns ``start`` and
    ``shutdown``.
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    async def _dispatch() -> None:
        await dispatcher.dispatch(settings.api_key or "", settings.worker_base_url)

    scheduler.add_job(
        _guarded("dispatch", _dispatch),
        CronTrigger.from_crontab(settings.dispatch_cron, timezone="UTC"),
        id="dispatch",
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _guarded("rollup", engine.run),
        CronTrigger.from_crontab(settings.rollup_cron, timezone="UTC"),
        id="rollup",
        max_instances=1,
        coalesce=True,
    )
    log.info(
        "[SCHEDULE] registered jobs",
        extra={"dispatch_cron": settings.dispatch_cron, "rollup_cron": settings.rollup_cron},
    )
    return scheduler


__all__ = ["build_scheduler"]
