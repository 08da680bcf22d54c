from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import httpx
import typer
import uvicorn

from catalog_sync.config import Settings, get_settings
from catalog_sync.domain.models import PageRange, SyncResult
from catalog_sync.errors import CatalogSyncError, RollupFailed
from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.infrastructure.db_factory import get_sync_connection
from catalog_sync.pipeline.dispatcher import (
    Dispatcher,
    HttpWorkerTransport,
    LocalWorkerTransport,
    assign_pages,
)
from catalog_sync.pipeline.registry import WorkerRegistry
from catalog_sync.pipeline.service import WorkerService
from catalog_sync.reporter import print_partition, print_rollup_report, print_sync_result
from catalog_sync.rollup.engine import RollupEngine
from catalog_sync.utils.logging import configure_logging
from catalog_sync.utils.profiler import profile_block

app = typer.Typer(help="Catalog Sync CLI.")


def _setup() -> Settings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return settings


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    series = "entity store" if settings.timescale_url is None else "TIMESCALE_URL"
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"series={series} | catalog={settings.catalog_base_url} pageSize={settings.page_size} | "
        f"workers={settings.worker_count} dbConcurrency={settings.db_max_concurrency}"
    )
    typer.echo(
        f"raw={settings.raw_retention_hours}h daily={settings.daily_retention_days}d "
        f"3d={settings.three_day_retention_days}d monthly={settings.monthly_retention_months} "
        f"6m={settings.six_month_retention_months} terminal={settings.terminal_retention_years}y | "
        f"scheduler={settings.scheduler_enabled} dispatch='{settings.dispatch_cron}' "
        f"rollup='{settings.rollup_cron}'"
    )


@app.command()
def partition(
    pages: Optional[int] = typer.Option(
        None,
        "--pages",
        "-p",
        help="Total pages to split; probes the catalog when omitted.",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        help="Override number of workers (default from settings).",
    ),
) -> None:
    """
    Show how pages would be split across workers.
    """
    settings = _setup()
    worker_count = workers or settings.worker_count
    if pages is None:
        pages = asyncio.run(_probe(settings))
    worker_ids = [f"worker-{index + 1}" for index in range(worker_count)]
    print_partition(pages, assign_pages(pages, worker_ids), worker_count)


async def _probe(settings: Settings) -> int:
    catalog = CatalogClient.from_settings(settings)
    try:
        return await catalog.probe_total_pages(settings.api_key or "")
    finally:
        await catalog.aclose()


async def _dispatch(settings: Settings, local: bool) -> None:
    catalog = CatalogClient.from_settings(settings)
    try:
        if local:
            async with WorkerRegistry(settings) as registry:
                service = WorkerService(settings, registry)
                dispatcher = Dispatcher.from_settings(
                    settings, catalog, LocalWorkerTransport(service)
                )
                await dispatcher.dispatch(settings.api_key or "", settings.worker_base_url)
                await dispatcher.drain()
                await service.drain()
            return

        async with httpx.AsyncClient() as http:
            dispatcher = Dispatcher.from_settings(
                settings, catalog, HttpWorkerTransport(http, settings.dispatch_timeout_seconds)
            )
            await dispatcher.dispatch(settings.api_key or "", settings.worker_base_url)
            await dispatcher.drain()
    finally:
        await catalog.aclose()


@app.command()
def dispatch(
    local: bool = typer.Option(
        False,
        "--local",
        help="Run every worker in this process instead of posting to WORKER_BASE_URL.",
    ),
) -> None:
    """
    Probe the catalog and hand a page range to every worker.
    """
    settings = _setup()
    typer.echo(
        f"Dispatching to {settings.worker_count} workers "
        f"({'in-process' if local else settings.worker_base_url})."
    )
    asyncio.run(_dispatch(settings, local))


async def _sync(settings: Settings, worker_id: str, page_range: PageRange) -> SyncResult:
    async with WorkerRegistry(settings) as registry:
        return await WorkerService(settings, registry).run(worker_id, page_range)


@app.command()
def sync(
    start: int = typer.Option(..., "--start", help="First page (1-based)."),
    end: int = typer.Option(..., "--end", help="Last page (inclusive)."),
    worker: str = typer.Option(
        "worker-1", "--worker", "-w", help="Worker identity whose credential and queue to use."
    ),
) -> None:
    """
    Sync one page range in the foreground and report the result.
    """
    settings = _setup()
    try:
        page_range = PageRange(start=start, end=end)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    with profile_block(f"sync {worker} {page_range}") as stats:
        result = asyncio.run(_sync(settings, worker, page_range))
    print_sync_result(result, stats)


@app.command()
def rollup(
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """
    Run one rollup/retention pass.
    """
    settings = _setup()
    engine = RollupEngine(settings)
    with profile_block("rollup") as stats:
        try:
            report = asyncio.run(engine.run())
        except RollupFailed as exc:
            report = exc.report
            if report is None:
                raise
    if as_json:
        typer.echo(json.dumps(report.as_dict(), indent=2))
    else:
        print_rollup_report(report, stats)
    if report.error:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
) -> None:
    """
    Run the HTTP surface (dispatch, worker entry points, rollup, schedules).
    """
    from catalog_sync.api import create_app

    settings = _setup()
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@app.command()
def ping() -> None:
    """
    Check both stores answer a trivial query.
    """
    settings = _setup()
    targets = {"entity store": settings.dsn}
    if settings.timeseries_dsn != settings.dsn:
        targets["time-series store"] = settings.timeseries_dsn

    for label, dsn in targets.items():
        with get_sync_connection(dsn) as conn:
            row = conn.execute("SELECT now()").fetchone()
        typer.echo(f"{label}: ok (server time {row[0]})")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
    except CatalogSyncError as exc:
        typer.echo(f"Error: {exc}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
