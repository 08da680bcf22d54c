"""
HTTP surface for Catalog Sync.

One FastAPI app hosts the dispatcher trigger, every worker entry point, the
manual rollup trigger, and a health check. Long-lived components (worker
registry, dispatcher, rollup engine, scheduler) are created in the lifespan
and closed on shutdown; components passed to ``create_app`` are used as-is and
left for the caller to close.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from catalog_sync import __version__
from catalog_sync.config import Settings, get_settings
from catalog_sync.errors import ConfigurationError, ProbeError, RollupFailed
from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.pipeline.dispatcher import Dispatcher, HttpWorkerTransport
from catalog_sync.pipeline.registry import WorkerRegistry
from catalog_sync.pipeline.service import WorkerService
from catalog_sync.rollup.engine import RollupEngine
from catalog_sync.scheduler import build_scheduler
from catalog_sync.utils.logging import get_logger

log = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    registry: Optional[WorkerRegistry] = None,
    service: Optional[WorkerService] = None,
    dispatcher: Optional[Dispatcher] = None,
    engine: Optional[RollupEngine] = None,
) -> FastAPI:
    """
    Build the application.

    Parameters
    ----------
    settings : Settings, optional
        Defaults to ``get_settings()``.
    registry, service, dispatcher, engine : optional
        Pre-built components (tests inject fakes here).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app_registry, app_service = registry, service
        app_dispatcher, app_engine = dispatcher, engine
        async with AsyncExitStack() as stack:
            if app_service is None:
                if app_registry is None:
                    app_registry = await stack.enter_async_context(WorkerRegistry(settings))
                app_service = WorkerService(settings, app_registry)
                stack.push_async_callback(app_service.drain)
            if app_dispatcher is None:
                http = await stack.enter_async_context(httpx.AsyncClient())
                catalog = CatalogClient.from_settings(settings)
                stack.push_async_callback(catalog.aclose)
                app_dispatcher = Dispatcher.from_settings(
                    settings,
                    catalog,
                    HttpWorkerTransport(http, settings.dispatch_timeout_seconds),
                )
                stack.push_async_callback(app_dispatcher.drain)
            if app_engine is None:
                app_engine = RollupEngine(settings)

            app.state.settings = settings
            app.state.service = app_service
            app.state.dispatcher = app_dispatcher
            app.state.engine = app_engine

            if settings.scheduler_enabled:
                scheduler = build_scheduler(settings, app_dispatcher, app_engine)
                scheduler.start()
                stack.callback(scheduler.shutdown, wait=False)

            log.info(
                "[API] started",
                extra={
                    "workers": settings.worker_count,
                    "scheduler": settings.scheduler_enabled,
                    "env": settings.app_env,
                },
            )
            yield
            log.info("[API] shutting down")

    app = FastAPI(title="Catalog Sync", version=__version__, lifespan=lifespan)

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__}

    @app.api_route("/api/dispatch", methods=["GET", "POST"])
    async def trigger_dispatch(request: Request) -> JSONResponse:
        app_dispatcher: Dispatcher = request.app.state.dispatcher
        try:
            assignments = await app_dispatcher.dispatch(
                settings.api_key or "", settings.worker_base_url
            )
        except ConfigurationError as exc:
            log.error("[DISPATCH] not configured", extra={"error": str(exc)})
            return JSONResponse(status_code=500, content={"message": str(exc)})
        except ProbeError as exc:
            log.error("[DISPATCH] probe failed", extra={"error": str(exc)})
            return JSONResponse(status_code=502, content={"message": str(exc)})
        return JSONResponse(
            status_code=202,
            content={
                "message": f"Dispatched {len(assignments)} page ranges",
                "assignments": [
                    {
                        "workerId": assignment.worker_id,
                        "pageStart": assignment.page_range.start,
                        "pageEnd": assignment.page_range.end,
                    }
                    for assignment in assignments
                ],
            },
        )

    @app.post("/api/workers/{worker_id}/sync")
    async def worker_sync(worker_id: str, request: Request) -> JSONResponse:
        app_service: WorkerService = request.app.state.service
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(status_code=400, content={"message": "Invalid JSON body"})
        acceptance = app_service.accept(worker_id, body)
        return JSONResponse(
            status_code=acceptance.status_code, content={"message": acceptance.message}
        )

    @app.post("/api/rollup")
    async def trigger_rollup(request: Request) -> JSONResponse:
        app_engine: RollupEngine = request.app.state.engine
        try:
            report = await app_engine.run()
        except RollupFailed as exc:
            content: Dict[str, Any] = {"message": str(exc)}
            if exc.report is not None:
                content["report"] = exc.report.as_dict()
            return JSONResponse(status_code=500, content=content)
        return JSONResponse(status_code=200, content=report.as_dict())

    return app


__all__ = ["create_app"]
