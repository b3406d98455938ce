import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI, Query, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Match

from testbench import crud, metrics, simulators
from testbench.chain import ChainCoordinator
from testbench.config import Settings

logger = logging.getLogger(__name__)


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def route_template(request):
    """Matched route path, so /metrics labels don't explode on random URLs.

    Call after the request has been routed. Router entries without a
    `path` (included sub-routers on newer FastAPI) are skipped.
    """
    path = getattr(request.scope.get("route"), "path", None)
    if path:
        return path
    for route in request.app.router.routes:
        path = getattr(route, "path", None)
        if path is None:
            continue
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return path
    return "unmatched"


def create_app(settings=None, client: Optional[httpx.AsyncClient] = None):
    """
    Build one test bench instance.

    Pass `client` to control where chain hops go (tests route them to other
    in-process apps). Without one, the lifespan opens its own AsyncClient.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app):
        logger.info("Test bench instance %s (%s) starting, chain discipline: %s",
                    settings.instance_id, settings.instance_name, settings.discipline)
        if client is not None:
            yield
        else:
            async with httpx.AsyncClient(timeout=settings.hop_timeout) as owned:
                app.state.coordinator = ChainCoordinator(settings, owned)
                yield
        app.state.store.close()

    app = FastAPI(title="Observability Test Bench", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = crud.CrudStore()
    if client is not None:
        app.state.coordinator = ChainCoordinator(settings, client)

    app.include_router(simulators.router)
    app.include_router(crud.router)

    # -- Metrics middleware --

    @app.middleware("http")
    async def record_metrics(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            metrics.observe(request.method, route_template(request), 500,
                            time.perf_counter() - start)
            raise
        metrics.observe(request.method, route_template(request), response.status_code,
                        time.perf_counter() - start)
        return response

    # -- Endpoints --

    @app.get("/chain")
    async def chain(request: Request,
                    seq: Optional[str] = None,
                    trace_id: Optional[str] = Query(None, alias="traceId")):
        """One hop of the cascading chain. See testbench.chain."""
        body, status_code = await request.app.state.coordinator.handle(seq, trace_id)
        return JSONResponse(status_code=status_code, content=body)

    @app.get("/metrics")
    def prometheus_metrics():
        """Request and chain-hop counters for this one instance, scrape each separately."""
        content, media_type = metrics.render()
        return Response(content=content, media_type=media_type)

    # -- Error handling --

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException):
        if exc.status_code != 404:
            return await http_exception_handler(request, exc)
        return JSONResponse(
            status_code=404,
            content={
                "error": "Not Found",
                "message": f"Route {request.method} {request.url.path} not found",
                "timestamp": now_iso(),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": str(exc),
                "timestamp": now_iso(),
            },
        )

    return app
