"""
FastAPI application factory for the health surface.

Manifesto:
    The pipeline has no request/response API. What operators and the
    container orchestrator need is a liveness answer that reflects the one
    dependency the workers cannot run without (the database) and a look at
    the counters.

Routes:
    GET /healthz   200 when ``SELECT 1`` succeeds (always 200 in bypass mode),
                   503 otherwise
    GET /metrics   JSON snapshot of the in-process metrics registry, plus
                   worker-pool statistics when a pool is attached

Tags:
    api, health, metrics, FastAPI, pnp-ingest
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from pnp_ingest import __version__
from pnp_ingest.core.logging import get_logger
from pnp_ingest.observability.metrics import IngestMetrics
from pnp_ingest.storage.engine import check_connectivity

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("api.starting", version=app.version)
    yield
    logger.info("api.stopping")


def create_app(
    engine: Engine | None,
    metrics: IngestMetrics | None = None,
    *,
    stats: Callable[[], dict[str, Any]] | None = None,
) -> FastAPI:
    """Build the health app.

    Parameters
    ----------
    engine:
        Database engine to check; ``None`` means bypass mode.
    metrics:
        Registry served on ``/metrics``.
    stats:
        Optional callable returning worker-pool statistics.
    """
    metrics = metrics or IngestMetrics()
    app = FastAPI(title="pnp-ingest", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.metrics = metrics

    @app.get("/healthz", tags=["health"])
    def healthz() -> JSONResponse:
        if engine is None:
            return JSONResponse({"status": "ok", "database": "bypassed", "version": __version__})
        if check_connectivity(engine):
            return JSONResponse({"status": "ok", "database": "up", "version": __version__})
        return JSONResponse(
            {"status": "unavailable", "database": "down", "version": __version__},
            status_code=503,
        )

    @app.get("/metrics", tags=["observability"])
    def metrics_endpoint() -> dict[str, Any]:
        body: dict[str, Any] = {"metrics": metrics.snapshot()}
        if stats is not None:
            body["workers"] = stats()
        return body

    return app
