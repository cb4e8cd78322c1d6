"""cacheflow.api.app
===================

FastAPI application exposing the metric documents read-only.

Key points
----------
* Lifespan-managed :class:`~cacheflow.core.repository.SQLiteMetricsRepository`
  over the same SQLite file the cache writes (no hidden globals).
* :class:`~cacheflow.utils.exceptions.CacheflowError` subclasses map to
  HTTP status codes and render their ``to_dict()`` payload.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cacheflow import __version__
from cacheflow.api.routes import health, metrics
from cacheflow.config.settings import CacheflowSettings, configure_logging, get_settings
from cacheflow.core.repository import MetricsRepository, SQLiteMetricsRepository
from cacheflow.utils.exceptions import BackendError, CacheflowError, ConfigurationError, NotFoundError
from cacheflow.utils.metrics import MET_ERRORS_TOTAL

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    ConfigurationError: 400,
    NotFoundError: 404,
    BackendError: 503,
}


def create_app(
    settings: CacheflowSettings | None = None,
    *,
    repository: MetricsRepository | None = None,
) -> FastAPI:
    """Build the viewer app; an injected *repository* is used as is and never closed."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        owned: SQLiteMetricsRepository | None = None
        if getattr(app.state, "repository", None) is None:
            owned = SQLiteMetricsRepository(settings.sqlite_path)
            await owned.open()
            app.state.repository = owned
            logger.info("Metrics repository opened at %s", settings.sqlite_path)
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()
                app.state.repository = None
                logger.info("Metrics repository closed")

    app = FastAPI(
        title="cacheflow metrics",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Metrics", "description": "Per-key and global cache statistics"},
            {"name": "Health & Monitoring", "description": "Liveness and Prometheus"},
        ],
    )
    app.state.settings = settings
    app.state.repository = repository

    @app.exception_handler(CacheflowError)
    async def _cacheflow_error(request: Request, exc: CacheflowError) -> JSONResponse:
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
        )
        MET_ERRORS_TOTAL.labels(type=exc.code, component="api").inc()
        if status_code >= 500:
            logger.error("Request %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(health.router)
    app.include_router(metrics.router)
    return app
