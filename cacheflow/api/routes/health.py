"""
Health-check and Prometheus endpoints.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from starlette.responses import Response

from cacheflow import __version__
from cacheflow.api.dependencies import get_repository
from cacheflow.api.schemas import HealthResponse
from cacheflow.core.repository import MetricsRepository
from cacheflow.utils.exceptions import BackendError, log_exception
from cacheflow.utils.metrics import get_metrics_content_type, get_prometheus_metrics, update_system_metrics

log = logging.getLogger(__name__)
router = APIRouter(tags=["Health & Monitoring"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(repository: MetricsRepository = Depends(get_repository)) -> HealthResponse:
    try:
        await repository.load_global()
        repository_ok = True
    except BackendError as exc:
        log_exception(exc, level=logging.WARNING, logger=log)
        repository_ok = False

    return HealthResponse(
        status="ok" if repository_ok else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks={"repository": repository_ok},
    )


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    update_system_metrics()
    return Response(content=get_prometheus_metrics(), media_type=get_metrics_content_type())
