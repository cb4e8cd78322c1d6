"""
Read-only access to the persisted metric documents.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, Path

from cacheflow.api.dependencies import get_repository
from cacheflow.api.schemas import GlobalDocument, ResolverDocument
from cacheflow.core.repository import MetricsRepository
from cacheflow.utils.exceptions import NotFoundError

log = logging.getLogger(__name__)
router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.get(
    "/global",
    response_model=GlobalDocument,
    response_model_by_alias=True,
    summary="Process-wide rollup",
)
async def global_metrics(repository: MetricsRepository = Depends(get_repository)) -> GlobalDocument:
    document = await repository.load_global()
    if document is None:
        raise NotFoundError("No global metrics recorded yet")
    return GlobalDocument.model_validate(document)


@router.get(
    "/resolvers",
    response_model=Dict[str, ResolverDocument],
    response_model_by_alias=True,
    summary="Statistics of every key",
)
async def list_resolvers(
    repository: MetricsRepository = Depends(get_repository),
) -> Dict[str, ResolverDocument]:
    documents = await repository.load_resolvers()
    return {key: ResolverDocument.model_validate(doc) for key, doc in documents.items()}


@router.get(
    "/resolvers/{key}",
    response_model=ResolverDocument,
    response_model_by_alias=True,
    summary="Statistics of one key",
)
async def get_resolver(
    key: str = Path(..., description="Cache key, e.g. a resolver field name"),
    repository: MetricsRepository = Depends(get_repository),
) -> ResolverDocument:
    document = await repository.load_resolver(key)
    if document is None:
        raise NotFoundError("No metrics recorded for this key", context={"key": key})
    return ResolverDocument.model_validate(document)
