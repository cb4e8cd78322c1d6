# schemas.py — Pydantic models for the cacheflow metrics viewer
"""Response contracts of the read-only metrics API.

Field names follow the persisted JSON documents (camelCase).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResolverDocument(_Document):
    """Statistics of one cached key."""

    first_call: int = Field(..., description="Epoch millis of the first observed call")
    all_calls: List[int] = Field(default_factory=list, max_length=10)
    number_of_calls: int = Field(..., ge=1)
    average_call_span: Union[float, str] = Field(
        ..., description="Mean interval in ms, or 'Insufficient Data'"
    )
    uncached_call_time: Optional[float] = None
    cached_call_time: Optional[float] = None
    data_size: int = Field(0, ge=0)
    stored_location: str
    cache_threshold: Optional[float] = Field(
        None, description="Adaptive score that made the key worth caching"
    )


class GlobalDocument(_Document):
    """Process-wide rollup."""

    total_requests: int = 0
    cached_count: int = 0
    uncached_count: int = 0
    total_time_saved_ms: float = 0.0
    total_cached_elapsed_ms: float = 0.0
    total_uncached_elapsed_ms: float = 0.0
    average_cached_latency_ms: float = 0.0
    average_uncached_latency_ms: float = 0.0
    average_calls_per_key: float = 0.0
    unique_key_count: int = 0
    total_local_bytes: int = 0
    average_local_bytes_per_key: float = 0.0
    total_remote_bytes: int = 0
    global_average_call_span: float = 0.0
    average_cache_score: float = 0.0


class HealthResponse(BaseModel):
    status: str = Field(..., examples=["ok", "degraded"])
    version: str
    timestamp: str
    checks: Dict[str, bool] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    message: str
    timestamp: str
    context: Optional[Dict[str, Any]] = None
