"""Utilities module for cacheflow."""

from __future__ import annotations

__all__ = [
    "CacheflowError",
    "ConfigurationError",
    "NotFoundError",
    "BackendError",
    "get_prometheus_metrics",
]


def __getattr__(name: str):
    if name in ("CacheflowError", "ConfigurationError", "NotFoundError", "BackendError"):
        from cacheflow.utils import exceptions

        return getattr(exceptions, name)
    elif name == "get_prometheus_metrics":
        from cacheflow.utils.metrics import get_prometheus_metrics

        return get_prometheus_metrics
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
