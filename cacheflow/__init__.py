"""cacheflow 0.3.0

Adaptive caching middleware for per-key computations such as GraphQL
resolvers.

This package provides:
- A dispatcher that serves, computes-and-stores or just computes a value
- Per-key and global call statistics driving an adaptive cache score
- Local (SQLite) and remote (Redis) entry stores with TTL
- A background sweeper reclaiming expired entries
- A read-only metrics viewer (CLI and FastAPI) plus Prometheus metrics
"""

from __future__ import annotations

import logging
from typing import Any

__version__ = "0.3.0"
__description__ = "Adaptive, statistics-driven caching for resolvers"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "CacheContext",
    "CacheflowSettings",
    "init_cache",
    "open_cache",
    "compute_score",
    "create_app",
    "get_settings",
]


# Lazy imports keep `import cacheflow` free of the web and Redis stacks
def __getattr__(name: str) -> Any:
    if name in ("CacheContext", "init_cache", "open_cache"):
        from cacheflow.core import context

        return getattr(context, name)
    elif name == "compute_score":
        from cacheflow.core.decision import compute_score

        return compute_score
    elif name in ("CacheflowSettings", "get_settings"):
        from cacheflow.config import settings

        return getattr(settings, name)
    elif name == "create_app":
        from cacheflow.api.app import create_app

        return create_app
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
