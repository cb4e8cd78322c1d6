"""Read-only HTTP viewer for cacheflow metrics."""

from __future__ import annotations

__all__ = [
    "create_app",
    "HealthResponse",
    "ResolverDocument",
    "GlobalDocument",
]


def __getattr__(name: str):
    if name == "create_app":
        from cacheflow.api.app import create_app

        return create_app
    elif name in ("HealthResponse", "ResolverDocument", "GlobalDocument"):
        from cacheflow.api import schemas

        return getattr(schemas, name)
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
