"""Configuration module for cacheflow.

This module contains all configuration-related classes and utilities.
"""

from __future__ import annotations

__all__ = [
    "CacheflowSettings",
    "LocalSettings",
    "RemoteSettings",
    "ScoringSettings",
    "get_settings",
    "configure_logging",
]


def __getattr__(name: str):
    if name in __all__:
        from cacheflow.config import settings

        return getattr(settings, name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
