"""Core module for cacheflow: stores, statistics, decisions and dispatch."""

from __future__ import annotations

__all__ = [
    "CacheContext",
    "CacheDispatcher",
    "CacheEntry",
    "CachePolicy",
    "DecisionEngine",
    "ExpirySweeper",
    "MetricsRecorder",
    "init_cache",
]


def __getattr__(name: str):
    if name in ("CacheContext", "init_cache"):
        from cacheflow.core import context

        return getattr(context, name)
    elif name in ("CacheDispatcher", "CachePolicy"):
        from cacheflow.core import dispatcher

        return getattr(dispatcher, name)
    elif name == "CacheEntry":
        from cacheflow.core.models import CacheEntry

        return CacheEntry
    elif name == "DecisionEngine":
        from cacheflow.core.decision import DecisionEngine

        return DecisionEngine
    elif name == "ExpirySweeper":
        from cacheflow.core.sweeper import ExpirySweeper

        return ExpirySweeper
    elif name == "MetricsRecorder":
        from cacheflow.core.recorder import MetricsRecorder

        return MetricsRecorder
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
