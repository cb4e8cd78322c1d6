# dependencies.py — FastAPI dependency helpers for the metrics viewer
"""
Dependency callables exposed to the routes.

Tests swap the repository by passing one to :func:`cacheflow.api.app.create_app`
or through FastAPI's dependency override mechanism.
"""
from __future__ import annotations

from fastapi import Request

from cacheflow.config.settings import CacheflowSettings
from cacheflow.core.repository import MetricsRepository

__all__ = ["get_repository", "get_app_settings"]


def get_repository(request: Request) -> MetricsRepository:
    return request.app.state.repository


def get_app_settings(request: Request) -> CacheflowSettings:
    return request.app.state.settings
