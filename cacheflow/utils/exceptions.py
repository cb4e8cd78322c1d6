"""Exception hierarchy for cacheflow.

This module provides:
- Structured errors with JSON serialization
- Hierarchical exception types for configuration, lookup and backend failures
- Context information and cause chaining for debugging
- A decorator that wraps low-level backend failures and a structured log helper

Errors raised by user-supplied producers are never wrapped: they reach the
caller of :meth:`cacheflow.core.context.CacheContext.cache` unchanged.
"""

from __future__ import annotations

import datetime as dt
import functools
import inspect
import json
import logging
from typing import Any, Callable, Dict, Optional, Type, TypeVar

__all__ = [
    "CacheflowError",
    "ConfigurationError",
    "NotFoundError",
    "BackendError",
    "wrap_exception",
    "log_exception",
]

log = logging.getLogger(__name__)
_T = TypeVar("_T", bound="CacheflowError")


# =============================================================================
# Base Exception Class
# =============================================================================

class CacheflowError(RuntimeError):
    """Base exception class for all cacheflow errors.

    Attributes:
        message: Human-readable error description
        context: Additional context information as key-value pairs
        code: Error code for programmatic handling
        ts_utc: UTC timestamp when the error occurred

    Example:
        try:
            await store.get(key)
        except aiosqlite.Error as e:
            raise CacheflowError(
                "Lookup failed",
                context={"key": key},
                cause=e
            )
    """

    default_code: str = "cacheflow_error"

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.code = self.default_code
        self.ts_utc = dt.datetime.now(dt.timezone.utc)

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a JSON-serializable dictionary.

        Returns:
            Dictionary with the error code, message, ISO timestamp, context
            (if any) and a short description of the underlying cause (if any).
        """
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "timestamp": self.ts_utc.isoformat(),
        }

        if self.context:
            payload["context"] = self.context

        if self.__cause__ is not None:
            payload["cause"] = {
                "type": type(self.__cause__).__name__,
                "message": str(self.__cause__),
            }

        return payload

    def __str__(self) -> str:
        """Return compact JSON representation of the exception."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"), default=str)


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(CacheflowError):
    """Raised when a cache policy, request context or settings object is invalid.

    This exception is used for:
    - A policy that is not a mapping (lists, strings, numbers)
    - Unknown or missing storage location
    - A location whose backend was not configured at initialization
    - A request context that carries no key

    It is always raised before any store, producer or metrics side effect.
    """

    default_code = "configuration_error"


# =============================================================================
# Lookup Errors
# =============================================================================

class NotFoundError(CacheflowError):
    """Raised when a mutation targets a key that was never cached.

    Example:
        if await recorder.get(policy.mutate) is None:
            raise NotFoundError(
                "Data does not exist in cache",
                context={"key": policy.mutate}
            )
    """

    default_code = "not_found"


# =============================================================================
# Backend Errors
# =============================================================================

class BackendError(CacheflowError):
    """Raised for storage or network failures reaching an entry store.

    On the request path it propagates to the caller. The expiry sweeper
    logs it and skips the tick.
    """

    default_code = "backend_error"


# =============================================================================
# Helper Functions and Decorators
# =============================================================================

def wrap_exception(exc_type: Type[_T], message: str):
    """Decorator to wrap any exception in a specific CacheflowError type.

    The original exception is preserved as the cause. Both synchronous and
    asynchronous functions are supported.

    Example:
        @wrap_exception(BackendError, "Failed to read cache entry")
        async def get(self, key: str) -> CacheEntry | None:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def _inner_async(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except CacheflowError:
                # Don't wrap our own exceptions to avoid double-wrapping
                raise
            except Exception as e:
                raise exc_type(message, context={"operation": func.__qualname__}, cause=e) from e

        @functools.wraps(func)
        def _inner_sync(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except CacheflowError:
                raise
            except Exception as e:
                raise exc_type(message, context={"operation": func.__qualname__}, cause=e) from e

        return _inner_async if inspect.iscoroutinefunction(func) else _inner_sync

    return decorator


def log_exception(
    exception: CacheflowError,
    *,
    level: int = logging.ERROR,
    logger: Optional[logging.Logger] = None
) -> None:
    """Log a CacheflowError with a structured JSON payload.

    Example:
        try:
            await sweeper.run_once()
        except BackendError as e:
            log_exception(e, level=logging.WARNING)
    """
    if logger is None:
        logger = log

    logger.log(level, "%s", json.dumps(exception.to_dict(), ensure_ascii=False, default=str))
