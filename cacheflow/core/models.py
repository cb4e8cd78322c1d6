"""Domain model shared by the entry stores, the recorder and the dispatcher."""

from __future__ import annotations

import enum
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

__all__ = [
    "CacheEntry",
    "Clock",
    "INSUFFICIENT_DATA",
    "Location",
    "Outcome",
    "epoch_millis",
    "expiry_from_ttl",
    "size_of",
]

INSUFFICIENT_DATA = "Insufficient Data"

Clock = Callable[[], int]


def epoch_millis() -> int:
    """Wall-clock time in integer epoch milliseconds."""
    return int(time.time() * 1000)


def expiry_from_ttl(now: int, ttl_seconds: float | None) -> int | None:
    """Absolute expiry for a TTL in seconds; ``None`` means the entry never expires."""
    if ttl_seconds is None:
        return None
    return now + int(ttl_seconds * 1000)


class Location(str, enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Outcome(str, enum.Enum):
    CACHED = "cached"
    UNCACHED = "uncached"


@dataclass(slots=True)
class CacheEntry:
    """Single cached value."""

    key: str
    value: Any
    expires_at: int | None

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_document(self) -> dict[str, Any]:
        return {"data": self.value, "expire": self.expires_at}


def size_of(value: Any) -> int:
    """Rough in-memory footprint of a JSON-like value, in bytes.

    Booleans count 4 bytes, numbers 8, strings 2 per character; containers
    add up their keys (list indices as strings) and values.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return 4
    if isinstance(value, (int, float)):
        return 8
    if isinstance(value, str):
        return 2 * len(value)
    if isinstance(value, Mapping):
        return sum(size_of(str(k)) + size_of(v) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return sum(size_of(str(i)) + size_of(v) for i, v in enumerate(value))
    return 0
