"""cacheflow.core.recorder
========================
Per-key call statistics and the process-wide rollup that feed the
decision engine.

Every mutation happens under one ``asyncio.Lock`` and is written through
to the :class:`~cacheflow.core.repository.MetricsRepository`, so the
documents the viewer reads are always complete and valid JSON.

Document shapes
---------------
Per key::

    {"firstCall": 1700000000000, "allCalls": [...], "numberOfCalls": 3,
     "averageCallSpan": 12.5 | "Insufficient Data", "uncachedCallTime": 41.0,
     "cachedCallTime": 0.3, "dataSize": 24, "storedLocation": "local",
     "cacheThreshold": 1.4 | null}

Global: a flat camelCase record of :class:`GlobalMetrics`.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from collections import deque
from dataclasses import dataclass, field, fields
from typing import Any

from cacheflow.core.models import (
    INSUFFICIENT_DATA,
    Clock,
    Location,
    Outcome,
    epoch_millis,
    size_of,
)
from cacheflow.core.repository import MetricsRepository
from cacheflow.utils.metrics import LOCAL_BYTES, REMOTE_BYTES

log = logging.getLogger(__name__)

__all__ = [
    "CALL_WINDOW",
    "GlobalMetrics",
    "MetricsRecorder",
    "ResolverMetrics",
]

CALL_WINDOW = 10
_MISSING: Any = object()


###############################################################################
# Records
###############################################################################

@dataclass
class ResolverMetrics:
    """Statistics of one key; created on its first call and never deleted."""

    key: str
    first_call_at: int
    recent_call_timestamps: deque[int] = field(default_factory=lambda: deque(maxlen=CALL_WINDOW))
    call_count: int = 0
    average_call_interval: float | str = INSUFFICIENT_DATA
    last_uncached_latency_ms: float | None = None
    last_cached_latency_ms: float | None = None
    data_size_bytes: int = 0
    storage_location: Location = Location.LOCAL
    cache_score: float | None = None

    @property
    def oldest_call(self) -> int:
        return self.recent_call_timestamps[0]

    @property
    def newest_call(self) -> int:
        return self.recent_call_timestamps[-1]

    def to_document(self) -> dict[str, Any]:
        return {
            "firstCall": self.first_call_at,
            "allCalls": list(self.recent_call_timestamps),
            "numberOfCalls": self.call_count,
            "averageCallSpan": self.average_call_interval,
            "uncachedCallTime": self.last_uncached_latency_ms,
            "cachedCallTime": self.last_cached_latency_ms,
            "dataSize": self.data_size_bytes,
            "storedLocation": self.storage_location.value,
            "cacheThreshold": self.cache_score,
        }


_GLOBAL_DOCUMENT_NAMES = {
    "total_requests": "totalRequests",
    "cached_count": "cachedCount",
    "uncached_count": "uncachedCount",
    "total_time_saved_ms": "totalTimeSavedMs",
    "total_cached_elapsed_ms": "totalCachedElapsedMs",
    "total_uncached_elapsed_ms": "totalUncachedElapsedMs",
    "average_cached_latency_ms": "averageCachedLatencyMs",
    "average_uncached_latency_ms": "averageUncachedLatencyMs",
    "average_calls_per_key": "averageCallsPerKey",
    "unique_key_count": "uniqueKeyCount",
    "total_local_bytes": "totalLocalBytes",
    "average_local_bytes_per_key": "averageLocalBytesPerKey",
    "total_remote_bytes": "totalRemoteBytes",
    "global_average_call_span": "globalAverageCallSpan",
    "average_cache_score": "averageCacheScore",
}


@dataclass
class GlobalMetrics:
    """Process-wide rollup, updated after every dispatcher call."""

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

    def to_document(self) -> dict[str, Any]:
        return {_GLOBAL_DOCUMENT_NAMES[f.name]: getattr(self, f.name) for f in fields(self)}


###############################################################################
# Recorder
###############################################################################

class MetricsRecorder:
    """Maintains :class:`ResolverMetrics` per key and the :class:`GlobalMetrics` rollup."""

    def __init__(self, repository: MetricsRepository, *, clock: Clock = epoch_millis) -> None:
        self._repository = repository
        self._clock = clock
        self._records: dict[str, ResolverMetrics] = {}
        self._global = GlobalMetrics()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Reads (copies, safe to hold across awaits)
    # ------------------------------------------------------------------

    def get(self, key: str) -> ResolverMetrics | None:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    def global_metrics(self) -> GlobalMetrics:
        return copy.copy(self._global)

    def keys(self) -> list[str]:
        return sorted(self._records)

    def documents(self) -> dict[str, dict[str, Any]]:
        return {key: record.to_document() for key, record in self._records.items()}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def reset(self) -> None:
        """Start from empty documents, as on cache initialization."""
        async with self._lock:
            self._records.clear()
            self._global = GlobalMetrics()
            await self._repository.reset()
            await self._repository.save(None, None, self._global.to_document())
            self._publish_gauges()

    async def observe(
        self,
        outcome: Outcome,
        key: str,
        *,
        latency_ms: float,
        location: Location,
        value: Any = _MISSING,
        stored: bool = False,
    ) -> ResolverMetrics:
        """Record one dispatcher call for *key*.

        ``stored`` tells whether an uncached result was written to a store
        (a persisted miss or a mutation); it only affects the outcome tallies.
        """
        async with self._lock:
            now = self._clock()
            g = self._global
            record = self._records.get(key)

            if record is None:
                record = ResolverMetrics(key=key, first_call_at=now, storage_location=location)
                record.recent_call_timestamps.append(now)
                record.call_count = 1
                self._records[key] = record
            else:
                record.recent_call_timestamps.append(now)
                record.call_count += 1
                record.average_call_interval = (
                    (now - record.oldest_call) / len(record.recent_call_timestamps)
                )

            if outcome is Outcome.CACHED:
                record.last_cached_latency_ms = latency_ms
            else:
                record.last_uncached_latency_ms = latency_ms
                self._relocate(record, location)
                if value is not _MISSING:
                    self._resize(record, size_of(value))

            # outcome tallies
            if outcome is Outcome.CACHED:
                g.cached_count += 1
                g.total_cached_elapsed_ms += latency_ms
                g.average_cached_latency_ms = g.total_cached_elapsed_ms / g.cached_count
            elif stored:
                g.cached_count += 1
            else:
                g.uncached_count += 1
                g.total_uncached_elapsed_ms += latency_ms
                g.average_uncached_latency_ms = g.total_uncached_elapsed_ms / g.uncached_count

            # rollup
            g.total_requests += 1
            g.unique_key_count = len(self._records)
            g.average_calls_per_key = g.total_requests / g.unique_key_count
            if record.last_uncached_latency_ms is not None and record.last_cached_latency_ms is not None:
                g.total_time_saved_ms += record.last_uncached_latency_ms - record.last_cached_latency_ms
            spans = [
                r.average_call_interval
                for r in self._records.values()
                if not isinstance(r.average_call_interval, str)
            ]
            g.global_average_call_span = sum(spans) / len(spans) if spans else 0.0
            self._refresh_size_averages()

            await self._persist(record)
            return copy.deepcopy(record)

    async def record_score(self, key: str, score: float, *, nominal_threshold: float = 1.0) -> None:
        """Store the adaptive score that made *key* worth caching."""
        async with self._lock:
            record = self._records.get(key)
            if record is None:
                return
            record.cache_score = score
            self._global.average_cache_score = (
                (nominal_threshold + score) / max(1, self._global.total_requests)
            )
            await self._persist(record)

    async def release_size(self, key: str) -> int:
        """Zero the size contribution of an expired local entry; returns the bytes released."""
        async with self._lock:
            record = self._records.get(key)
            if record is None or record.storage_location is not Location.LOCAL:
                return 0
            released = record.data_size_bytes
            self._resize(record, 0)
            log.debug("Released %d local bytes held by %s", released, key)
            self._refresh_size_averages()
            await self._persist(record)
            return released

    async def set_remote_bytes(self, used: int) -> None:
        async with self._lock:
            self._global.total_remote_bytes = used
            await self._persist(None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _relocate(self, record: ResolverMetrics, location: Location) -> None:
        if record.storage_location is location:
            return
        if record.storage_location is Location.LOCAL:
            self._global.total_local_bytes -= record.data_size_bytes
        elif location is Location.LOCAL:
            self._global.total_local_bytes += record.data_size_bytes
        record.storage_location = location

    def _resize(self, record: ResolverMetrics, new_size: int) -> None:
        if record.storage_location is Location.LOCAL:
            self._global.total_local_bytes += new_size - record.data_size_bytes
        record.data_size_bytes = new_size

    def _refresh_size_averages(self) -> None:
        g = self._global
        g.average_local_bytes_per_key = (
            g.total_local_bytes / g.unique_key_count if g.unique_key_count else 0.0
        )

    async def _persist(self, record: ResolverMetrics | None) -> None:
        self._publish_gauges()
        if record is None:
            await self._repository.save(None, None, self._global.to_document())
        else:
            await self._repository.save(record.key, record.to_document(), self._global.to_document())

    def _publish_gauges(self) -> None:
        LOCAL_BYTES.set(self._global.total_local_bytes)
        REMOTE_BYTES.set(self._global.total_remote_bytes)
