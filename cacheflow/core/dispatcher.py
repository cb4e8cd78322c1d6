"""cacheflow.core.dispatcher
=========================
Entry point of every cached call.

``handle(policy, info, producer)`` validates the policy, then takes one
of three paths under the lock of the resolved key:

* **hit**   – slide the TTL, record a cached observation, return the
  stored value.  If the entry vanished before its TTL could be refreshed
  the call falls through to the miss path.
* **miss**  – run the producer, ask the decision engine (on the
  statistics gathered before this call), write the value if it said so,
  record an uncached observation.
* **mutate** – re-run the producer for an already known key and
  overwrite its entry unconditionally.

Producer exceptions propagate untouched and leave no trace in the
stores or the metrics.
"""
from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Mapping
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict, NonNegativeFloat, PositiveFloat, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from cacheflow.core.decision import DecisionEngine
from cacheflow.core.models import Location, Outcome
from cacheflow.core.recorder import MetricsRecorder
from cacheflow.core.store import EntryStore
from cacheflow.utils.exceptions import CacheflowError, ConfigurationError, NotFoundError
from cacheflow.utils.metrics import LAT_PRODUCER, MET_ERRORS_TOTAL, MET_REQUESTS_TOTAL

log = logging.getLogger(__name__)

__all__ = [
    "CacheDispatcher",
    "CachePolicy",
    "KeyedLock",
    "Producer",
    "parse_policy",
    "resolve_key",
]

Producer = Callable[[], Union[Any, Awaitable[Any]]]


# ---------------------------------------------------------------------------
# Policy & request context
# ---------------------------------------------------------------------------

class CachePolicy(BaseModel):
    """Per-call caching directive, e.g. ``{"location": "local", "maxAge": 30}``."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True
    )

    location: Location
    max_age: NonNegativeFloat | None = None  # seconds
    threshold: PositiveFloat | None = None  # calls per second
    mutate: str | None = None

    @field_validator("location", mode="before")
    @classmethod
    def _normalise_location(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "redis":
                return Location.REMOTE.value
        return value


def parse_policy(policy: Any) -> CachePolicy:
    """Validate a raw policy mapping; raises :class:`ConfigurationError`."""
    if isinstance(policy, CachePolicy):
        return policy
    if not isinstance(policy, Mapping):
        raise ConfigurationError(
            "Cache policy must be a mapping",
            context={"type": type(policy).__name__},
        )
    try:
        return CachePolicy.model_validate(dict(policy))
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid cache policy",
            context={"errors": exc.errors(include_url=False, include_context=False)},
            cause=exc,
        ) from exc


def resolve_key(info: Any) -> str:
    """Cache key from a mapping with ``"key"``, a resolve-info object or a string."""
    if isinstance(info, str):
        key: Any = info
    elif isinstance(info, Mapping):
        key = info.get("key")
    else:
        key = getattr(getattr(info, "path", None), "key", None)

    if isinstance(key, int) and not isinstance(key, bool):
        key = str(key)
    if not isinstance(key, str) or not key:
        raise ConfigurationError(
            "Cannot resolve a cache key from the request context",
            context={"type": type(info).__name__},
        )
    return key


# ---------------------------------------------------------------------------
# Keyed lock
# ---------------------------------------------------------------------------

class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class CacheDispatcher:
    """Routes a call to the hit, miss or mutate path."""

    def __init__(
        self,
        *,
        stores: Mapping[Location, EntryStore],
        recorder: MetricsRecorder,
        engine: DecisionEngine,
        locks: KeyedLock | None = None,
    ) -> None:
        self._stores = dict(stores)
        self._recorder = recorder
        self._engine = engine
        self._locks = locks or KeyedLock()

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def store_for(self, location: Location) -> EntryStore:
        try:
            return self._stores[location]
        except KeyError:
            raise ConfigurationError(
                "No backend configured for this location",
                context={"location": location.value},
            ) from None

    async def handle(self, policy: Any, info: Any, producer: Producer) -> Any:
        try:
            parsed = parse_policy(policy)
            key = resolve_key(info)
            store = self.store_for(parsed.location)
            if parsed.mutate is not None:
                return await self._mutate(parsed, store, producer)
            async with self._locks.hold(key):
                return await self._lookup(parsed, key, store, producer)
        except CacheflowError as exc:
            MET_ERRORS_TOTAL.labels(type=exc.code, component="dispatcher").inc()
            raise

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    async def _lookup(self, policy: CachePolicy, key: str, store: EntryStore, producer: Producer) -> Any:
        started = time.perf_counter()
        entry = await store.get(key)
        if entry is not None:
            if await store.refresh_ttl(key, policy.max_age):
                await self._recorder.observe(
                    Outcome.CACHED,
                    key,
                    latency_ms=_elapsed_ms(started),
                    location=policy.location,
                )
                MET_REQUESTS_TOTAL.labels(outcome="hit", location=policy.location.value).inc()
                return entry.value
            log.debug("Entry for %s expired before its TTL was refreshed", key)
        return await self._miss(policy, key, store, producer)

    async def _miss(self, policy: CachePolicy, key: str, store: EntryStore, producer: Producer) -> Any:
        value, latency_ms = await self._produce(producer)
        decision = self._engine.evaluate(key, policy.threshold)
        if decision.persist:
            await store.set(key, value, policy.max_age)
            await self._engine.commit(key, decision)
        await self._recorder.observe(
            Outcome.UNCACHED,
            key,
            latency_ms=latency_ms,
            location=policy.location,
            value=value,
            stored=decision.persist,
        )
        MET_REQUESTS_TOTAL.labels(
            outcome="stored" if decision.persist else "miss",
            location=policy.location.value,
        ).inc()
        return value

    async def _mutate(self, policy: CachePolicy, store: EntryStore, producer: Producer) -> Any:
        target = policy.mutate
        async with self._locks.hold(target):
            if self._recorder.get(target) is None:
                raise NotFoundError("Data does not exist in cache", context={"key": target})
            value, latency_ms = await self._produce(producer)
            await store.set(target, value, policy.max_age)
            await self._recorder.observe(
                Outcome.UNCACHED,
                target,
                latency_ms=latency_ms,
                location=policy.location,
                value=value,
                stored=True,
            )
        log.info("Mutated cache entry %s", target)
        MET_REQUESTS_TOTAL.labels(outcome="mutate", location=policy.location.value).inc()
        return value

    @staticmethod
    async def _produce(producer: Producer) -> tuple[Any, float]:
        started = time.perf_counter()
        result = producer()
        if inspect.isawaitable(result):
            result = await result
        latency_ms = _elapsed_ms(started)
        LAT_PRODUCER.observe(latency_ms / 1000)
        return result, latency_ms
