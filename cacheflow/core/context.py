"""cacheflow.core.context
======================
`init_cache()` wires stores, recorder, decision engine, dispatcher and
sweeper into one :class:`CacheContext`; there is no module-level state.

Usage::

    ctx = await init_cache({"local": {"checkExpireIntervalSeconds": 1}})
    try:
        user = await ctx.cache({"location": "local", "maxAge": 60}, info, fetch_user)
    finally:
        await ctx.close()

or ``async with open_cache(config) as ctx: ...``.
"""
from __future__ import annotations

import contextlib
import logging
from collections.abc import Mapping
from typing import Any, AsyncIterator

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from cacheflow.config.settings import CacheflowSettings
from cacheflow.core.decision import DecisionEngine
from cacheflow.core.dispatcher import CacheDispatcher, KeyedLock, Producer
from cacheflow.core.models import Clock, Location, epoch_millis
from cacheflow.core.recorder import MetricsRecorder
from cacheflow.core.repository import MetricsRepository, SQLiteMetricsRepository
from cacheflow.core.store import EntryStore, RedisEntryStore, SQLiteEntryStore
from cacheflow.core.sweeper import ExpirySweeper
from cacheflow.utils.exceptions import BackendError, ConfigurationError

log = logging.getLogger(__name__)

__all__ = ["CacheContext", "init_cache", "open_cache", "load_settings"]


class CacheContext:
    """Handle on an initialized cache; ``close()`` releases everything it owns."""

    def __init__(
        self,
        *,
        settings: CacheflowSettings,
        dispatcher: CacheDispatcher,
        recorder: MetricsRecorder,
        engine: DecisionEngine,
        sweeper: ExpirySweeper,
        repository: MetricsRepository,
        local_store: EntryStore | None = None,
        remote_store: RedisEntryStore | None = None,
    ) -> None:
        self.settings = settings
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.engine = engine
        self.sweeper = sweeper
        self.repository = repository
        self.local_store = local_store
        self.remote_store = remote_store
        self._closed = False

    async def cache(self, policy: Any, info: Any, producer: Producer) -> Any:
        """Serve *info*'s key from the cache or compute it with *producer*."""
        return await self.dispatcher.handle(policy, info, producer)

    def resolver_metrics(self, key: str) -> dict[str, Any] | None:
        record = self.recorder.get(key)
        return record.to_document() if record is not None else None

    def global_metrics(self) -> dict[str, Any]:
        return self.recorder.global_metrics().to_document()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.sweeper.stop()
        if self.local_store is not None:
            await self.local_store.close()
        if self.remote_store is not None:
            await self.remote_store.close()
        await self.repository.close()
        log.info("Cache closed")

    async def __aenter__(self) -> "CacheContext":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


def load_settings(config: Mapping[str, Any] | CacheflowSettings | None) -> CacheflowSettings:
    """Validate an initialization mapping; top-level keys may be camelCase."""
    if config is None:
        return CacheflowSettings.model_validate({})
    if isinstance(config, CacheflowSettings):
        return config
    if not isinstance(config, Mapping):
        raise ConfigurationError(
            "Cache configuration must be a mapping",
            context={"type": type(config).__name__},
        )
    try:
        return CacheflowSettings.model_validate({to_snake(str(k)): v for k, v in config.items()})
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid cache configuration",
            context={"errors": exc.errors(include_url=False, include_context=False)},
            cause=exc,
        ) from exc


async def init_cache(
    config: Mapping[str, Any] | CacheflowSettings | None = None,
    *,
    clock: Clock = epoch_millis,
    repository: MetricsRepository | None = None,
    local_store: EntryStore | None = None,
    remote_store: RedisEntryStore | None = None,
    start_sweeper: bool = True,
) -> CacheContext:
    """Build a :class:`CacheContext` from *config*.

    Explicit ``repository``/``local_store``/``remote_store`` arguments replace
    the backends the settings would open (they are used as given). A Redis
    server that cannot be reached raises :class:`BackendError` here.
    """
    settings = load_settings(config)
    opened: list[Any] = []

    try:
        if repository is None:
            sqlite_repo = SQLiteMetricsRepository(settings.sqlite_path)
            await sqlite_repo.open()
            opened.append(sqlite_repo)
            repository = sqlite_repo

        if local_store is None and settings.local_enabled:
            assert settings.local is not None
            sqlite_store = SQLiteEntryStore(settings.sqlite_path, clock=clock)
            await sqlite_store.open(reset=settings.local.reset_on_start)
            opened.append(sqlite_store)
            local_store = sqlite_store

        if remote_store is None and settings.remote is not None:
            redis_store = RedisEntryStore.from_settings(settings.remote, clock=clock)
            opened.append(redis_store)
            await redis_store.ping()
            remote_store = redis_store

        recorder = MetricsRecorder(repository, clock=clock)
        await recorder.reset()
    except BackendError:
        for resource in reversed(opened):
            await resource.close()
        raise

    stores: dict[Location, EntryStore] = {}
    if local_store is not None:
        stores[Location.LOCAL] = local_store
    if remote_store is not None:
        stores[Location.REMOTE] = remote_store

    engine = DecisionEngine(
        recorder,
        default_threshold=settings.local.threshold_per_ms if settings.local else None,
        scoring=settings.scoring,
    )
    locks = KeyedLock()
    dispatcher = CacheDispatcher(stores=stores, recorder=recorder, engine=engine, locks=locks)
    sweeper = ExpirySweeper(
        recorder,
        locks=locks,
        local=local_store,
        remote=remote_store,
        interval_seconds=settings.sweep_interval_seconds,
        clock=clock,
    )
    if start_sweeper and stores:
        sweeper.start()

    log.info(
        "Cache initialized (local=%s, remote=%s, db=%s)",
        local_store is not None, remote_store is not None, settings.sqlite_path,
    )
    return CacheContext(
        settings=settings,
        dispatcher=dispatcher,
        recorder=recorder,
        engine=engine,
        sweeper=sweeper,
        repository=repository,
        local_store=local_store,
        remote_store=remote_store,
    )


@contextlib.asynccontextmanager
async def open_cache(
    config: Mapping[str, Any] | CacheflowSettings | None = None, **kwargs: Any
) -> AsyncIterator[CacheContext]:
    ctx = await init_cache(config, **kwargs)
    try:
        yield ctx
    finally:
        await ctx.close()
