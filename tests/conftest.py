"""Shared fixtures: a controllable millisecond clock and in-memory wiring."""

from __future__ import annotations

import pytest

from cacheflow.config.settings import ScoringSettings
from cacheflow.core.decision import DecisionEngine
from cacheflow.core.dispatcher import CacheDispatcher, KeyedLock
from cacheflow.core.models import Location
from cacheflow.core.recorder import MetricsRecorder
from cacheflow.core.repository import InMemoryMetricsRepository
from cacheflow.core.store import InMemoryEntryStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class CountingProducer:
    """Producer returning a fixed value and counting its invocations."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryMetricsRepository:
    return InMemoryMetricsRepository()


@pytest.fixture
def recorder(repository, clock) -> MetricsRecorder:
    return MetricsRecorder(repository, clock=clock)


@pytest.fixture
def local_store(clock) -> InMemoryEntryStore:
    return InMemoryEntryStore(clock=clock)


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


def build_dispatcher(recorder, store, locks, *, default_threshold=None, scoring=None):
    engine = DecisionEngine(recorder, default_threshold=default_threshold, scoring=scoring)
    return CacheDispatcher(
        stores={Location.LOCAL: store}, recorder=recorder, engine=engine, locks=locks
    )


@pytest.fixture
def dispatcher(recorder, local_store, locks) -> CacheDispatcher:
    return build_dispatcher(recorder, local_store, locks)


@pytest.fixture
def frequency_only_dispatcher(recorder, local_store, locks) -> CacheDispatcher:
    """Dispatcher whose adaptive score can never fire."""
    return build_dispatcher(
        recorder, local_store, locks, scoring=ScoringSettings(nominal_threshold=1e12)
    )


@pytest.fixture
def make_producer():
    return CountingProducer


@pytest.fixture
def sqlite_db(tmp_path):
    return tmp_path / "cacheflow.db"
