import math

import pytest

from cacheflow.config.settings import ScoringSettings
from cacheflow.core.decision import DecisionEngine, call_frequency, compute_score
from cacheflow.core.models import INSUFFICIENT_DATA, Location, Outcome
from cacheflow.core.recorder import ResolverMetrics


def _metrics(*timestamps):
    m = ResolverMetrics(key="k", first_call_at=timestamps[0])
    for ts in timestamps:
        m.recent_call_timestamps.append(ts)
    m.call_count = len(timestamps)
    return m


def test_score_formula():
    # 0.5 call rate + 0.92 / 0.4 interval term + 0.17 * 30 / 300 size term
    assert compute_score(3, 2.0, 100.0, 50, 20.0) == pytest.approx(0.5 + 2.3 + 0.017)


def test_score_is_deterministic():
    args = (7, 3.5, 42.0, 128, 64.0)
    assert compute_score(*args) == compute_score(*args)


def test_score_interval_fallbacks():
    assert compute_score(1, 1.0, INSUFFICIENT_DATA, 0, 0.0) == pytest.approx(0.023)
    assert compute_score(1, 1.0, 0.0, 0, 0.0) == pytest.approx(0.046)
    assert compute_score(1, 1.0, -3.0, 0, 0.0) == pytest.approx(0.046)


def test_score_without_calls_per_key_average():
    assert compute_score(4, 0.0, 10_000.0, 0, 0.0) == pytest.approx(0.023)


def test_score_honours_overrides():
    scoring = ScoringSettings(interval_weight=0.0, size_weight=1.0, size_divisor=10.0)
    assert compute_score(2, 2.0, 5.0, 30, 10.0, scoring) == pytest.approx(2.0)


def test_call_frequency():
    assert call_frequency(_metrics(100)) == 0.0
    assert call_frequency(_metrics(100, 100, 100)) == math.inf
    assert call_frequency(_metrics(0, 50, 100)) == pytest.approx(3 / 100)


@pytest.mark.asyncio
async def test_unknown_key_is_never_persisted(recorder):
    engine = DecisionEngine(recorder, default_threshold=0.000001)
    decision = engine.evaluate("never-seen", 0.001)
    assert decision.persist is False
    assert decision.score is None


@pytest.mark.asyncio
async def test_threshold_resolution(recorder):
    engine = DecisionEngine(recorder, default_threshold=0.5)
    assert engine.effective_threshold(None) == 0.5
    assert engine.effective_threshold(2_000) == 2.0
    assert DecisionEngine(recorder).effective_threshold(None) is None


@pytest.mark.asyncio
async def test_frequency_trigger(recorder, clock):
    engine = DecisionEngine(recorder, scoring=ScoringSettings(nominal_threshold=1e12))
    for _ in range(2):
        await recorder.observe(Outcome.UNCACHED, "k", latency_ms=1.0, location=Location.LOCAL, value=1)
        clock.advance(10)

    # two calls 10 ms apart: 0.2 calls/ms
    fired = engine.evaluate("k", 200)
    assert fired.persist and fired.by_frequency
    assert fired.frequency == pytest.approx(0.2)

    quiet = engine.evaluate("k", 300)
    assert not quiet.persist
    assert recorder.get("k").cache_score is None


@pytest.mark.asyncio
async def test_no_threshold_disables_frequency_trigger(recorder):
    engine = DecisionEngine(recorder, scoring=ScoringSettings(nominal_threshold=1e12))
    for _ in range(3):
        await recorder.observe(Outcome.UNCACHED, "k", latency_ms=1.0, location=Location.LOCAL, value=1)
    decision = engine.evaluate("k")
    assert decision.frequency == math.inf
    assert decision.persist is False


@pytest.mark.asyncio
async def test_score_trigger_records_score_on_commit(recorder, clock):
    engine = DecisionEngine(recorder)
    for _ in range(2):
        await recorder.observe(Outcome.UNCACHED, "k", latency_ms=1.0, location=Location.LOCAL, value=1)
        clock.advance(100)

    decision = engine.evaluate("k")
    # interval 50 ms -> 0.92 / 0.2
    assert decision.score == pytest.approx(4.6)
    assert decision.persist and decision.by_score and not decision.by_frequency
    assert recorder.get("k").cache_score is None

    await engine.commit("k", decision)
    assert recorder.get("k").cache_score == pytest.approx(4.6)
    assert recorder.global_metrics().average_cache_score == pytest.approx(5.6 / 2)
