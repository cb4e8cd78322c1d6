"""cacheflow.core.decision
========================
Should an uncached result be persisted?

Two triggers, OR-ed together, evaluated on the statistics a key had
*before* the current call (a key's first call has none and is never
cached):

``frequency``
    ``callCount / (newest - oldest)`` over the retained call window, in
    calls per millisecond, compared with the policy threshold or the
    process default.

``score``
    ``compute_score()`` blends relative call volume, call interval and
    payload size; it fires above ``threshold_ratio * nominal_threshold``.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from cacheflow.config.settings import ScoringSettings
from cacheflow.core.recorder import GlobalMetrics, MetricsRecorder, ResolverMetrics

log = logging.getLogger(__name__)

__all__ = ["Decision", "DecisionEngine", "call_frequency", "compute_score"]


@dataclass(frozen=True, slots=True)
class Decision:
    frequency: float
    threshold: float | None
    score: float | None
    by_frequency: bool = False
    by_score: bool = False

    @property
    def persist(self) -> bool:
        return self.by_frequency or self.by_score


def call_frequency(metrics: ResolverMetrics) -> float:
    """Calls per millisecond over the retained window (0 for a single call)."""
    if len(metrics.recent_call_timestamps) < 2:
        return 0.0
    span = metrics.newest_call - metrics.oldest_call
    if span <= 0:
        return math.inf
    return metrics.call_count / span


def compute_score(
    call_count: int,
    average_calls_per_key: float,
    average_call_interval: float | str,
    data_size_bytes: int,
    average_local_bytes_per_key: float,
    scoring: ScoringSettings | None = None,
) -> float:
    """Adaptive cache score; a pure function of its inputs."""
    s = scoring or ScoringSettings()

    call_rate = (
        (call_count - average_calls_per_key) / average_calls_per_key
        if average_calls_per_key
        else 0.0
    )

    if isinstance(average_call_interval, str):  # "Insufficient Data"
        interval_ms = s.insufficient_interval_ms
    else:
        interval_ms = float(average_call_interval)
    if interval_ms <= 0:
        interval_ms = s.nonpositive_interval_ms

    size_factor = (data_size_bytes - average_local_bytes_per_key) / s.size_divisor

    return call_rate + s.interval_weight / (s.interval_coefficient * interval_ms) + s.size_weight * size_factor


class DecisionEngine:
    """Combines the frequency and score triggers for the miss path."""

    def __init__(
        self,
        recorder: MetricsRecorder,
        *,
        default_threshold: float | None = None,
        scoring: ScoringSettings | None = None,
    ) -> None:
        # default_threshold is in calls per millisecond
        self._recorder = recorder
        self._default_threshold = default_threshold
        self._scoring = scoring or ScoringSettings()

    @property
    def score_threshold(self) -> float:
        return self._scoring.threshold_ratio * self._scoring.nominal_threshold

    def effective_threshold(self, policy_threshold: float | None) -> float | None:
        """Per-millisecond threshold; ``policy_threshold`` is in calls per second."""
        if policy_threshold is not None:
            return policy_threshold / 1000
        return self._default_threshold

    def score(self, metrics: ResolverMetrics, totals: GlobalMetrics) -> float:
        return compute_score(
            metrics.call_count,
            totals.average_calls_per_key,
            metrics.average_call_interval,
            metrics.data_size_bytes,
            totals.average_local_bytes_per_key,
            self._scoring,
        )

    def evaluate(self, key: str, policy_threshold: float | None = None) -> Decision:
        """Decide on *key*'s pre-call statistics; nothing is recorded here."""
        metrics = self._recorder.get(key)
        threshold = self.effective_threshold(policy_threshold)
        if metrics is None:
            return Decision(frequency=0.0, threshold=threshold, score=None)

        frequency = call_frequency(metrics)
        by_frequency = threshold is not None and frequency >= threshold

        score = self.score(metrics, self._recorder.global_metrics())
        decision = Decision(
            frequency=frequency,
            threshold=threshold,
            score=score,
            by_frequency=by_frequency,
            by_score=score > self.score_threshold,
        )
        log.debug(
            "Decision for %s: frequency=%.6f threshold=%s score=%.4f persist=%s",
            key, frequency, threshold, score, decision.persist,
        )
        return decision

    async def commit(self, key: str, decision: Decision) -> None:
        """Record the score of a decision whose entry was actually stored."""
        if decision.by_score and decision.score is not None:
            await self._recorder.record_score(
                key, decision.score, nominal_threshold=self._scoring.nominal_threshold
            )
