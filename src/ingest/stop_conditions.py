"""Early-stop conditions for extraction runs.

A stop condition inspects run counters after each reassembled record and
returns true when fetching should end. Remaining records of the current
chunk are still classified after a condition fires.
"""

from __future__ import annotations

from typing import Callable, Iterable

from core.types import ExtractionStats, MetricType

StopCondition = Callable[[ExtractionStats], bool]


def metric_limit_reached(limit: int, metrics: Iterable[MetricType]) -> StopCondition:
    """Stop once every listed metric has at least ``limit`` records."""
    watched = tuple(metrics)

    def _condition(stats: ExtractionStats) -> bool:
        return all(stats.classified_by_metric[metric] >= limit for metric in watched)

    return _condition


def metric_stalled(metric: MetricType, window_records: int) -> StopCondition:
    """Stop when a found metric has not reappeared for ``window_records`` raw records.

    Exports group records by type, so once a metric's block has been
    passed the rest of the file rarely contains more of it.
    """
    last_count = 0
    last_seen_at = 0

    def _condition(stats: ExtractionStats) -> bool:
        nonlocal last_count, last_seen_at
        current = stats.classified_by_metric[metric]
        if current != last_count:
            last_count = current
            last_seen_at = stats.raw_records
            return False
        return current > 0 and stats.raw_records - last_seen_at >= window_records

    return _condition


def all_of(conditions: Iterable[StopCondition]) -> StopCondition:
    """Stop when every condition holds."""
    collected = tuple(conditions)

    def _condition(stats: ExtractionStats) -> bool:
        # Evaluate all so stateful conditions observe every update.
        results = [condition(stats) for condition in collected]
        return bool(results) and all(results)

    return _condition


def any_of(conditions: Iterable[StopCondition]) -> StopCondition:
    """Stop when any condition holds."""
    collected = tuple(conditions)

    def _condition(stats: ExtractionStats) -> bool:
        results = [condition(stats) for condition in collected]
        return any(results)

    return _condition
