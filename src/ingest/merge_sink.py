"""Merge of extracted records into persisted metric series.

This module combines a metric's baseline series with newly extracted
records, deduplicates by date, and sorts ascending. On a date collision
the first occurrence after a stable sort wins, so previously persisted
points are never overwritten by a re-extraction.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from core.errors import PersistenceError
from core.logging_config import get_logger
from core.types import HealthRecord, MetricPoint, MetricType
from ingest.metric_classifier import to_metric_point
from store.series_store import SeriesStore

_LOGGER = get_logger(__name__)


def merge_series(
    existing: Sequence[MetricPoint],
    new_points: Iterable[MetricPoint],
) -> list[MetricPoint]:
    """Merge new points into a baseline series.

    Args:
        existing: Previously persisted series.
        new_points: Newly extracted points.

    Returns:
        Ascending series, unique by date.
    """
    combined = sorted([*existing, *new_points], key=lambda point: point.date)
    merged: list[MetricPoint] = []
    seen_dates: set[str] = set()
    for point in combined:
        if point.date in seen_dates:
            continue
        seen_dates.add(point.date)
        merged.append(point)
    return merged


class MergeSink:
    """Sink that merges classified records into the series store."""

    def __init__(self, store: SeriesStore) -> None:
        self._store = store

    def merge(
        self,
        metric: MetricType,
        owner_id: str,
        records: Sequence[HealthRecord],
    ) -> list[MetricPoint]:
        """Merge records for one metric and persist the result.

        Args:
            metric: Metric the records belong to.
            owner_id: Owner of the series.
            records: Classified records in file order.

        Returns:
            Final persisted series, or the baseline when no records were given.

        Raises:
            PersistenceError: If loading or saving the series fails.
        """
        baseline = self._load(metric, owner_id)
        if not records:
            return baseline
        merged = merge_series(baseline, (to_metric_point(metric, record) for record in records))
        self._save(metric, merged, owner_id)
        _LOGGER.info(
            "series_merged",
            metric=metric.value,
            owner_id=owner_id,
            baseline_points=len(baseline),
            new_records=len(records),
            merged_points=len(merged),
        )
        return merged

    def _load(self, metric: MetricType, owner_id: str) -> list[MetricPoint]:
        try:
            return self._store.load(metric, owner_id)
        except PersistenceError:
            raise
        except Exception as error:
            raise PersistenceError(
                f"Failed to load {metric.value} series for owner {owner_id}: {error}."
            ) from error

    def _save(self, metric: MetricType, series: list[MetricPoint], owner_id: str) -> None:
        try:
            self._store.save(metric, series, owner_id)
        except PersistenceError:
            raise
        except Exception as error:
            raise PersistenceError(
                f"Failed to save {metric.value} series for owner {owner_id}: {error}."
            ) from error
