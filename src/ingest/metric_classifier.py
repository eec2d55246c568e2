"""Metric classification for parsed health records.

This module is the single mapping from source record types to the
metric buckets this system tracks, plus the per-metric value
normalization applied before series persistence.
"""

from __future__ import annotations

from dataclasses import dataclass
import math

from core.errors import VitalConfigError
from core.types import HealthRecord, MetricPoint, MetricType


@dataclass(frozen=True)
class MetricDefinition:
    """Source types and value normalization for one metric.

    Attributes:
        metric: Metric bucket.
        source_types: Record ``type`` values that map to the metric.
        value_scale: Multiplier applied before rounding.
        value_decimals: Decimal places kept in persisted values.
    """

    metric: MetricType
    source_types: tuple[str, ...]
    value_scale: float = 1.0
    value_decimals: int = 2


METRIC_DEFINITIONS: dict[MetricType, MetricDefinition] = {
    MetricType.HEART_RATE: MetricDefinition(
        metric=MetricType.HEART_RATE,
        source_types=("HKQuantityTypeIdentifierHeartRate", "heartRate"),
        value_decimals=0,
    ),
    MetricType.WEIGHT: MetricDefinition(
        metric=MetricType.WEIGHT,
        source_types=("HKQuantityTypeIdentifierBodyMass", "weight"),
    ),
    MetricType.BODY_FAT: MetricDefinition(
        metric=MetricType.BODY_FAT,
        source_types=("HKQuantityTypeIdentifierBodyFatPercentage", "bodyFat"),
        value_scale=100.0,
    ),
    MetricType.HRV: MetricDefinition(
        metric=MetricType.HRV,
        source_types=("HKQuantityTypeIdentifierHeartRateVariabilitySDNN", "hrv"),
    ),
    MetricType.VO2_MAX: MetricDefinition(
        metric=MetricType.VO2_MAX,
        source_types=("HKQuantityTypeIdentifierVO2Max", "vo2max"),
    ),
}

_METRIC_BY_SOURCE_TYPE: dict[str, MetricType] = {
    source_type: definition.metric
    for definition in METRIC_DEFINITIONS.values()
    for source_type in definition.source_types
}


def classify_type(record_type: str) -> MetricType | None:
    """Map a source record type to its metric, or None if untracked."""
    return _METRIC_BY_SOURCE_TYPE.get(record_type)


def classify_record(record: HealthRecord) -> MetricType | None:
    """Map a parsed record to its metric, or None if untracked."""
    return classify_type(record.type)


def to_metric_point(metric: MetricType, record: HealthRecord) -> MetricPoint:
    """Build a normalized series point for a classified record.

    Args:
        metric: Metric the record was classified as.
        record: Parsed health record.

    Returns:
        Series point with the metric's scale and rounding applied.
    """
    definition = METRIC_DEFINITIONS[metric]
    scaled = record.value * definition.value_scale
    return MetricPoint(date=record.date, value=_round_half_up(scaled, definition.value_decimals))


def parse_metric_type(name: str) -> MetricType:
    """Resolve a user-supplied metric name.

    Args:
        name: Metric name such as ``heartRate``; case-insensitive.

    Returns:
        Matching metric.

    Raises:
        VitalConfigError: If the name is not a tracked metric.
    """
    for metric in MetricType:
        if metric.value.lower() == name.strip().lower():
            return metric
    raise VitalConfigError(
        f"Unknown metric '{name}'. Supported metrics: {', '.join(supported_metric_names())}."
    )


def supported_metric_names() -> tuple[str, ...]:
    """Return supported metric names in declaration order."""
    return tuple(metric.value for metric in MetricType)


def _round_half_up(value: float, decimals: int) -> float:
    """Round halves toward positive infinity, as ``Math.round`` does."""
    factor = 10**decimals
    return math.floor(value * factor + 0.5) / factor
