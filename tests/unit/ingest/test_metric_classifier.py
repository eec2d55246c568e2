"""Unit tests for metric classification and value normalization."""

from __future__ import annotations

import pytest

from core.errors import VitalConfigError
from core.types import HealthRecord, MetricType
from ingest.metric_classifier import (
    classify_record,
    classify_type,
    parse_metric_type,
    supported_metric_names,
    to_metric_point,
)


def _record(record_type: str, value: float) -> HealthRecord:
    return HealthRecord(type=record_type, value=value, date="2024-01-01T00:00:00.000Z")


@pytest.mark.parametrize(
    ("record_type", "metric"),
    [
        ("HKQuantityTypeIdentifierHeartRate", MetricType.HEART_RATE),
        ("HKQuantityTypeIdentifierBodyMass", MetricType.WEIGHT),
        ("HKQuantityTypeIdentifierBodyFatPercentage", MetricType.BODY_FAT),
        ("HKQuantityTypeIdentifierHeartRateVariabilitySDNN", MetricType.HRV),
        ("HKQuantityTypeIdentifierVO2Max", MetricType.VO2_MAX),
        ("vo2max", MetricType.VO2_MAX),
    ],
)
def test_classify_type_maps_known_identifiers(record_type: str, metric: MetricType) -> None:
    """Classifier should map health identifiers and bare names to metrics."""
    assert classify_type(record_type) is metric


def test_classify_record_ignores_untracked_types() -> None:
    """Classifier should return None for record types it does not track."""
    assert classify_record(_record("HKQuantityTypeIdentifierStepCount", 512)) is None


def test_to_metric_point_applies_per_metric_normalization() -> None:
    """Series points should be scaled and rounded per metric."""
    heart_rate = to_metric_point(MetricType.HEART_RATE, _record("heartRate", 80.6))
    body_fat = to_metric_point(MetricType.BODY_FAT, _record("bodyFat", 0.25))
    weight = to_metric_point(MetricType.WEIGHT, _record("weight", 80.123))

    assert (heart_rate.value, body_fat.value, weight.value) == (81.0, 25.0, 80.12)
    assert heart_rate.date == "2024-01-01T00:00:00.000Z"


def test_parse_metric_type_is_case_insensitive() -> None:
    """Metric names from users should resolve regardless of case."""
    assert parse_metric_type(" HeartRate ") is MetricType.HEART_RATE


def test_parse_metric_type_raises_for_unknown_names() -> None:
    """Unknown metric names should fail with the supported list."""
    with pytest.raises(VitalConfigError) as error_info:
        parse_metric_type("steps")

    assert "heartRate" in str(error_info.value)
    assert supported_metric_names() == ("heartRate", "weight", "bodyFat", "hrv", "vo2max")


@pytest.mark.parametrize(
    ("metric", "value", "expected"),
    [
        (MetricType.HEART_RATE, 72.5, 73.0),
        (MetricType.HEART_RATE, 62.5, 63.0),
        (MetricType.WEIGHT, 80.125, 80.13),
    ],
)
def test_to_metric_point_rounds_halves_up(metric: MetricType, value: float, expected: float) -> None:
    """Exact halves should round up rather than to the nearest even value."""
    assert to_metric_point(metric, _record(metric.value, value)).value == expected
