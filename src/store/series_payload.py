"""Shared JSON serialization for metric series documents.

This module centralizes MetricPoint JSON serialization logic.
It is reused by the local and S3 series stores.
"""

from __future__ import annotations

import json
from typing import Any

from core.errors import PersistenceError
from core.types import MetricPoint


def metric_point_to_payload(point: MetricPoint) -> dict[str, object]:
    """Serialize a MetricPoint into a JSON-safe payload."""
    return {"date": point.date, "value": point.value}


def metric_point_from_payload(payload: dict[str, Any]) -> MetricPoint:
    """Deserialize one series element, ignoring extra keys.

    Raises:
        PersistenceError: If date or value is missing or invalid.
    """
    try:
        return MetricPoint(date=str(payload["date"]), value=float(payload["value"]))
    except (KeyError, TypeError, ValueError) as error:
        raise PersistenceError(
            f"Invalid series element {payload!r}: expected 'date' and numeric 'value'."
        ) from error


def dump_series(series: list[MetricPoint]) -> str:
    """Render a series as a JSON array document."""
    return json.dumps([metric_point_to_payload(point) for point in series])


def load_series(document: str, location: str) -> list[MetricPoint]:
    """Parse a JSON array document into a series.

    Args:
        document: Raw JSON text.
        location: Path or key used in error messages.

    Returns:
        Parsed series in document order.

    Raises:
        PersistenceError: If the document is not a JSON array of points.
    """
    try:
        payload = json.loads(document)
    except json.JSONDecodeError as error:
        raise PersistenceError(
            f"Failed to parse series document at {location}: {error.msg}. "
            "Repair or delete the document and retry ingest."
        ) from error
    if not isinstance(payload, list):
        raise PersistenceError(
            f"Invalid series document at {location}: expected a JSON array, "
            f"got {type(payload).__name__}."
        )
    return [metric_point_from_payload(item) for item in payload if isinstance(item, dict)]
