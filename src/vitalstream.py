"""Public SDK surface for Vitalstream.

This module provides a stable import path for SDK users.
It re-exports the primary client and typed option models.
"""

from __future__ import annotations

from core.config import VitalConfig
from core.errors import (
    FetchError,
    PersistenceError,
    VitalConfigError,
    VitalError,
    VitalIngestError,
)
from core.types import (
    ExtractionSettings,
    IngestOptions,
    IngestResult,
    JobState,
    MetricPoint,
    MetricType,
)
from ingest.metric_classifier import supported_metric_names
from store.series_sdk import VitalClient

__all__ = [
    "ExtractionSettings",
    "FetchError",
    "IngestOptions",
    "IngestResult",
    "JobState",
    "MetricPoint",
    "MetricType",
    "PersistenceError",
    "VitalClient",
    "VitalConfig",
    "VitalConfigError",
    "VitalError",
    "VitalIngestError",
    "supported_metric_names",
]
