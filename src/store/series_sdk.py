"""Python SDK for health series operations.

This module exposes high-level APIs for ingest, series loading,
and job inspection backed by the configured stores.
"""

from __future__ import annotations

import threading
from typing import Any

from core.config import VitalConfig
from core.types import IngestOptions, IngestResult, MetricPoint, MetricType
from ingest.job_reporting import ProgressReporter
from ingest.metric_classifier import parse_metric_type
from ingest.pipeline import ingest_health_export
from store.job_store import FileJobStore
from store.series_store import SeriesStore, create_series_store


class VitalClient:
    """Primary SDK entry point for health export workflows."""

    def __init__(self, config: VitalConfig | None = None) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
        """
        self._config = config or VitalConfig.from_env()
        self._series_store: SeriesStore | None = None

    @property
    def config(self) -> VitalConfig:
        return self._config

    def ingest(
        self,
        options: IngestOptions,
        cancel_event: threading.Event | None = None,
        job_reporter: ProgressReporter | None = None,
    ) -> IngestResult:
        """Ingest a health export into the owner's metric series.

        Args:
            options: Ingest options.
            cancel_event: Optional event that cancels the extraction.
            job_reporter: Job tracker; a job document under the data root
                when omitted.

        Returns:
            Job summary.

        Raises:
            VitalIngestError: If the source cannot be resolved.
            PersistenceError: If series persistence fails.
        """
        return ingest_health_export(
            options,
            self._config,
            series_store=self._store(),
            job_reporter=job_reporter,
            cancel_event=cancel_event,
        )

    def load_series(self, owner_id: str, metric: MetricType | str) -> list[MetricPoint]:
        """Load the persisted series of one metric.

        Args:
            owner_id: Owner of the series.
            metric: Metric type or its name.

        Returns:
            Ascending series; empty when nothing was persisted.
        """
        metric_type = metric if isinstance(metric, MetricType) else parse_metric_type(metric)
        return self._store().load(metric_type, owner_id)

    def load_job(self, job_id: str) -> dict[str, Any]:
        """Load one job status document.

        Args:
            job_id: Job identifier.

        Returns:
            Job document payload.
        """
        return FileJobStore(self._config.data_root).load_job(job_id)

    def _store(self) -> SeriesStore:
        if self._series_store is None:
            self._series_store = create_series_store(self._config)
        return self._series_store
