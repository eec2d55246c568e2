"""Ingest orchestration for health export jobs.

This module coordinates source resolution, chunked extraction, series
merging, and job status reporting for one export. A job always ends
with a terminal status, including when persistence fails.
"""

from __future__ import annotations

import threading
from typing import Any, Callable
from uuid import uuid4

from core.config import VitalConfig
from core.constants import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_STATUS_PROCESSING
from core.errors import VitalConfigError
from core.logging_config import get_logger
from core.types import (
    ExtractionResult,
    HealthRecord,
    IngestOptions,
    IngestResult,
    MetricType,
)
from ingest.chunk_source import ChunkSource, open_chunk_source
from ingest.extraction_pipeline import ExtractionPipeline
from ingest.job_reporting import NonBlockingReporter, ProgressReporter
from ingest.merge_sink import MergeSink
from ingest.metric_classifier import classify_record
from ingest.stop_conditions import (
    StopCondition,
    all_of,
    any_of,
    metric_limit_reached,
    metric_stalled,
)
from store.job_store import FileJobStore
from store.series_store import SeriesStore, create_series_store

_LOGGER = get_logger(__name__)


class HealthExportIngestRunner:
    """Runner for one fail-closed health export ingest job."""

    def __init__(
        self,
        options: IngestOptions,
        config: VitalConfig,
        *,
        source: ChunkSource | None = None,
        series_store: SeriesStore | None = None,
        job_reporter: ProgressReporter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._options = options
        self._config = config
        self._source = source
        self._series_store = series_store
        self._cancel_event = cancel_event
        if job_reporter is None:
            job_store = FileJobStore(config.data_root)
            self._reporter: ProgressReporter = job_store
            self._job_id = options.job_id or job_store.create_job(
                options.owner_id, options.source_uri
            )
        else:
            self._reporter = job_reporter
            self._job_id = options.job_id or uuid4().hex

    @property
    def job_id(self) -> str:
        return self._job_id

    def run(self) -> IngestResult:
        """Execute the job and return its summary.

        Raises:
            VitalError: If source resolution or persistence fails. The job
                is reported as failed before the error propagates.
        """
        background = NonBlockingReporter(self._reporter)
        try:
            background.report_status(
                self._job_id,
                JOB_STATUS_PROCESSING,
                {"owner_id": self._options.owner_id, "source_uri": self._options.source_uri},
            )
            extraction = self._extract(background)
            saved_counts = self._persist(extraction)
        except Exception as error:
            background.close()
            self._reporter.report_status(self._job_id, JOB_STATUS_FAILED, {"error": str(error)})
            _LOGGER.error("ingest_failed", job_id=self._job_id, error=str(error))
            raise
        background.close()
        result = _build_result(self._job_id, extraction, saved_counts)
        self._report_terminal_status(result, extraction)
        _log_ingest_completion(self._options, result)
        return result

    def _extract(self, reporter: ProgressReporter) -> ExtractionResult:
        source = self._source or open_chunk_source(self._options.source_uri, self._config)
        pipeline = ExtractionPipeline(
            source,
            self._config.extraction,
            classifier=_build_classifier(self._options.metrics),
            stop_condition=build_stop_condition(self._options),
            progress=reporter,
            job_id=self._job_id,
            cancel_event=self._cancel_event,
        )
        return pipeline.run()

    def _persist(self, extraction: ExtractionResult) -> dict[str, int]:
        """Merge every metric that produced records, also after partial failures."""
        store = self._series_store or create_series_store(self._config)
        sink = MergeSink(store)
        saved_counts: dict[str, int] = {}
        for metric, records in extraction.records_by_metric.items():
            merged = sink.merge(metric, self._options.owner_id, records)
            saved_counts[metric.value] = len(merged)
        return saved_counts

    def _report_terminal_status(self, result: IngestResult, extraction: ExtractionResult) -> None:
        details: dict[str, Any] = {
            "stop_reason": result.stop_reason,
            "records_processed": result.records_processed,
            "skipped_records": extraction.stats.skipped_records,
            "saved_counts": result.saved_counts,
        }
        if result.error_message is None:
            self._reporter.report_status(self._job_id, JOB_STATUS_COMPLETED, details)
            return
        details["error"] = result.error_message
        self._reporter.report_status(self._job_id, JOB_STATUS_FAILED, details)


def ingest_health_export(
    options: IngestOptions,
    config: VitalConfig,
    *,
    source: ChunkSource | None = None,
    series_store: SeriesStore | None = None,
    job_reporter: ProgressReporter | None = None,
    cancel_event: threading.Event | None = None,
) -> IngestResult:
    """Extract tracked metrics from an export and merge them into series.

    Args:
        options: Ingest request options.
        config: Runtime configuration.
        source: Chunk source override; resolved from ``options.source_uri`` when omitted.
        series_store: Series store override; resolved from config when omitted.
        job_reporter: Job tracker; a file job store under the data root when omitted.
        cancel_event: Event that cancels the extraction when set.

    Returns:
        Job summary. Failed extractions still persist the records
        classified before the failure.

    Raises:
        VitalIngestError: If the source cannot be resolved.
        PersistenceError: If series persistence fails.
    """
    runner = HealthExportIngestRunner(
        options,
        config,
        source=source,
        series_store=series_store,
        job_reporter=job_reporter,
        cancel_event=cancel_event,
    )
    return runner.run()


def build_stop_condition(options: IngestOptions) -> StopCondition | None:
    """Build the early-stop condition requested by ingest options.

    Raises:
        VitalConfigError: If a record limit or stall window is below 1.
    """
    metrics = options.metrics or tuple(MetricType)
    conditions: list[StopCondition] = []
    if options.max_records_per_metric is not None:
        _require_positive("max_records_per_metric", options.max_records_per_metric)
        conditions.append(metric_limit_reached(options.max_records_per_metric, metrics))
    if options.stall_window_records is not None:
        _require_positive("stall_window_records", options.stall_window_records)
        conditions.append(
            all_of(metric_stalled(metric, options.stall_window_records) for metric in metrics)
        )
    if not conditions:
        return None
    return any_of(conditions)


def _require_positive(name: str, value: int) -> None:
    if value < 1:
        raise VitalConfigError(f"Invalid {name}={value}: expected an integer >= 1.")


def _build_classifier(
    metrics: tuple[MetricType, ...] | None,
) -> Callable[[HealthRecord], MetricType | None]:
    """Restrict classification to the requested metrics."""
    if metrics is None:
        return classify_record
    allowed = frozenset(metrics)

    def _classify(record: HealthRecord) -> MetricType | None:
        metric = classify_record(record)
        return metric if metric in allowed else None

    return _classify


def _build_result(
    job_id: str,
    extraction: ExtractionResult,
    saved_counts: dict[str, int],
) -> IngestResult:
    return IngestResult(
        job_id=job_id,
        state=extraction.state,
        stop_reason=extraction.stop_reason,
        saved_counts=saved_counts,
        records_processed=extraction.stats.raw_records,
        error_message=_error_message(extraction),
    )


def _error_message(extraction: ExtractionResult) -> str | None:
    if extraction.error is not None:
        return str(extraction.error)
    if not extraction.succeeded:
        return f"Extraction stopped before completion: {extraction.stop_reason}."
    return None


def _log_ingest_completion(options: IngestOptions, result: IngestResult) -> None:
    """Log job completion with contextual metadata."""
    _LOGGER.info(
        "ingest_finished",
        job_id=result.job_id,
        owner_id=options.owner_id,
        source_uri=options.source_uri,
        state=result.state.value,
        stop_reason=result.stop_reason,
        records_processed=result.records_processed,
        saved_counts=result.saved_counts,
    )
