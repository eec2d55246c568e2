"""Shared typed models.

This module defines the data models passed between the chunk source,
reassembler, parser, classifier, merge sink, and job reporting layers.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from core.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_MAX_BUFFER_CHARS,
    DEFAULT_MAX_FETCH_ATTEMPTS,
    DEFAULT_PREFETCH_CHUNKS,
    DEFAULT_PROGRESS_INTERVAL_RECORDS,
    DEFAULT_RETRY_BACKOFF_MAX_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TIME_BUDGET_SECONDS,
)
from core.errors import VitalError


class MetricType(str, Enum):
    """Tracked health metric buckets."""

    HEART_RATE = "heartRate"
    WEIGHT = "weight"
    BODY_FAT = "bodyFat"
    HRV = "hrv"
    VO2_MAX = "vo2max"


class JobState(str, Enum):
    """Extraction pipeline lifecycle states."""

    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Chunk:
    """One ordered byte range of a source file.

    Attributes:
        index: Zero-based ordinal of the chunk in the file.
        start: Byte offset of the first byte in ``data``.
        data: Raw chunk bytes.
    """

    index: int
    start: int
    data: bytes

    @property
    def end(self) -> int:
        """Return the inclusive offset of the last byte."""
        return self.start + len(self.data) - 1


@dataclass(frozen=True)
class RawRecord:
    """Complete, self-delimited ``<Record>`` fragment.

    Attributes:
        sequence: Emission ordinal in file byte order.
        text: Fragment text from start marker through end marker.
    """

    sequence: int
    text: str


@dataclass(frozen=True)
class HealthRecord:
    """Typed health measurement parsed from one raw record.

    Attributes:
        type: Source type identifier, e.g. ``HKQuantityTypeIdentifierHeartRate``.
        value: Finite numeric measurement.
        date: Normalized UTC ISO-8601 timestamp.
        source_name: Device or app that produced the measurement.
        unit: Measurement unit reported by the source.
        start_time: Normalized start timestamp when present.
        end_time: Normalized end timestamp when present.
    """

    type: str
    value: float
    date: str
    source_name: str = ""
    unit: str = ""
    start_time: str | None = None
    end_time: str | None = None


@dataclass(frozen=True)
class MetricPoint:
    """One element of a persisted metric series."""

    date: str
    value: float


@dataclass(frozen=True)
class JobProgress:
    """Progress update sent to the job tracker."""

    current: int
    total: int
    message: str


@dataclass(frozen=True)
class ExtractionSettings:
    """Tunables for one extraction run.

    Attributes:
        chunk_size_bytes: Bytes requested per ranged fetch.
        max_fetch_attempts: Attempts per range before the job fails.
        retry_backoff_seconds: Exponential backoff multiplier.
        retry_backoff_max_seconds: Backoff ceiling between attempts.
        fetch_timeout_seconds: Connect/read timeout for each attempt.
        time_budget_seconds: Wall-clock budget for the run, or None.
        max_buffer_chars: Carry buffer size cap.
        progress_interval_records: Raw records between progress updates.
        prefetch_chunks: Fetch the next chunk while parsing the current one.
    """

    chunk_size_bytes: int = DEFAULT_CHUNK_SIZE_BYTES
    max_fetch_attempts: int = DEFAULT_MAX_FETCH_ATTEMPTS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    retry_backoff_max_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    time_budget_seconds: float | None = DEFAULT_TIME_BUDGET_SECONDS
    max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS
    progress_interval_records: int = DEFAULT_PROGRESS_INTERVAL_RECORDS
    prefetch_chunks: bool = DEFAULT_PREFETCH_CHUNKS


@dataclass
class ExtractionStats:
    """Mutable counters for one extraction run."""

    chunks_fetched: int = 0
    bytes_fetched: int = 0
    fetch_attempts: int = 0
    raw_records: int = 0
    parsed_records: int = 0
    unclassified_records: int = 0
    buffer_overflows: int = 0
    skipped_by_reason: Counter[str] = field(default_factory=Counter)
    classified_by_metric: Counter[MetricType] = field(default_factory=Counter)

    @property
    def skipped_records(self) -> int:
        """Return total records rejected by the parser."""
        return sum(self.skipped_by_reason.values())


@dataclass
class ExtractionResult:
    """Outcome of one extraction run.

    Attributes:
        state: Terminal pipeline state (``done`` or ``failed``).
        stop_reason: Why fetching stopped.
        records_by_metric: Classified records in file order.
        stats: Run counters.
        error: Terminal error for failed runs.
    """

    state: JobState
    stop_reason: str
    records_by_metric: dict[MetricType, list[HealthRecord]]
    stats: ExtractionStats
    error: VitalError | None = None

    @property
    def succeeded(self) -> bool:
        """Return whether the run finished without a terminal error."""
        return self.state is JobState.DONE


@dataclass(frozen=True)
class IngestOptions:
    """Ingest command options.

    Attributes:
        source_uri: Local export path or ``s3://bucket/key`` URI.
        owner_id: Owner whose series are updated.
        job_id: Existing job id; a new job is created when omitted.
        metrics: Metrics to extract; all known metrics when omitted.
        max_records_per_metric: Stop once each requested metric has this many records.
        stall_window_records: Stop when a found metric stops appearing for this many records.
    """

    source_uri: str
    owner_id: str
    job_id: str | None = None
    metrics: tuple[MetricType, ...] | None = None
    max_records_per_metric: int | None = None
    stall_window_records: int | None = None


@dataclass(frozen=True)
class IngestResult:
    """Summary of one ingest job."""

    job_id: str
    state: JobState
    stop_reason: str
    saved_counts: dict[str, int]
    records_processed: int
    error_message: str | None = None
