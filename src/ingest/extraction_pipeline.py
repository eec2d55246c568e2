"""Chunked extraction of classified health records.

This module drives chunk fetching, record reassembly, parsing, and
metric classification for one export. Fetches are retried with
exponential backoff, bounded by a wall-clock budget, and can overlap
with parsing through a single prefetch worker without changing record
order. The run state is owned by the pipeline instance and returned in
the result.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import partial
import threading
import time
from typing import Callable, Iterator

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.errors import ExtractionTimeoutError, FetchError, VitalIngestError
from core.logging_config import get_logger
from core.types import (
    Chunk,
    ExtractionResult,
    ExtractionSettings,
    ExtractionStats,
    HealthRecord,
    JobProgress,
    JobState,
    MetricType,
    RawRecord,
)
from ingest.chunk_source import ChunkSource, iter_chunks
from ingest.job_reporting import ProgressReporter
from ingest.metric_classifier import classify_record
from ingest.record_parser import RecordParser
from ingest.record_reassembler import RecordReassembler
from ingest.stop_conditions import StopCondition

_LOGGER = get_logger(__name__)

Classifier = Callable[[HealthRecord], "MetricType | None"]
_RangePlan = tuple[int, int, int]

STOP_COMPLETED = "completed"
STOP_SIGNAL = "stop_signal"
STOP_CANCELLED = "cancelled"
STOP_TIMEOUT = "timeout"
STOP_FETCH_FAILED = "fetch_failed"


class _FetchAbandonedError(Exception):
    """Raised inside a prefetch worker once the consumer stopped reading."""


class ExtractionPipeline:
    """Single-use extraction run over one chunk source."""

    def __init__(
        self,
        source: ChunkSource,
        settings: ExtractionSettings | None = None,
        *,
        classifier: Classifier = classify_record,
        stop_condition: StopCondition | None = None,
        progress: ProgressReporter | None = None,
        job_id: str | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self._source = source
        self._settings = settings or ExtractionSettings()
        self._classifier = classifier
        self._stop_condition = stop_condition
        self._progress = progress
        self._job_id = job_id
        self._cancel_event = cancel_event or threading.Event()
        self._clock = clock
        # Default backoff waits on the stop event; setting it ends the wait.
        self._fetch_stopped = threading.Event()
        self._sleep = sleep or self._fetch_stopped.wait
        self._state = JobState.IDLE
        self._deadline: float | None = None
        self._total_bytes: int | None = None

    @property
    def state(self) -> JobState:
        return self._state

    def run(self) -> ExtractionResult:
        """Extract and classify every record of the source.

        Returns:
            Extraction result. Failed runs keep the records classified
            before the failure.

        Raises:
            VitalIngestError: If the pipeline instance was already run.
        """
        if self._state is not JobState.IDLE:
            raise VitalIngestError("ExtractionPipeline instances can only run once.")
        started_at = self._clock()
        budget = self._settings.time_budget_seconds
        self._deadline = started_at + budget if budget is not None else None
        stats = ExtractionStats()
        records_by_metric: dict[MetricType, list[HealthRecord]] = {}
        reassembler = RecordReassembler(self._settings.max_buffer_chars)
        parser = RecordParser(skip_counts=stats.skipped_by_reason)
        error: VitalIngestError | None = None
        try:
            stop_reason = self._extract(reassembler, parser, stats, records_by_metric)
        except ExtractionTimeoutError as timeout_error:
            stop_reason, error = STOP_TIMEOUT, timeout_error
        except VitalIngestError as fetch_error:
            stop_reason, error = STOP_FETCH_FAILED, fetch_error
        self._state = JobState.DRAINING
        self._process_batch(reassembler.finish(), parser, stats, records_by_metric)
        stats.buffer_overflows = reassembler.overflow_count
        failed = error is not None or stop_reason == STOP_CANCELLED
        self._state = JobState.FAILED if failed else JobState.DONE
        _log_run_finished(self._state, stop_reason, stats, self._clock() - started_at, error)
        return ExtractionResult(
            state=self._state,
            stop_reason=stop_reason,
            records_by_metric=records_by_metric,
            stats=stats,
            error=error,
        )

    def _extract(
        self,
        reassembler: RecordReassembler,
        parser: RecordParser,
        stats: ExtractionStats,
        records_by_metric: dict[MetricType, list[HealthRecord]],
    ) -> str:
        self._state = JobState.FETCHING
        chunks = self._fetched_chunks(stats)
        try:
            for chunk in chunks:
                if self._cancel_event.is_set():
                    return STOP_CANCELLED
                self._state = JobState.PARSING
                stats.chunks_fetched += 1
                stats.bytes_fetched += len(chunk.data)
                raw_records = reassembler.feed(chunk.data)
                if self._process_batch(raw_records, parser, stats, records_by_metric):
                    _LOGGER.info("extraction_stop_requested", chunk_index=chunk.index)
                    return STOP_SIGNAL
                if self._cancel_event.is_set():
                    return STOP_CANCELLED
                self._check_deadline()
                self._state = JobState.FETCHING
        finally:
            chunks.close()
        return STOP_COMPLETED

    def _process_batch(
        self,
        raw_records: list[RawRecord],
        parser: RecordParser,
        stats: ExtractionStats,
        records_by_metric: dict[MetricType, list[HealthRecord]],
    ) -> bool:
        """Parse and classify one batch; return whether a stop was requested."""
        stop_requested = False
        interval = self._settings.progress_interval_records
        for raw_record in raw_records:
            stats.raw_records += 1
            record = parser.parse(raw_record)
            if record is not None:
                stats.parsed_records += 1
                metric = self._classifier(record)
                if metric is None:
                    stats.unclassified_records += 1
                else:
                    records_by_metric.setdefault(metric, []).append(record)
                    stats.classified_by_metric[metric] += 1
            if stats.raw_records % interval == 0:
                self._report_progress(stats)
            if not stop_requested and self._stop_condition is not None:
                stop_requested = self._stop_condition(stats)
        return stop_requested

    def _fetched_chunks(self, stats: ExtractionStats) -> Iterator[Chunk]:
        self._total_bytes = self._lookup_size()
        if self._total_bytes is None:
            # Unsized sources are read until they return no bytes.
            return iter_chunks(
                self._source,
                self._settings.chunk_size_bytes,
                read_range=partial(self._read_range, stats=stats, exact=False),
            )
        plan = _range_plan(self._total_bytes, self._settings.chunk_size_bytes)
        if self._settings.prefetch_chunks:
            return self._prefetched_chunks(plan, stats)
        return (self._fetch_range(index, start, length, stats) for index, start, length in plan)

    def _prefetched_chunks(self, plan: Iterator[_RangePlan], stats: ExtractionStats) -> Iterator[Chunk]:
        """Yield chunks while the next range is fetched on a worker thread."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chunk-prefetch")
        pending: Future[Chunk] | None = None
        try:
            pending = self._submit(executor, next(plan, None), stats)
            while pending is not None:
                chunk = self._await(pending)
                pending = self._submit(executor, next(plan, None), stats)
                yield chunk
        finally:
            self._stop_prefetch(executor, pending)

    def _stop_prefetch(self, executor: ThreadPoolExecutor, pending: Future[Chunk] | None) -> None:
        """Abandon the in-flight range and join the worker within the budget.

        The worker makes no further attempt once the stop event is set, so
        at most the read already in progress completes. When the budget
        leaves no time to wait for it, the worker is left to finish alone.
        """
        self._fetch_stopped.set()
        if pending is None or pending.cancel():
            executor.shutdown(wait=True)
            return
        done, _ = wait([pending], timeout=self._remaining_seconds())
        executor.shutdown(wait=bool(done))
        if not done:
            _LOGGER.warning("chunk_prefetch_abandoned", remaining_seconds=self._remaining_seconds())

    def _submit(
        self,
        executor: ThreadPoolExecutor,
        planned: _RangePlan | None,
        stats: ExtractionStats,
    ) -> Future[Chunk] | None:
        if planned is None:
            return None
        index, start, length = planned
        return executor.submit(self._fetch_range, index, start, length, stats)

    def _await(self, pending: Future[Chunk]) -> Chunk:
        """Wait for a prefetched chunk without blocking past the deadline."""
        try:
            return pending.result(timeout=self._remaining_seconds())
        except FutureTimeoutError as error:
            raise ExtractionTimeoutError(self._timeout_message()) from error

    def _lookup_size(self) -> int | None:
        for attempt in self._retrying():
            with attempt:
                self._check_deadline()
                total = self._source.size()
        return total

    def _fetch_range(self, index: int, start: int, length: int, stats: ExtractionStats) -> Chunk:
        return Chunk(index=index, start=start, data=self._read_range(start, length, stats))

    def _read_range(
        self,
        start: int,
        length: int,
        stats: ExtractionStats,
        exact: bool = True,
    ) -> bytes:
        """Read one byte range under the retry policy.

        Args:
            start: First byte offset.
            length: Bytes requested.
            stats: Run counters; every attempt is counted.
            exact: Treat fewer than ``length`` bytes as a failed read.

        Raises:
            FetchError: If every attempt fails.
            ExtractionTimeoutError: If the budget expires between attempts.
        """
        end = start + length - 1
        for attempt in self._retrying():
            with attempt:
                if self._fetch_stopped.is_set():
                    raise _FetchAbandonedError(f"Fetch of bytes {start}-{end} abandoned.")
                self._check_deadline()
                stats.fetch_attempts += 1
                attempt_started = self._clock()
                data = self._source.read_range(start, length)
                if exact and len(data) != length:
                    raise FetchError(
                        start,
                        end,
                        f"Short read for bytes {start}-{end}: got {len(data)} of {length} bytes.",
                    )
                _LOGGER.debug(
                    "chunk_fetched",
                    start=start,
                    end=end,
                    size_bytes=len(data),
                    attempt=attempt.retry_state.attempt_number,
                    attempt_seconds=round(self._clock() - attempt_started, 3),
                )
        return data

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._settings.max_fetch_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_backoff_seconds,
                max=self._settings.retry_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(FetchError),
            sleep=self._sleep_within_budget,
            before_sleep=_log_retry,
            reraise=True,
        )

    def _sleep_within_budget(self, seconds: float) -> None:
        remaining = self._remaining_seconds()
        self._sleep(seconds if remaining is None else max(0.0, min(seconds, remaining)))

    def _remaining_seconds(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def _check_deadline(self) -> None:
        """Raise once the wall-clock budget is spent.

        Raises:
            ExtractionTimeoutError: If the deadline has passed.
        """
        if self._deadline is not None and self._clock() >= self._deadline:
            raise ExtractionTimeoutError(self._timeout_message())

    def _timeout_message(self) -> str:
        return (
            f"Extraction exceeded its {self._settings.time_budget_seconds}s time budget. "
            "Raise VITALSTREAM_TIME_BUDGET_SECONDS or resume with a larger budget."
        )

    def _report_progress(self, stats: ExtractionStats) -> None:
        if self._progress is None or self._job_id is None:
            return
        total_estimate = _estimate_total_records(stats, self._total_bytes)
        message = f"Processed {stats.raw_records} records from {stats.chunks_fetched} chunks"
        self._progress.report_progress(
            self._job_id,
            JobProgress(current=stats.raw_records, total=total_estimate, message=message),
        )


def _range_plan(total_bytes: int, chunk_size: int) -> Iterator[_RangePlan]:
    for index, start in enumerate(range(0, total_bytes, chunk_size)):
        yield index, start, min(chunk_size, total_bytes - start)


def _estimate_total_records(stats: ExtractionStats, total_bytes: int | None) -> int:
    """Extrapolate the record count from the fraction of bytes read."""
    if not total_bytes or not stats.bytes_fetched:
        return stats.raw_records
    estimate = stats.raw_records * total_bytes // stats.bytes_fetched
    return max(stats.raw_records, estimate)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    _LOGGER.warning(
        "fetch_retry_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0.0,
        start=getattr(error, "start", None),
        end=getattr(error, "end", None),
        error=str(error),
    )


def _log_run_finished(
    state: JobState,
    stop_reason: str,
    stats: ExtractionStats,
    elapsed_seconds: float,
    error: VitalIngestError | None,
) -> None:
    fields = {
        "state": state.value,
        "stop_reason": stop_reason,
        "chunks": stats.chunks_fetched,
        "bytes": stats.bytes_fetched,
        "fetch_attempts": stats.fetch_attempts,
        "raw_records": stats.raw_records,
        "parsed_records": stats.parsed_records,
        "skipped_records": stats.skipped_records,
        "unclassified_records": stats.unclassified_records,
        "classified": {metric.value: count for metric, count in stats.classified_by_metric.items()},
        "buffer_overflows": stats.buffer_overflows,
        "elapsed_seconds": round(elapsed_seconds, 3),
    }
    if error is None:
        _LOGGER.info("extraction_completed", **fields)
        return
    _LOGGER.error("extraction_failed", error=str(error), **fields)
