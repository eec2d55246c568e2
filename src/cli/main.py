"""Vitalstream CLI entry points.

This module exposes commands for export ingest, series and job inspection.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
import json
from pathlib import Path
from typing import Any, Sequence

from core.config import VitalConfig
from core.errors import VitalError
from core.types import IngestOptions, MetricType
from ingest.job_reporting import LoggingJobReporter
from ingest.metric_classifier import parse_metric_type, supported_metric_names
from store.series_sdk import VitalClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="vitalstream", description="Vitalstream health export CLI")
    parser.add_argument("--data-root", help="Override VITALSTREAM_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_ingest_command(subparsers)
    _add_series_command(subparsers)
    _add_job_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Vitalstream CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root, getattr(args, "chunk_size", None))
        if args.command == "ingest":
            return _run_ingest_command(client, args)
        if args.command == "series":
            return _run_series_command(client, args)
        if args.command == "job":
            return _run_job_command(client, args)
    except VitalError as error:
        parser.exit(1, f"error: {error}\n")
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None, chunk_size: int | None) -> VitalClient:
    """Build SDK client with optional config overrides.

    Args:
        data_root: Optional override path.
        chunk_size: Optional chunk size override in bytes.

    Returns:
        Configured SDK client.
    """
    config = VitalConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    if chunk_size:
        config = replace(config, extraction=replace(config.extraction, chunk_size_bytes=chunk_size))
    return VitalClient(config)


def _run_ingest_command(client: VitalClient, args: argparse.Namespace) -> int:
    """Handle ingest command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code; 1 when the job failed.
    """
    metrics = _parse_metrics(args.metric)
    options = IngestOptions(
        source_uri=args.source,
        owner_id=args.owner,
        job_id=args.job_id,
        metrics=metrics,
        max_records_per_metric=args.max_records,
        stall_window_records=args.stall_window,
    )
    job_reporter = LoggingJobReporter() if args.no_job_record else None
    result = client.ingest(options, job_reporter=job_reporter)
    print(f"job_id={result.job_id}")
    print(f"state={result.state.value}")
    print(f"stop_reason={result.stop_reason}")
    print(f"records_processed={result.records_processed}")
    for metric_name, count in sorted(result.saved_counts.items()):
        print(f"saved.{metric_name}={count}")
    if result.error_message:
        print(f"error={result.error_message}")
        return 1
    return 0


def _run_series_command(client: VitalClient, args: argparse.Namespace) -> int:
    """Handle series command."""
    series = client.load_series(args.owner, args.metric)
    for point in series:
        print(f"{point.date}\t{point.value:g}")
    return 0


def _run_job_command(client: VitalClient, args: argparse.Namespace) -> int:
    """Handle job command."""
    document = client.load_job(args.job_id)
    print(json.dumps(document, indent=2, sort_keys=True))
    return 0


def _positive_int(raw_value: str) -> int:
    """Parse a CLI integer that must be at least 1."""
    try:
        value = int(raw_value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{raw_value}'") from error
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected a value >= 1, got {value}")
    return value


def _parse_metrics(names: list[str] | None) -> tuple[MetricType, ...] | None:
    if not names:
        return None
    return tuple(dict.fromkeys(parse_metric_type(name) for name in names))


def _add_ingest_command(subparsers: Any) -> None:
    """Register ingest subcommand."""
    parser = subparsers.add_parser("ingest", help="Ingest a health export file or S3 object")
    parser.add_argument("source", help="Local export.xml path or s3://bucket/key")
    parser.add_argument("--owner", required=True, help="Owner id whose series are updated")
    parser.add_argument("--job-id", help="Existing job id to report into")
    parser.add_argument(
        "--metric",
        action="append",
        choices=supported_metric_names(),
        help="Metric to extract; repeat for several (default: all)",
    )
    parser.add_argument(
        "--max-records",
        type=_positive_int,
        help="Stop once each requested metric has this many records",
    )
    parser.add_argument(
        "--stall-window",
        type=_positive_int,
        help="Stop once found metrics have not reappeared for this many records",
    )
    parser.add_argument("--chunk-size", type=_positive_int, help="Bytes fetched per ranged read")
    parser.add_argument(
        "--no-job-record",
        action="store_true",
        help="Log job progress instead of writing a job document",
    )


def _add_series_command(subparsers: Any) -> None:
    """Register series subcommand."""
    parser = subparsers.add_parser("series", help="Print a persisted metric series")
    parser.add_argument("--owner", required=True, help="Owner id")
    parser.add_argument(
        "--metric",
        required=True,
        choices=supported_metric_names(),
        help="Metric name",
    )


def _add_job_command(subparsers: Any) -> None:
    """Register job subcommand."""
    parser = subparsers.add_parser("job", help="Print a job status document")
    parser.add_argument("job_id", help="Job identifier")
