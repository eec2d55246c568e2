"""Integration tests for health export ingest workflows."""

from __future__ import annotations

from dataclasses import replace
import io
from pathlib import Path
from typing import Any

import pytest

from core.config import VitalConfig
from core.types import IngestOptions, JobState, MetricPoint, MetricType
from store.series_sdk import VitalClient
from tests.fixture_paths import fixture_path

_EXPECTED_SERIES = {
    MetricType.HEART_RATE: [
        MetricPoint("2024-01-01T13:00:00.000Z", 72.0),
        MetricPoint("2024-01-01T14:00:00.000Z", 81.0),
    ],
    MetricType.WEIGHT: [MetricPoint("2024-01-01T12:30:00.000Z", 80.5)],
    MetricType.BODY_FAT: [MetricPoint("2024-01-01T12:30:00.000Z", 25.0)],
    MetricType.HRV: [MetricPoint("2024-01-01T11:00:00.000Z", 45.5)],
    MetricType.VO2_MAX: [MetricPoint("2024-01-01T16:00:00.000Z", 42.1)],
}


class _MissingKeyError(Exception):
    def __init__(self) -> None:
        super().__init__("NoSuchKey")
        self.response = {"Error": {"Code": "NoSuchKey"}}


class _FakeS3Client:
    """In-memory S3 client supporting HEAD, ranged GET, and PUT."""

    def __init__(self, objects: dict[str, bytes]) -> None:
        self.objects = dict(objects)
        self.ranges: list[str] = []

    def head_object(self, Bucket: str, Key: str) -> dict[str, int]:
        return {"ContentLength": len(self.objects[f"{Bucket}/{Key}"])}

    def get_object(self, Bucket: str, Key: str, Range: str | None = None) -> dict[str, Any]:
        location = f"{Bucket}/{Key}"
        if location not in self.objects:
            raise _MissingKeyError()
        body = self.objects[location]
        if Range is not None:
            self.ranges.append(Range)
            start, end = (int(part) for part in Range.removeprefix("bytes=").split("-"))
            body = body[start : end + 1]
        return {"Body": io.BytesIO(body)}

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str) -> None:
        self.objects[f"{Bucket}/{Key}"] = Body


def _config(data_root: Path, chunk_size: int, **overrides: Any) -> VitalConfig:
    config = replace(VitalConfig.from_env(), data_root=data_root, series_bucket=None)
    extraction = replace(
        config.extraction,
        chunk_size_bytes=chunk_size,
        retry_backoff_seconds=0.0,
        time_budget_seconds=None,
    )
    return replace(config, extraction=extraction, **overrides)


def test_local_export_ingest_is_idempotent(tmp_path: Path) -> None:
    """Ingesting the same export twice should leave every series unchanged."""
    client = VitalClient(_config(tmp_path, chunk_size=97))
    options = IngestOptions(source_uri=str(fixture_path("export_small.xml")), owner_id="owner-1")

    first = client.ingest(options)
    first_series = {metric: client.load_series("owner-1", metric) for metric in MetricType}
    second = client.ingest(options)
    second_series = {metric: client.load_series("owner-1", metric) for metric in MetricType}

    assert first.state is JobState.DONE and second.state is JobState.DONE
    assert first_series == _EXPECTED_SERIES and second_series == first_series
    assert client.load_job(second.job_id)["status"] == "completed"


def test_s3_export_ingest_uses_ranged_reads_and_series_keys(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """S3 exports should be read by range and persisted under owner keys."""
    payload = fixture_path("export_small.xml").read_bytes()
    s3_client = _FakeS3Client({"exports/owner-1/export.xml": payload})
    monkeypatch.setattr("ingest.chunk_source.create_s3_client", lambda *args, **kwargs: s3_client)
    monkeypatch.setattr("store.series_store.create_s3_client", lambda *args, **kwargs: s3_client)
    client = VitalClient(_config(tmp_path, chunk_size=1024, series_bucket="series"))

    result = client.ingest(
        IngestOptions(
            source_uri="s3://exports/owner-1/export.xml",
            owner_id="owner-1",
            metrics=(MetricType.HEART_RATE,),
        )
    )

    assert result.saved_counts == {"heartRate": 2}
    assert s3_client.ranges == ["bytes=0-1023", "bytes=1024-2047", f"bytes=2048-{len(payload) - 1}"]
    assert "series/data/owner-1/heartrate.json" in s3_client.objects
    assert client.load_series("owner-1", "heartRate") == _EXPECTED_SERIES[MetricType.HEART_RATE]
