"""Unit tests for byte-range chunk sources."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from core.config import VitalConfig
from core.errors import FetchError, VitalIngestError
from ingest.chunk_source import (
    LocalFileChunkSource,
    S3RangeChunkSource,
    StreamChunkSource,
    iter_chunks,
    open_chunk_source,
)


class _FakeS3Client:
    def __init__(self, payload: bytes, failing_ranges: set[str] | None = None) -> None:
        self.payload = payload
        self.failing_ranges = failing_ranges or set()
        self.head_calls = 0
        self.ranges: list[str] = []

    def head_object(self, Bucket: str, Key: str) -> dict[str, int]:
        self.head_calls += 1
        return {"ContentLength": len(self.payload)}

    def get_object(self, Bucket: str, Key: str, Range: str) -> dict[str, io.BytesIO]:
        self.ranges.append(Range)
        if Range in self.failing_ranges:
            raise RuntimeError("connection reset")
        start, end = (int(part) for part in Range.removeprefix("bytes=").split("-"))
        return {"Body": io.BytesIO(self.payload[start : end + 1])}


def test_s3_source_issues_inclusive_range_requests() -> None:
    """S3 source should request inclusive byte ranges after one HEAD."""
    client = _FakeS3Client(b"0123456789")
    source = S3RangeChunkSource(client, "bucket", "exports/export.xml")

    chunks = list(iter_chunks(source, 4))

    assert [chunk.data for chunk in chunks] == [b"0123", b"4567", b"89"]
    assert client.ranges == ["bytes=0-3", "bytes=4-7", "bytes=8-9"]
    assert client.head_calls == 1 and chunks[2].end == 9


def test_s3_source_wraps_range_failures_in_fetch_error() -> None:
    """Range failures should surface as FetchError with the byte range."""
    client = _FakeS3Client(b"0123456789", failing_ranges={"bytes=4-7"})
    source = S3RangeChunkSource(client, "bucket", "export.xml")

    with pytest.raises(FetchError) as error_info:
        source.read_range(4, 4)

    assert (error_info.value.start, error_info.value.end) == (4, 7)


def test_local_source_reads_ranges_in_order(tmp_path: Path) -> None:
    """Local file source should return contiguous ranges."""
    export_path = tmp_path / "export.xml"
    export_path.write_bytes(b"abcdefghij")
    source = LocalFileChunkSource(export_path)

    chunks = list(iter_chunks(source, 3))

    assert b"".join(chunk.data for chunk in chunks) == b"abcdefghij"
    assert [chunk.start for chunk in chunks] == [0, 3, 6, 9]


def test_local_source_raises_for_missing_file(tmp_path: Path) -> None:
    """Missing local exports should fail with an ingest error."""
    source = LocalFileChunkSource(tmp_path / "missing.xml")

    with pytest.raises(VitalIngestError):
        source.size()


def test_stream_source_rejects_out_of_order_reads() -> None:
    """Stream sources should only serve sequential ranges."""
    source = StreamChunkSource(io.BytesIO(b"abcdef"))

    first = source.read_range(0, 2)

    with pytest.raises(VitalIngestError):
        source.read_range(4, 2)

    assert first == b"ab" and source.size() is None


def test_open_chunk_source_resolves_local_paths(tmp_path: Path) -> None:
    """Non-S3 URIs should resolve to a local file source."""
    config = VitalConfig(data_root=tmp_path)

    source = open_chunk_source(str(tmp_path / "export.xml"), config)

    assert isinstance(source, LocalFileChunkSource)


def test_open_chunk_source_resolves_s3_uris(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """S3 URIs should resolve to a ranged source on the parsed bucket and key."""
    client = _FakeS3Client(b"abc")
    monkeypatch.setattr("ingest.chunk_source.create_s3_client", lambda config, timeout: client)

    source = open_chunk_source("s3://exports/owner-1/export.xml", VitalConfig(data_root=tmp_path))

    assert isinstance(source, S3RangeChunkSource)
    assert source.uri == "s3://exports/owner-1/export.xml"


@pytest.mark.parametrize("uri", ["s3://bucket-only", "s3:///export.xml", "s3://bucket/"])
def test_open_chunk_source_rejects_incomplete_s3_uris(tmp_path: Path, uri: str) -> None:
    """S3 URIs without both bucket and key should fail with an ingest error."""
    with pytest.raises(VitalIngestError):
        open_chunk_source(uri, VitalConfig(data_root=tmp_path))


def test_iter_chunks_reads_through_supplied_reader() -> None:
    """A supplied reader should serve every range instead of the source."""
    source = StreamChunkSource(io.BytesIO(b"unused"))
    payload = b"abcdefg"
    requested: list[tuple[int, int]] = []

    def read(start: int, length: int) -> bytes:
        requested.append((start, length))
        return payload[start : start + length]

    chunks = list(iter_chunks(source, 3, read_range=read))

    assert [chunk.data for chunk in chunks] == [b"abc", b"def", b"g"]
    assert requested == [(0, 3), (3, 3), (6, 3), (7, 3)]
