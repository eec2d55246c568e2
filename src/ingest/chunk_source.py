"""Ordered byte-range sources for large health exports.

This module reads an export as a sequence of fixed-size byte ranges,
from S3 ranged GETs, local files, or sequential binary streams.
Ranges are always requested in ascending order; nothing seeks back.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterator, Protocol

from core.config import VitalConfig
from core.errors import FetchError, VitalIngestError
from core.logging_config import get_logger
from core.s3_client import create_s3_client
from core.types import Chunk

_LOGGER = get_logger(__name__)

S3_SCHEME = "s3://"


class ChunkSource(Protocol):
    """Byte-range reader over one large file."""

    def size(self) -> int | None:
        """Return total byte length, or None when unknown."""

    def read_range(self, start: int, length: int) -> bytes:
        """Return up to ``length`` bytes from ``start``; empty bytes at EOF."""


class S3RangeChunkSource:
    """Chunk source backed by S3 ``Range`` requests."""

    def __init__(self, s3_client: Any, bucket: str, key: str) -> None:
        self._client = s3_client
        self._bucket = bucket
        self._key = key
        self._size: int | None = None

    @property
    def uri(self) -> str:
        return f"s3://{self._bucket}/{self._key}"

    def size(self) -> int:
        """Return object size from a single HEAD request.

        Raises:
            FetchError: If the metadata lookup fails.
        """
        if self._size is not None:
            return self._size
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=self._key)
        except Exception as error:
            raise FetchError(
                0,
                0,
                f"Failed to read metadata for {self.uri}: {error}. "
                "Check the object key and AWS credentials.",
            ) from error
        self._size = int(response.get("ContentLength", 0))
        _LOGGER.info("s3_object_sized", uri=self.uri, size_bytes=self._size)
        return self._size

    def read_range(self, start: int, length: int) -> bytes:
        """Fetch one byte range with a ranged GET.

        Raises:
            FetchError: If the range request or body read fails.
        """
        total = self.size()
        if start >= total:
            return b""
        end = min(start + length, total) - 1
        try:
            response = self._client.get_object(
                Bucket=self._bucket,
                Key=self._key,
                Range=f"bytes={start}-{end}",
            )
            body = response["Body"].read()
        except Exception as error:
            raise FetchError(
                start,
                end,
                f"Failed to fetch bytes {start}-{end} of {self.uri}: {error}.",
            ) from error
        return body


class LocalFileChunkSource:
    """Chunk source reading ranges of a local file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def size(self) -> int:
        """Return the file size.

        Raises:
            VitalIngestError: If the file does not exist.
        """
        try:
            return self._path.stat().st_size
        except FileNotFoundError as error:
            raise VitalIngestError(
                f"Failed to read export at {self._path}: path does not exist. "
                "Provide an existing export.xml file."
            ) from error

    def read_range(self, start: int, length: int) -> bytes:
        """Read one byte range.

        Raises:
            FetchError: If the read fails.
        """
        try:
            with self._path.open("rb") as handle:
                handle.seek(start)
                return handle.read(length)
        except OSError as error:
            raise FetchError(
                start,
                start + length - 1,
                f"Failed to read bytes {start}-{start + length - 1} of {self._path}: {error}.",
            ) from error


class StreamChunkSource:
    """Chunk source over an already-open sequential binary stream."""

    def __init__(self, stream: BinaryIO, size: int | None = None) -> None:
        self._stream = stream
        self._size = size
        self._position = 0

    def size(self) -> int | None:
        return self._size

    def read_range(self, start: int, length: int) -> bytes:
        """Read the next range from the stream.

        Raises:
            VitalIngestError: If ``start`` is not the current stream position.
            FetchError: If the stream read fails.
        """
        if start != self._position:
            raise VitalIngestError(
                f"Stream sources are sequential: requested offset {start}, "
                f"but the stream is at {self._position}."
            )
        try:
            data = self._stream.read(length)
        except OSError as error:
            raise FetchError(start, start + length - 1, f"Stream read failed: {error}.") from error
        self._position += len(data)
        return data


def iter_chunks(
    source: ChunkSource,
    chunk_size: int,
    read_range: Callable[[int, int], bytes] | None = None,
) -> Iterator[Chunk]:
    """Yield a source's chunks in byte order.

    Args:
        source: Byte-range source.
        chunk_size: Bytes requested per chunk.
        read_range: Reader used in place of ``source.read_range``, such
            as one wrapped in a retry policy.

    Yields:
        Ordered chunks until the source is exhausted.
    """
    read = read_range or source.read_range
    start = 0
    index = 0
    total = source.size()
    while total is None or start < total:
        data = read(start, chunk_size)
        if not data:
            return
        yield Chunk(index=index, start=start, data=data)
        start += len(data)
        index += 1


def open_chunk_source(source_uri: str, config: VitalConfig) -> ChunkSource:
    """Resolve a source URI into a chunk source.

    Args:
        source_uri: Local path or ``s3://bucket/key`` URI.
        config: Runtime configuration for S3 session defaults.

    Returns:
        Chunk source for the export.

    Raises:
        VitalIngestError: If an S3 URI lacks a bucket or key.
    """
    if not source_uri.startswith(S3_SCHEME):
        return LocalFileChunkSource(Path(source_uri).expanduser())
    bucket, _, key = source_uri.removeprefix(S3_SCHEME).partition("/")
    if not bucket or not key:
        raise VitalIngestError(
            f"Invalid S3 URI '{source_uri}': expected s3://bucket/key. "
            "Provide both bucket and object key."
        )
    s3_client = create_s3_client(config, config.extraction.fetch_timeout_seconds)
    return S3RangeChunkSource(s3_client, bucket, key)
