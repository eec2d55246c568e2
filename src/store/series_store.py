"""Per-owner metric series persistence.

This module stores one JSON array document per owner and metric,
replacing the previous version on every save. Local filesystem and
S3 backends share the same contract.
"""

from __future__ import annotations

from pathlib import Path
import re
from typing import Any, Protocol

from core.config import VitalConfig
from core.constants import (
    JSON_CONTENT_TYPE,
    S3_SERIES_KEY_PREFIX,
    SERIES_DIR_NAME,
    SERIES_FILE_SUFFIX,
)
from core.errors import PersistenceError
from core.logging_config import get_logger
from core.s3_client import create_s3_client
from core.types import MetricPoint, MetricType
from store.series_payload import dump_series, load_series

_LOGGER = get_logger(__name__)

_OWNER_ID_PATTERN = re.compile(r"[A-Za-z0-9._@-]+")


class SeriesStore(Protocol):
    """Persistence contract for metric series."""

    def load(self, metric: MetricType, owner_id: str) -> list[MetricPoint]:
        """Return the persisted series, or an empty list."""

    def save(self, metric: MetricType, series: list[MetricPoint], owner_id: str) -> None:
        """Replace the persisted series."""


class LocalSeriesStore:
    """Filesystem-backed series store."""

    def __init__(self, data_root: Path) -> None:
        self._series_dir = data_root / SERIES_DIR_NAME

    def load(self, metric: MetricType, owner_id: str) -> list[MetricPoint]:
        path = self._series_path(metric, owner_id)
        if not path.exists():
            return []
        try:
            document = path.read_text(encoding="utf-8")
        except OSError as error:
            raise PersistenceError(f"Failed to read series at {path}: {error}.") from error
        return load_series(document, str(path))

    def save(self, metric: MetricType, series: list[MetricPoint], owner_id: str) -> None:
        path = self._series_path(metric, owner_id)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(dump_series(series), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise PersistenceError(
                f"Failed to write series at {path}: {error}. Check data root permissions."
            ) from error
        _LOGGER.info("series_saved", metric=metric.value, owner_id=owner_id, points=len(series))

    def _series_path(self, metric: MetricType, owner_id: str) -> Path:
        return self._series_dir / _checked_owner_id(owner_id) / series_file_name(metric)


class S3SeriesStore:
    """S3-backed series store using ``data/<owner>/<metric>.json`` keys."""

    def __init__(self, s3_client: Any, bucket: str) -> None:
        self._client = s3_client
        self._bucket = bucket

    def load(self, metric: MetricType, owner_id: str) -> list[MetricPoint]:
        for key in _candidate_keys(metric, owner_id):
            document = self._read_document(key)
            if document is not None:
                return load_series(document, f"s3://{self._bucket}/{key}")
        return []

    def save(self, metric: MetricType, series: list[MetricPoint], owner_id: str) -> None:
        key = series_key(metric, owner_id)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=dump_series(series).encode("utf-8"),
                ContentType=JSON_CONTENT_TYPE,
            )
        except Exception as error:
            raise PersistenceError(
                f"Failed to write series to s3://{self._bucket}/{key}: {error}. "
                "Check AWS credentials and retry ingest."
            ) from error
        _LOGGER.info("series_saved", metric=metric.value, owner_id=owner_id, points=len(series))

    def _read_document(self, key: str) -> str | None:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read().decode("utf-8")
        except Exception as error:
            if _is_missing_key(error):
                return None
            raise PersistenceError(
                f"Failed to read series from s3://{self._bucket}/{key}: {error}."
            ) from error


def series_key(metric: MetricType, owner_id: str) -> str:
    """Return the S3 key of a metric series document."""
    return f"{S3_SERIES_KEY_PREFIX}/{_checked_owner_id(owner_id)}/{series_file_name(metric)}"


def series_file_name(metric: MetricType) -> str:
    """Return the document name shared by every series backend."""
    return f"{metric.value.lower()}{SERIES_FILE_SUFFIX}"


def create_series_store(config: VitalConfig) -> SeriesStore:
    """Create the series store selected by configuration."""
    if config.series_bucket:
        return S3SeriesStore(create_s3_client(config), config.series_bucket)
    return LocalSeriesStore(config.data_root)


def _checked_owner_id(owner_id: str) -> str:
    """Return an owner id that is safe as a single path segment.

    Raises:
        PersistenceError: If the id could name anything but one directory.
    """
    if not _OWNER_ID_PATTERN.fullmatch(owner_id) or not owner_id.strip("."):
        raise PersistenceError(
            f"Invalid owner id '{owner_id}': use letters, digits, '.', '_', '@' or '-'."
        )
    return owner_id


def _candidate_keys(metric: MetricType, owner_id: str) -> list[str]:
    """Return keys to probe, including the legacy camel-case body fat key."""
    keys = [series_key(metric, owner_id)]
    if metric is MetricType.BODY_FAT:
        keys.append(f"{S3_SERIES_KEY_PREFIX}/{owner_id}/{metric.value}{SERIES_FILE_SUFFIX}")
    return keys


def _is_missing_key(error: Exception) -> bool:
    """Return whether a boto3 error means the object does not exist."""
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return False
    code = str(response.get("Error", {}).get("Code", ""))
    return code in ("NoSuchKey", "404", "NotFound")
