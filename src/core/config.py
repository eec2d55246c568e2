"""Runtime configuration model for Vitalstream.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

from core.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_DATA_ROOT,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_MAX_BUFFER_CHARS,
    DEFAULT_MAX_FETCH_ATTEMPTS,
    DEFAULT_PROGRESS_INTERVAL_RECORDS,
    DEFAULT_RETRY_BACKOFF_MAX_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TIME_BUDGET_SECONDS,
)
from core.errors import VitalConfigError
from core.types import ExtractionSettings

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class VitalConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for series and job documents.
        s3_region: Optional default AWS region for S3 operations.
        s3_profile: Optional AWS profile for boto3 session initialization.
        series_bucket: Bucket for S3-backed series documents, local store when unset.
        extraction: Chunking, retry, and budget settings for extraction runs.
    """

    data_root: Path
    s3_region: str | None = None
    s3_profile: str | None = None
    series_bucket: str | None = None
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)

    @classmethod
    def from_env(cls) -> "VitalConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            VitalConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("VITALSTREAM_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            s3_region=os.getenv("VITALSTREAM_S3_REGION") or None,
            s3_profile=os.getenv("VITALSTREAM_S3_PROFILE") or None,
            series_bucket=os.getenv("VITALSTREAM_SERIES_BUCKET") or None,
            extraction=_extraction_settings_from_env(),
        )


def _extraction_settings_from_env() -> ExtractionSettings:
    """Read extraction tunables from the environment."""
    time_budget = _read_float("VITALSTREAM_TIME_BUDGET_SECONDS", DEFAULT_TIME_BUDGET_SECONDS)
    return ExtractionSettings(
        chunk_size_bytes=_read_positive_int(
            "VITALSTREAM_CHUNK_SIZE_BYTES", DEFAULT_CHUNK_SIZE_BYTES
        ),
        max_fetch_attempts=_read_positive_int(
            "VITALSTREAM_MAX_FETCH_ATTEMPTS", DEFAULT_MAX_FETCH_ATTEMPTS
        ),
        retry_backoff_seconds=_read_float(
            "VITALSTREAM_RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS
        ),
        retry_backoff_max_seconds=_read_float(
            "VITALSTREAM_RETRY_BACKOFF_MAX_SECONDS", DEFAULT_RETRY_BACKOFF_MAX_SECONDS
        ),
        fetch_timeout_seconds=_read_float(
            "VITALSTREAM_FETCH_TIMEOUT_SECONDS", DEFAULT_FETCH_TIMEOUT_SECONDS
        ),
        time_budget_seconds=time_budget if time_budget > 0 else None,
        max_buffer_chars=_read_positive_int(
            "VITALSTREAM_MAX_CARRY_BUFFER_CHARS", DEFAULT_MAX_BUFFER_CHARS
        ),
        progress_interval_records=_read_positive_int(
            "VITALSTREAM_PROGRESS_INTERVAL_RECORDS", DEFAULT_PROGRESS_INTERVAL_RECORDS
        ),
        prefetch_chunks=_read_bool("VITALSTREAM_PREFETCH_CHUNKS", True),
    )


def _read_positive_int(name: str, default: int) -> int:
    """Parse a positive integer environment value.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        VitalConfigError: If value is not a positive integer.
    """
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = int(raw_value)
    except ValueError as error:
        raise VitalConfigError(
            f"Invalid {name} value: expected integer, got '{raw_value}'. "
            f"Set {name} to a positive whole number."
        ) from error
    if value <= 0:
        raise VitalConfigError(
            f"Invalid {name} value: expected a positive integer, got {value}. "
            f"Set {name} to a value greater than zero."
        )
    return value


def _read_float(name: str, default: float) -> float:
    """Parse a non-negative float environment value.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed float.

    Raises:
        VitalConfigError: If value is not a non-negative number.
    """
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value)
    except ValueError as error:
        raise VitalConfigError(
            f"Invalid {name} value: expected number, got '{raw_value}'. "
            f"Set {name} to a numeric value in seconds."
        ) from error
    if value < 0:
        raise VitalConfigError(
            f"Invalid {name} value: expected a non-negative number, got {value}. "
            f"Set {name} to zero or more."
        )
    return value


def _read_bool(name: str, default: bool) -> bool:
    """Parse a boolean environment flag."""
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    normalized = raw_value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise VitalConfigError(
        f"Invalid {name} value: expected a boolean, got '{raw_value}'. "
        f"Use one of {_TRUE_VALUES + _FALSE_VALUES}."
    )
