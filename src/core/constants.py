"""Core constants used across Vitalstream modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".vitalstream")
SERIES_DIR_NAME = "series"
JOBS_DIR_NAME = "jobs"
SERIES_FILE_SUFFIX = ".json"
S3_SERIES_KEY_PREFIX = "data"
JSON_CONTENT_TYPE = "application/json"
SOURCE_ENCODING = "utf-8"

RECORD_START_MARKER = "<Record"
RECORD_END_MARKER = "</Record>"
RECORD_TAG_NAME = "Record"

DEFAULT_CHUNK_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_FETCH_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 2.0
DEFAULT_RETRY_BACKOFF_MAX_SECONDS = 30.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0
DEFAULT_TIME_BUDGET_SECONDS = 840.0
DEFAULT_MAX_BUFFER_CHARS = 50 * 1024 * 1024
DEFAULT_PROGRESS_INTERVAL_RECORDS = 10_000
DEFAULT_PREFETCH_CHUNKS = True
DEFAULT_MAX_PENDING_PROGRESS_UPDATES = 32

JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
TERMINAL_JOB_STATUSES = (JOB_STATUS_COMPLETED, JOB_STATUS_FAILED)
