"""Vitalstream exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each pipeline stage raises a specific error type for debuggability.
"""

from __future__ import annotations


class VitalError(Exception):
    """Base exception for all Vitalstream failures."""


class VitalConfigError(VitalError):
    """Raised for invalid runtime configuration."""


class VitalDependencyError(VitalError):
    """Raised when an optional runtime dependency is missing."""


class VitalIngestError(VitalError):
    """Raised for source reading and extraction failures."""


class FetchError(VitalIngestError):
    """Raised when a byte range cannot be fetched from a chunk source.

    Attributes:
        start: First byte offset of the attempted range.
        end: Last byte offset (inclusive) of the attempted range.
    """

    def __init__(self, start: int, end: int, message: str) -> None:
        super().__init__(message)
        self.start = start
        self.end = end


class ParseError(VitalIngestError):
    """Raised when one raw record cannot become a health record.

    Attributes:
        reason: Short machine-readable skip reason.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class BufferOverflowError(VitalIngestError):
    """Raised when the carry buffer exceeds its size cap.

    Attributes:
        buffered_chars: Buffer length when the cap was exceeded.
    """

    def __init__(self, buffered_chars: int, message: str) -> None:
        super().__init__(message)
        self.buffered_chars = buffered_chars


class ExtractionTimeoutError(VitalIngestError):
    """Raised when an extraction run exceeds its time budget."""


class PersistenceError(VitalError):
    """Raised for series and job store failures."""
