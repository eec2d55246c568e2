"""Raw record parsing into typed health records.

This module parses one reassembled ``<Record>`` fragment at a time.
Malformed or incomplete records are rejected with a ``ParseError``
that never escapes ``RecordParser``, so one bad record cannot abort
an extraction run.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
import math
from xml.etree.ElementTree import ParseError as XmlParseError

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring

from core.constants import RECORD_TAG_NAME
from core.errors import ParseError
from core.logging_config import get_logger
from core.types import HealthRecord, RawRecord

_LOGGER = get_logger(__name__)

_TIMESTAMP_ATTRIBUTES = ("startDate", "creationDate", "endDate")
_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
)


def parse_record(raw: RawRecord | str) -> HealthRecord:
    """Parse one raw record fragment.

    Args:
        raw: Reassembled record or its text.

    Returns:
        Typed health record.

    Raises:
        ParseError: If the fragment is malformed or misses required fields.
    """
    text = raw.text if isinstance(raw, RawRecord) else raw
    try:
        element = fromstring(text)
    except (XmlParseError, DefusedXmlException) as error:
        raise ParseError("malformed_xml", f"Record is not well-formed XML: {error}.") from error
    if element.tag != RECORD_TAG_NAME:
        raise ParseError("unexpected_tag", f"Expected <Record>, got <{element.tag}>.")
    attributes = element.attrib
    record_type = attributes.get("type", "").strip()
    if not record_type:
        raise ParseError("missing_type", "Record has no type attribute.")
    value = _parse_value(attributes.get("value"))
    timestamp = _first_timestamp(attributes)
    return HealthRecord(
        type=record_type,
        value=value,
        date=format_timestamp(timestamp),
        source_name=attributes.get("sourceName", ""),
        unit=attributes.get("unit", ""),
        start_time=_optional_timestamp(attributes.get("startDate")),
        end_time=_optional_timestamp(attributes.get("endDate")),
    )


def parse_timestamp(text: str | None) -> datetime | None:
    """Parse an export timestamp into an aware UTC datetime.

    Accepts ``2024-01-01 08:00:00 -0500``, ISO-8601 with ``Z`` or an
    offset, naive values (read as UTC), and bare dates.

    Args:
        text: Raw attribute value.

    Returns:
        Parsed UTC datetime, or None when unparseable.
    """
    if text is None or not text.strip():
        return None
    candidate = text.strip()
    parsed = _parse_with_formats(candidate)
    if parsed is None:
        parsed = _parse_iso(candidate)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with milliseconds and ``Z``."""
    utc_moment = moment.astimezone(timezone.utc)
    return utc_moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_moment.microsecond // 1000:03d}Z"


class RecordParser:
    """Per-record parser that counts and logs skips instead of raising."""

    def __init__(self, skip_counts: Counter[str] | None = None) -> None:
        self.skip_counts: Counter[str] = skip_counts if skip_counts is not None else Counter()

    def parse(self, raw: RawRecord) -> HealthRecord | None:
        """Parse a raw record, returning None for rejected records."""
        try:
            return parse_record(raw)
        except ParseError as error:
            self.skip_counts[error.reason] += 1
            _LOGGER.debug(
                "record_skipped",
                sequence=raw.sequence,
                reason=error.reason,
                detail=str(error),
            )
            return None


def _parse_value(raw_value: str | None) -> float:
    """Parse a finite numeric value attribute.

    Raises:
        ParseError: If the value is missing, non-numeric, or not finite.
    """
    if raw_value is None or not raw_value.strip():
        raise ParseError("missing_value", "Record has no value attribute.")
    try:
        value = float(raw_value)
    except ValueError as error:
        raise ParseError(
            "invalid_value", f"Record value '{raw_value}' is not numeric."
        ) from error
    if not math.isfinite(value):
        raise ParseError("invalid_value", f"Record value '{raw_value}' is not finite.")
    return value


def _first_timestamp(attributes: dict[str, str]) -> datetime:
    """Return the first parseable timestamp in preference order.

    Raises:
        ParseError: If no timestamp attribute parses.
    """
    for name in _TIMESTAMP_ATTRIBUTES:
        parsed = parse_timestamp(attributes.get(name))
        if parsed is not None:
            return parsed
    raise ParseError("invalid_date", "Record has no parseable timestamp attribute.")


def _optional_timestamp(text: str | None) -> str | None:
    parsed = parse_timestamp(text)
    return format_timestamp(parsed) if parsed is not None else None


def _parse_with_formats(candidate: str) -> datetime | None:
    for pattern in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(candidate, pattern)
        except ValueError:
            continue
    return None


def _parse_iso(candidate: str) -> datetime | None:
    normalized = candidate[:-1] + "+00:00" if candidate.endswith("Z") else candidate
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        pass
    try:
        day = date.fromisoformat(candidate)
    except ValueError:
        return None
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
