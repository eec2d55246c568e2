"""Unit tests for raw record parsing."""

from __future__ import annotations

import pytest

from core.errors import ParseError
from core.types import RawRecord
from ingest.record_parser import RecordParser, format_timestamp, parse_record, parse_timestamp


def _raw(text: str, sequence: int = 0) -> RawRecord:
    return RawRecord(sequence=sequence, text=text)


def test_parse_record_reads_attributes_and_normalizes_date() -> None:
    """Parser should map attributes onto a UTC-normalized record."""
    raw = _raw(
        '<Record type="HKQuantityTypeIdentifierHeartRate" sourceName="Watch" unit="count/min" '
        'startDate="2024-01-01 08:00:00 -0500" endDate="2024-01-01 08:01:00 -0500" value="72"/>'
    )

    record = parse_record(raw)

    assert record.type == "HKQuantityTypeIdentifierHeartRate"
    assert record.value == 72.0
    assert record.date == "2024-01-01T13:00:00.000Z"
    assert record.end_time == "2024-01-01T13:01:00.000Z"
    assert (record.source_name, record.unit) == ("Watch", "count/min")


def test_parse_record_prefers_start_then_creation_then_end_date() -> None:
    """Parser should fall back to later timestamp attributes in order."""
    raw = _raw(
        '<Record type="weight" value="80" startDate="not-a-date" '
        'creationDate="2024-02-01T10:00:00Z" endDate="2024-03-01T10:00:00Z"/>'
    )

    record = parse_record(raw)

    assert record.date == "2024-02-01T10:00:00.000Z"


def test_parse_record_accepts_paired_record_with_children() -> None:
    """Parser should accept records with nested metadata elements."""
    raw = _raw(
        '<Record type="hrv" value="45.5" startDate="2024-01-01">'
        '<MetadataEntry key="k" value="v"/></Record>'
    )

    record = parse_record(raw)

    assert record.value == 45.5 and record.date == "2024-01-01T00:00:00.000Z"


@pytest.mark.parametrize(
    ("text", "reason"),
    [
        ('<Record type="hrv" value="1" startDate="2024-01-01"', "malformed_xml"),
        ('<Record value="1" startDate="2024-01-01"/>', "missing_type"),
        ('<Record type="hrv" startDate="2024-01-01"/>', "missing_value"),
        ('<Record type="hrv" value="abc" startDate="2024-01-01"/>', "invalid_value"),
        ('<Record type="hrv" value="nan" startDate="2024-01-01"/>', "invalid_value"),
        ('<Record type="hrv" value="1" startDate="yesterday"/>', "invalid_date"),
    ],
)
def test_parse_record_rejects_invalid_fragments(text: str, reason: str) -> None:
    """Parser should raise ParseError with a machine-readable reason."""
    with pytest.raises(ParseError) as error_info:
        parse_record(_raw(text))

    assert error_info.value.reason == reason


def test_record_parser_skips_one_malformed_record_out_of_one_hundred() -> None:
    """One bad record should not affect the other ninety-nine."""
    parser = RecordParser()
    raws = [
        _raw(f'<Record type="heartRate" value="{60 + index}" startDate="2024-01-01"/>', index)
        for index in range(100)
    ]
    raws[42] = _raw('<Record type="heartRate" value="7" startDate="2024-01-01" <broken/>', 42)

    parsed = [parser.parse(raw) for raw in raws]

    assert sum(record is not None for record in parsed) == 99
    assert parsed[42] is None and parsed[43] is not None
    assert parser.skip_counts == {"malformed_xml": 1}


def test_parse_timestamp_reads_offset_and_iso_forms() -> None:
    """Timestamp parsing should normalize offsets to UTC."""
    offset_form = parse_timestamp("2024-06-30 23:30:00 -0200")
    iso_form = parse_timestamp("2024-07-01T01:30:00Z")

    assert offset_form == iso_form
    assert format_timestamp(offset_form) == "2024-07-01T01:30:00.000Z"
    assert parse_timestamp("") is None and parse_timestamp(None) is None
