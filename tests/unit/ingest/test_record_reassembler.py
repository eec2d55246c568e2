"""Unit tests for chunk-to-record reassembly."""

from __future__ import annotations

import pytest

from ingest.record_reassembler import RecordReassembler
from tests.fixture_paths import fixture_path

_HEART_RATE = '<Record type="HKQuantityTypeIdentifierHeartRate" value="72" startDate="2024-01-01 08:00:00 -0500"/>'
_WEIGHT = (
    '<Record type="HKQuantityTypeIdentifierBodyMass" value="80.5" startDate="2024-01-01 07:30:00 -0500">'
    '<MetadataEntry key="HKWasUserEntered" value="1"/>'
    "</Record>"
)


def _reassemble(data: bytes, chunk_size: int, max_buffer_chars: int = 1_000_000) -> list[str]:
    reassembler = RecordReassembler(max_buffer_chars=max_buffer_chars)
    texts: list[str] = []
    for start in range(0, len(data), chunk_size):
        texts.extend(record.text for record in reassembler.feed(data[start : start + chunk_size]))
    texts.extend(record.text for record in reassembler.finish())
    return texts


@pytest.mark.parametrize("chunk_size", [1, 17, 4096])
def test_reassembly_is_independent_of_chunk_size(chunk_size: int) -> None:
    """Reassembler should emit the same records for any chunk size."""
    data = fixture_path("export_small.xml").read_bytes()
    whole_file = _reassemble(data, len(data))

    chunked = _reassemble(data, chunk_size)

    assert chunked == whole_file and len(whole_file) == 9


def test_record_straddling_a_boundary_is_emitted_once() -> None:
    """A record split across two chunks should be emitted exactly once."""
    data = f"<HealthData>{_HEART_RATE}{_WEIGHT}</HealthData>".encode("utf-8")
    split_at = data.index(b"value=") + 3
    reassembler = RecordReassembler()

    first = reassembler.feed(data[:split_at])
    second = reassembler.feed(data[split_at:])

    assert [record.text for record in first + second] == [_HEART_RATE, _WEIGHT]


def test_record_spanning_five_single_byte_chunks_is_emitted_whole() -> None:
    """A record completed over many tiny chunks should be emitted intact."""
    record = "<Record/>"
    prefix = b"<Reco"
    reassembler = RecordReassembler()

    emitted = [reassembler.feed(prefix[index : index + 1]) for index in range(len(prefix))]
    emitted.append(reassembler.feed(b"rd/>"))

    assert all(not batch for batch in emitted[:-1])
    assert [raw.text for raw in emitted[-1]] == [record]


def test_truncated_tail_is_discarded() -> None:
    """An unterminated trailing record should be dropped at stream end."""
    data = f"{_HEART_RATE}<Record type=\"HKQuantityTypeIdentifierBodyMass\" value=\"8".encode("utf-8")
    reassembler = RecordReassembler()

    emitted = reassembler.feed(data)
    tail = reassembler.finish()

    assert [record.text for record in emitted] == [_HEART_RATE]
    assert tail == [] and reassembler.buffered_chars == 0


def test_multibyte_character_split_across_chunks_is_decoded() -> None:
    """A UTF-8 sequence split between chunks should survive reassembly."""
    record = '<Record type="heartRate" sourceName="Träger" value="61" startDate="2024-01-01"/>'
    data = record.encode("utf-8")
    split_at = data.index("ä".encode("utf-8")) + 1
    reassembler = RecordReassembler()

    emitted = reassembler.feed(data[:split_at]) + reassembler.feed(data[split_at:])

    assert [raw.text for raw in emitted] == [record]


def test_sequence_numbers_follow_file_order() -> None:
    """Emitted records should carry ascending sequence numbers."""
    data = f"{_HEART_RATE}{_WEIGHT}{_HEART_RATE}".encode("utf-8")
    reassembler = RecordReassembler()

    emitted = reassembler.feed(data)

    assert [record.sequence for record in emitted] == [0, 1, 2]
    assert reassembler.emitted_count == 3


def test_longer_tag_names_are_not_mistaken_for_records() -> None:
    """Tags that only share the record prefix should be ignored."""
    data = f'<RecordSet name="a"/>{_HEART_RATE}'.encode("utf-8")
    reassembler = RecordReassembler()

    emitted = reassembler.feed(data)

    assert [record.text for record in emitted] == [_HEART_RATE]


def test_closing_bracket_inside_attribute_value_does_not_end_tag() -> None:
    """A quoted '>' should not close the opening tag early."""
    record = '<Record type="note" value="1" label="a>b" startDate="2024-01-01"/>'
    reassembler = RecordReassembler()

    emitted = reassembler.feed(record.encode("utf-8"))

    assert [raw.text for raw in emitted] == [record]


def test_buffer_overflow_drops_oversized_fragment_and_recovers() -> None:
    """An oversized record should be dropped without losing later records."""
    oversized = '<Record type="heartRate" value="1">' + "x" * 200
    reassembler = RecordReassembler(max_buffer_chars=64)

    dropped = reassembler.feed(oversized.encode("utf-8"))
    recovered = reassembler.feed(("</Record>" + _HEART_RATE).encode("utf-8"))

    assert dropped == []
    assert [record.text for record in recovered] == [_HEART_RATE]
    assert reassembler.overflow_count == 1


def test_text_outside_records_is_not_buffered() -> None:
    """Non-record text should not accumulate in the carry buffer."""
    reassembler = RecordReassembler()

    reassembler.feed(b"<HealthData locale=\"en_US\">\n <ExportDate value=\"2024\"/>\n <Rec")

    assert reassembler.buffered_chars == len("<Rec")


def test_start_marker_at_chunk_end_and_end_marker_at_next_chunk_start() -> None:
    """Markers sitting exactly on chunk edges should yield one record each."""
    opening = '<Record type="hrv" value="45" startDate="2024-01-01">'
    chunks = [b"<HealthData>\n<Record", opening[len("<Record") :].encode("utf-8"), b"</Record>\n"]
    reassembler = RecordReassembler()

    emitted = [record.text for chunk in chunks for record in reassembler.feed(chunk)]

    assert emitted == [opening + "</Record>"]


def test_buffer_overflow_trims_back_to_last_record_start() -> None:
    """An overflow should keep the newest record start and drop what precedes it."""
    unclosed = '<Record type="note" value="1">' + "x" * 40
    partial = '<Record type="heartRate" value="72"'
    rest = ' startDate="2024-01-01"/>'
    reassembler = RecordReassembler(max_buffer_chars=64)

    first = reassembler.feed((unclosed + partial).encode("utf-8"))
    buffered_after_trim = reassembler.buffered_chars
    second = reassembler.feed(rest.encode("utf-8"))

    assert first == [] and reassembler.overflow_count == 1
    assert buffered_after_trim == len(partial)
    assert [record.text for record in second] == [partial + rest]
