"""Record reassembly across chunk boundaries.

This module turns an ordered stream of byte chunks into complete
``<Record>`` fragments. A carry buffer holds the unfinished tail of the
stream between chunks, so a record split over any number of chunks is
emitted exactly once, in file byte order.

Boundary detection is plain marker search. That is sufficient for the
flat, non-nested ``<Record>`` elements of health exports; nested or
escaped markers would need a real streaming tokenizer.
"""

from __future__ import annotations

import codecs
import re

from core.constants import (
    DEFAULT_MAX_BUFFER_CHARS,
    RECORD_END_MARKER,
    RECORD_START_MARKER,
    SOURCE_ENCODING,
)
from core.errors import BufferOverflowError
from core.logging_config import get_logger
from core.types import RawRecord

_LOGGER = get_logger(__name__)

_TAG_NAME_TERMINATORS = frozenset(" \t\r\n/>")
_QUOTE_OR_TAG_CLOSE = re.compile(r"[\"'>]")


class RecordReassembler:
    """Stateful chunk-to-record reassembler.

    The carry buffer only ever holds text from the earliest unfinished
    record start onward, or a few trailing characters that may be the
    beginning of a split start marker.
    """

    def __init__(
        self,
        max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS,
        encoding: str = SOURCE_ENCODING,
    ) -> None:
        self._max_buffer_chars = max_buffer_chars
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._emitted = 0
        self.overflow_count = 0

    @property
    def buffered_chars(self) -> int:
        return len(self._buffer)

    @property
    def emitted_count(self) -> int:
        return self._emitted

    def feed(self, data: bytes | str) -> list[RawRecord]:
        """Append one chunk and return every record it completes.

        Args:
            data: Chunk bytes, or already-decoded text.

        Returns:
            Complete records in byte order.
        """
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        if text:
            self._buffer += text
        return self._drain()

    def finish(self) -> list[RawRecord]:
        """Flush the stream end and drop any unterminated fragment.

        Returns:
            Records completed by the final decoder flush.
        """
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._buffer += tail
        records = self._drain()
        if self._buffer.startswith(RECORD_START_MARKER):
            _LOGGER.info(
                "unterminated_record_discarded",
                fragment_chars=len(self._buffer),
                emitted_records=self._emitted,
            )
        self._buffer = ""
        return records

    def _drain(self) -> list[RawRecord]:
        records: list[RawRecord] = []
        while True:
            pending_start = self._consume_complete_records(records)
            if pending_start is None:
                self._buffer = _partial_marker_tail(self._buffer)
                return records
            self._buffer = self._buffer[pending_start:]
            try:
                self._check_capacity()
            except BufferOverflowError as error:
                self._recover_from_overflow(error)
                continue
            return records

    def _consume_complete_records(self, records: list[RawRecord]) -> int | None:
        """Emit complete records and return the offset of an unfinished one.

        Returns:
            Start offset of the first incomplete record, or None when the
            rest of the buffer holds no record start.
        """
        buffer = self._buffer
        cursor = 0
        while True:
            start, end = _locate_record(buffer, cursor)
            if start is None:
                self._buffer = buffer[cursor:]
                return None
            if end is None:
                self._buffer = buffer
                return start
            records.append(RawRecord(sequence=self._emitted, text=buffer[start:end]))
            self._emitted += 1
            cursor = end

    def _check_capacity(self) -> None:
        """Raise when the retained fragment exceeds the buffer cap.

        Raises:
            BufferOverflowError: If the carry buffer is over capacity.
        """
        if len(self._buffer) <= self._max_buffer_chars:
            return
        raise BufferOverflowError(
            len(self._buffer),
            f"Carry buffer holds {len(self._buffer)} chars without a record end, "
            f"above the {self._max_buffer_chars} char cap.",
        )

    def _recover_from_overflow(self, error: BufferOverflowError) -> None:
        """Trim the buffer back to its last record start, or clear it."""
        self.overflow_count += 1
        restart = self._buffer.rfind(RECORD_START_MARKER, 1)
        dropped_chars = restart if restart > 0 else len(self._buffer)
        _LOGGER.warning(
            "carry_buffer_overflow",
            buffered_chars=error.buffered_chars,
            max_buffer_chars=self._max_buffer_chars,
            dropped_chars=dropped_chars,
        )
        self._buffer = self._buffer[restart:] if restart > 0 else ""


def _locate_record(buffer: str, cursor: int) -> tuple[int | None, int | None]:
    """Find the next record at or after ``cursor``.

    Returns:
        ``(start, end)`` for a complete record with ``end`` exclusive,
        ``(start, None)`` for a record that is not complete yet, or
        ``(None, None)`` when no start marker remains.
    """
    search_from = cursor
    while True:
        start = buffer.find(RECORD_START_MARKER, search_from)
        if start == -1:
            return None, None
        name_end = start + len(RECORD_START_MARKER)
        if name_end >= len(buffer):
            return start, None
        if buffer[name_end] not in _TAG_NAME_TERMINATORS:
            # Longer tag name such as <RecordSet>.
            search_from = start + 1
            continue
        tag_end = _find_tag_end(buffer, name_end)
        if tag_end is None:
            return start, None
        if buffer[tag_end - 1] == "/":
            return start, tag_end + 1
        close = buffer.find(RECORD_END_MARKER, tag_end + 1)
        if close == -1:
            return start, None
        return start, close + len(RECORD_END_MARKER)


def _find_tag_end(buffer: str, position: int) -> int | None:
    """Return the index of the ``>`` closing an opening tag.

    A ``>`` inside a quoted attribute value does not close the tag.
    """
    quote: str | None = None
    while True:
        if quote is None:
            match = _QUOTE_OR_TAG_CLOSE.search(buffer, position)
            if match is None:
                return None
            if match.group() == ">":
                return match.start()
            quote = match.group()
            position = match.end()
            continue
        closing_quote = buffer.find(quote, position)
        if closing_quote == -1:
            return None
        quote = None
        position = closing_quote + 1


def _partial_marker_tail(residue: str) -> str:
    """Keep only a trailing prefix of the start marker, if any."""
    window = residue[-(len(RECORD_START_MARKER) - 1) :]
    bracket = window.rfind("<")
    if bracket == -1:
        return ""
    tail = window[bracket:]
    return tail if RECORD_START_MARKER.startswith(tail) else ""
