# extract.py
# SPDX-License-Identifier: MIT
"""Locate complete self-closing ``<Record .../>`` elements in a text buffer.

The extractor is a pure function over the decoded text accumulated by the
stream driver. It never raises on malformed input: anything it cannot
resolve into a complete record stays in the remainder so the next read can
supply the missing bytes.
"""

from __future__ import annotations

from typing import NamedTuple

from .log import get_logger

__all__ = ["RECORD_OPEN", "RECORD_CLOSE", "ExtractResult", "extract_records", "count_record_markers"]

log = get_logger(__name__)

RECORD_OPEN = "<Record"
RECORD_CLOSE = "/>"

# Characters allowed right after "<Record" for the match to be the Record tag
# itself rather than a longer tag name such as "<RecordSet".
_TAG_BOUNDARY = frozenset(" >/")


class ExtractResult(NamedTuple):
    """Records found in a buffer plus the unconsumed suffix.

    ``resume_at`` is the offset into ``remainder`` where the next scan has
    to start: the text before it holds no ``<Record`` opening, so a caller
    that only appends to the remainder can skip it.
    """

    records: list[str]
    remainder: str
    resume_at: int = 0


def extract_records(buffer: str, start: int = 0) -> ExtractResult:
    """Split ``buffer`` into complete records and an unconsumed remainder.

    Scans forward for ``<Record``. Matches whose next character is not a
    space, ``>`` or ``/`` are skipped one position at a time. From a valid
    opening the first ``/>`` closes the record; if there is none the scan
    stops and the opening stays in the remainder. A match at the very end of
    the buffer (next character not read yet) is also left for the next pass.

    Args:
        buffer (str): Decoded text read so far minus consumed records.
        start (int): Offset where scanning begins; text before it must not
            hold an opening. Pass the previous ``resume_at`` here after
            appending to the previous remainder.

    Returns:
        ExtractResult: Records in source order, the suffix of ``buffer``
        starting right after the last extracted record, and the offset in
        that suffix where the next scan should begin.
    """
    if not buffer:
        return ExtractResult([], "", 0)

    records: list[str] = []
    size = len(buffer)
    cursor = min(max(start, 0), size)
    consumed = 0
    open_len = len(RECORD_OPEN)
    pending: int | None = None

    while cursor < size:
        found = buffer.find(RECORD_OPEN, cursor)
        if found == -1:
            break
        boundary = found + open_len
        if boundary >= size:
            pending = found
            break
        if buffer[boundary] not in _TAG_BOUNDARY:
            cursor = found + 1
            continue
        end = buffer.find(RECORD_CLOSE, boundary)
        if end == -1:
            pending = found
            break
        end += len(RECORD_CLOSE)
        records.append(buffer[found:end])
        consumed = end
        cursor = end

    if pending is None:
        # A partial "<Recor" may sit in the last open_len - 1 characters.
        pending = max(cursor, size - (open_len - 1), consumed)
    remainder = buffer[consumed:]
    if records:
        log.debug("Extracted %d records, %d chars remaining", len(records), len(remainder))
    return ExtractResult(records, remainder, pending - consumed)


def count_record_markers(content: str) -> int:
    """Count raw ``<Record`` occurrences (a cheap sanity check, not a parse)."""
    if not content:
        return 0
    return content.count(RECORD_OPEN)
