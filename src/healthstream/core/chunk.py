# chunk.py
# SPDX-License-Identifier: MIT
"""Group extracted records into size-bounded chunks.

Chunks are the unit handed to the downstream processor. A chunk is sealed as
soon as the combined length of its pending records reaches the configured
threshold, so every chunk except the trailing one is at least ``chunk_size``
characters long. Records are never split across chunks.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

__all__ = ["RECORD_SEPARATOR", "Chunk", "ChunkAssembler"]

RECORD_SEPARATOR = "\n"


@dataclass(frozen=True, slots=True)
class Chunk:
    """An ordered, immutable group of record strings.

    Attributes:
        index (int): Zero-based position of the chunk within its file.
        records (tuple[str, ...]): Records in source order.
    """

    index: int
    records: tuple[str, ...]

    @property
    def char_count(self) -> int:
        """Combined length of the records, excluding separators."""
        return sum(len(r) for r in self.records)

    @property
    def content(self) -> str:
        """Records joined with newlines, as sent to the processor."""
        return RECORD_SEPARATOR.join(self.records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(slots=True)
class ChunkAssembler:
    """Accumulate records and seal them into chunks at a size threshold.

    Attributes:
        chunk_size (int): Threshold in characters. A chunk is sealed once the
            pending records reach or exceed it.
        next_index (int): Index assigned to the next sealed chunk.
    """

    chunk_size: int
    next_index: int = 0
    _pending: list[str] = field(default_factory=list)
    _pending_chars: int = 0

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be greater than 0")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_chars(self) -> int:
        return self._pending_chars

    def add(self, records: Iterable[str]) -> list[Chunk]:
        """Append one extraction pass worth of records.

        The threshold is checked after every appended record, so a single
        pass can seal several chunks when it carries many records.

        Args:
            records (Iterable[str]): Newly extracted records in source order.

        Returns:
            list[Chunk]: Chunks sealed by this call, in order; empty while
            still accumulating.
        """
        sealed: list[Chunk] = []
        for rec in records:
            self._pending.append(rec)
            self._pending_chars += len(rec)
            if self._pending_chars >= self.chunk_size:
                sealed.append(self._seal())
        return sealed

    def flush(self) -> Chunk | None:
        """Seal whatever is pending regardless of size (end of stream)."""
        if not self._pending:
            return None
        return self._seal()

    def _seal(self) -> Chunk:
        chunk = Chunk(index=self.next_index, records=tuple(self._pending))
        self.next_index += 1
        self._pending = []
        self._pending_chars = 0
        return chunk
