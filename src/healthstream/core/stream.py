# stream.py
# SPDX-License-Identifier: MIT
"""Drive a binary stream through decoding, record extraction, and chunking.

The driver owns its text buffer for the duration of one :meth:`StreamDriver.run`
call. Chunks are dispatched synchronously, so the next block is only read
after the previous chunk's callback returned. Each pass resumes scanning
where the previous one left off, so a long stretch without records is
scanned once rather than on every read.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import BinaryIO

from .chunk import Chunk, ChunkAssembler
from .decode import IncrementalTextDecoder
from .extract import extract_records
from .log import get_logger

__all__ = ["DEFAULT_READ_BLOCK_SIZE", "StreamDriver"]

log = get_logger(__name__)

DEFAULT_READ_BLOCK_SIZE = 64 * 1024


def _always() -> bool:
    return True


class StreamDriver:
    """Incrementally read a stream and emit chunks of complete records.

    Attributes:
        read_block_size (int): Bytes requested per ``read`` call.
        encoding (str | None): Explicit codec, or None to sniff a BOM.
        bytes_read (int): Bytes consumed by the current or last run.
        stopped (bool): True when the last run ended because
            ``should_continue`` returned False.
    """

    def __init__(
        self,
        *,
        read_block_size: int = DEFAULT_READ_BLOCK_SIZE,
        encoding: str | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> None:
        if read_block_size <= 0:
            raise ValueError("read_block_size must be greater than 0")
        self.read_block_size = read_block_size
        self.encoding = encoding
        self._should_continue = should_continue or _always
        self.bytes_read = 0
        self.stopped = False

    def run(self, stream: BinaryIO, chunk_size: int, on_chunk: Callable[[Chunk], None]) -> int:
        """Stream ``stream`` to EOF, calling ``on_chunk`` for each sealed chunk.

        Args:
            stream (BinaryIO): Binary file-like object supporting ``read(n)``.
            chunk_size (int): Chunk threshold in characters.
            on_chunk (Callable[[Chunk], None]): Invoked in chunk order.
                Exceptions it raises abort the run and propagate.

        Returns:
            int: Number of chunks handed to ``on_chunk``.
        """
        assembler = ChunkAssembler(chunk_size)
        decoder = IncrementalTextDecoder(self.encoding)
        buffer = ""
        scan_from = 0
        emitted = 0
        self.bytes_read = 0
        self.stopped = False

        while True:
            if not self._should_continue():
                self._stop(emitted)
                return emitted
            block = stream.read(self.read_block_size)
            if not block:
                break
            self.bytes_read += len(block)
            buffer += decoder.decode(block)
            records, buffer, scan_from = extract_records(buffer, scan_from)
            for chunk in assembler.add(records):
                if not self._should_continue():
                    self._stop(emitted)
                    return emitted
                on_chunk(chunk)
                emitted += 1

        tail = decoder.finish()
        if tail:
            buffer += tail
            records, buffer, scan_from = extract_records(buffer, scan_from)
            for chunk in assembler.add(records):
                if not self._should_continue():
                    self._stop(emitted)
                    return emitted
                on_chunk(chunk)
                emitted += 1

        final = assembler.flush()
        if final is not None:
            if not self._should_continue():
                self._stop(emitted)
                return emitted
            on_chunk(final)
            emitted += 1

        if buffer:
            log.debug("Dropping %d unterminated characters at end of stream", len(buffer))
        if decoder.had_replacement:
            log.warning("Undecodable bytes replaced while decoding (%s)", decoder.encoding)
        log.debug("Stream finished: %d bytes, %d chunks", self.bytes_read, emitted)
        return emitted

    def _stop(self, emitted: int) -> None:
        self.stopped = True
        log.debug("Stream stopped after %d bytes and %d chunks", self.bytes_read, emitted)
