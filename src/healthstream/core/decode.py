# decode.py
# SPDX-License-Identifier: MIT
"""Incremental bytes-to-text decoding for streamed exports.

Blocks read from the source may end in the middle of a multi-byte
character, so decoding goes through a stateful :mod:`codecs` incremental
decoder rather than decoding each block on its own. The encoding is chosen
once, from a BOM on the first bytes when present, otherwise UTF-8.
"""

from __future__ import annotations

import codecs

from .log import get_logger

__all__ = ["IncrementalTextDecoder", "detect_bom"]

log = get_logger(__name__)

# -----------------------------------------
# Encoding helpers: BOM sniffing
# -----------------------------------------

# UTF-32 signatures first: the UTF-32-LE BOM starts with the UTF-16-LE one.
_BOMS: tuple[tuple[bytes, str], ...] = (
    (b"\x00\x00\xFE\xFF", "utf-32-be"),
    (b"\xFF\xFE\x00\x00", "utf-32-le"),
    (b"\xEF\xBB\xBF", "utf-8"),
    (b"\xFE\xFF", "utf-16-be"),
    (b"\xFF\xFE", "utf-16-le"),
)
_MAX_BOM_LEN = 4
_DEFAULT_ENCODING = "utf-8"


def detect_bom(data: bytes) -> tuple[str, int] | None:
    """Return the encoding implied by a leading BOM and the BOM length."""
    for sig, enc in _BOMS:
        if data.startswith(sig):
            return enc, len(sig)
    return None


def _could_be_bom_prefix(data: bytes) -> bool:
    """True when ``data`` is too short to rule a BOM in or out."""
    return len(data) < _MAX_BOM_LEN and any(sig.startswith(data) for sig, _ in _BOMS)


class IncrementalTextDecoder:
    """Stateful decoder that turns a sequence of byte blocks into text.

    The first few bytes are held back until a BOM can be recognized or ruled
    out. Undecodable bytes are replaced with U+FFFD rather than raising;
    ``had_replacement`` reports whether that happened.

    Attributes:
        errors (str): Codec error handler passed to the incremental decoder.
    """

    def __init__(self, encoding: str | None = None, *, errors: str = "replace") -> None:
        """Create a decoder.

        Args:
            encoding (str | None): Explicit codec name. When None the codec
                is sniffed from a BOM, falling back to UTF-8.
            errors (str): Error handler for undecodable bytes.
        """
        self.errors = errors
        self._encoding: str | None = None
        self._decoder: codecs.IncrementalDecoder | None = None
        self._pending = b""
        self.had_replacement = False
        if encoding is not None:
            self._start(codecs.lookup(encoding).name)

    @property
    def encoding(self) -> str | None:
        """Codec in use, or None until enough bytes were seen to pick one."""
        return self._encoding

    def _start(self, encoding: str) -> None:
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors=self.errors)

    def _select(self, data: bytes) -> bytes:
        """Pick the codec from ``data`` and return the bytes after any BOM."""
        found = detect_bom(data)
        if found:
            enc, bom_len = found
            log.debug("Detected %s BOM", enc)
            self._start(enc)
            return data[bom_len:]
        self._start(_DEFAULT_ENCODING)
        return data

    def decode(self, block: bytes) -> str:
        """Decode the next block, keeping partial characters for later."""
        if self._decoder is None:
            data = self._pending + block
            if _could_be_bom_prefix(data):
                self._pending = data
                return ""
            self._pending = b""
            block = self._select(data)
        assert self._decoder is not None
        return self._track(self._decoder.decode(block, final=False))

    def finish(self) -> str:
        """Flush buffered bytes at end of stream.

        Truncated trailing sequences are replaced rather than raised.
        """
        if self._decoder is None:
            data, self._pending = self._pending, b""
            block = self._select(data)
            assert self._decoder is not None
            return self._track(self._decoder.decode(block, final=True))
        return self._track(self._decoder.decode(b"", final=True))

    def _track(self, text: str) -> str:
        if "\ufffd" in text:
            self.had_replacement = True
        return text
