# fs.py
# SPDX-License-Identifier: MIT
"""Build :class:`StreamSource` objects from local files and in-memory bytes."""

from __future__ import annotations

import io
import os
import stat
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import IO

from ..core.interfaces import StreamSource

__all__ = ["local_file_source", "bytes_source", "iter_file_sources"]


def _make_open_stream(path: Path, expected: os.stat_result) -> Callable[[], IO[bytes]]:
    """Return an opener that refuses to read a file swapped out since ``stat``."""

    def _open() -> IO[bytes]:
        flags = os.O_RDONLY
        cloexec = getattr(os, "O_CLOEXEC", None)
        if cloexec is not None:
            flags |= cloexec
        fd = os.open(path, flags)
        try:
            st = os.fstat(fd)
            if (
                getattr(st, "st_ino", None) != getattr(expected, "st_ino", None)
                or getattr(st, "st_dev", None) != getattr(expected, "st_dev", None)
            ):
                raise FileNotFoundError(f"file changed before open: {path}")
            return os.fdopen(fd, "rb")
        except Exception:
            os.close(fd)
            raise

    return _open


def local_file_source(path: str | os.PathLike[str]) -> StreamSource:
    """Describe a regular file on disk; the size comes from ``stat``.

    Raises:
        FileNotFoundError: Missing path or not a regular file.
    """
    p = Path(path)
    st = os.stat(p)
    if not stat.S_ISREG(st.st_mode):
        raise FileNotFoundError(f"refusing to open non-regular file: {p}")
    return StreamSource(
        name=p.name,
        size=st.st_size,
        open_stream=_make_open_stream(p, st),
        origin_path=str(p),
    )


def bytes_source(name: str, data: bytes) -> StreamSource:
    """Wrap in-memory bytes; every ``open_stream`` call starts at offset 0."""
    payload = bytes(data)
    return StreamSource(
        name=name,
        size=len(payload),
        open_stream=lambda: io.BytesIO(payload),
        origin_path=f"memory://{name}",
    )


def iter_file_sources(paths: Iterable[str | os.PathLike[str]]) -> Iterator[StreamSource]:
    for p in paths:
        yield local_file_source(p)
