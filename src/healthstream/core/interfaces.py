# interfaces.py
# SPDX-License-Identifier: MIT
"""Interfaces and shared data types for sources, processors, and sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    IO,
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

__all__ = [
    "StreamSource",
    "ChunkContext",
    "ChunkProcessor",
    "ChunkSink",
    "ProgressCallback",
    "ChunkCompleteCallback",
    "Record",
]


# -----------------------------------------------------------------------------
# Shared data types
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class StreamSource:
    """
    A byte source to be streamed through the pipeline.

    Attributes:
        name (str): File name used for the extension check and in chunk
            metadata, e.g. ``export.xml``.
        size (int): Size in bytes reported by the source. Checked against
            the size ceiling before any read.
        open_stream (Callable[[], IO[bytes]]): Opener for a fresh binary
            stream positioned at the start. Callers must close the stream.
        origin_path (str | None): Local path or synthetic identifier, when
            known.
    """
    name: str
    size: int
    open_stream: Callable[[], IO[bytes]]
    origin_path: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ChunkContext:
    """
    Identity of one chunk, passed to the processor next to its content.

    Attributes:
        user_id (str): Owner of the imported file.
        document_id (str): Document the chunks belong to.
        session_id (str): Processing session that produced the chunk.
        chunk_index (int): Zero-based chunk position within the file.
        file_name (str): Name of the source file.
        metadata (Mapping[str, Any]): Free-form caller metadata.
    """

    user_id: str
    document_id: str
    session_id: str
    chunk_index: int
    file_name: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def as_meta_seed(self) -> Dict[str, Any]:
        """
        Return a metadata dictionary for chunk records.

        Caller metadata never overrides the identity keys.
        """
        meta: Dict[str, Any] = {}
        for key, value in (self.metadata or {}).items():
            if value is None:
                continue
            meta[str(key)] = value
        meta.update(
            user_id=self.user_id,
            document_id=self.document_id,
            session_id=self.session_id,
            chunk_index=self.chunk_index,
            file_name=self.file_name,
        )
        return meta


# A JSONL record shape is intentionally loose: dict-like with string keys.
Record = Mapping[str, Any]

ProgressCallback = Callable[[float], None]
ChunkCompleteCallback = Callable[[int, int], None]


# -----------------------------------------------------------------------------
# Processor / sink protocols
# -----------------------------------------------------------------------------

@runtime_checkable
class ChunkProcessor(Protocol):
    """Downstream collaborator that consumes one chunk at a time.

    Implementations signal failure by raising; the return value is ignored.
    A chunk may be delivered more than once when an attempt times out
    locally after the processor already acted on it.
    """

    def process_chunk(self, content: str, context: ChunkContext) -> Any:
        ...


@runtime_checkable
class ChunkSink(ChunkProcessor, Protocol):
    """A chunk processor with an open/close lifecycle."""

    def open(self) -> None:  # pragma: no cover - interface
        ...

    def close(self) -> None:  # pragma: no cover - interface
        ...
