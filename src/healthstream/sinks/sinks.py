# sinks.py
# SPDX-License-Identifier: MIT
"""Chunk processors that write chunk or metric records to JSONL files."""
from __future__ import annotations

import gzip
import json
import os
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Self, TextIO

from ..core.config import SinkConfig
from ..core.extract import extract_records
from ..core.interfaces import ChunkContext, ChunkSink
from ..core.log import get_logger
from ..core.records import build_chunk_record, build_health_metric, parse_record_attributes

__all__ = [
    "JSONLChunkSink",
    "GzipJSONLChunkSink",
    "HealthMetricsJSONLSink",
    "NoopChunkSink",
    "make_sink",
]

log = get_logger(__name__)


class _BaseJSONLSink:
    """Shared JSONL sink logic: temp file while open, moved into place on close.

    Writes are serialized with a lock so one sink can serve several files
    streamed in parallel.
    """

    def __init__(self, out_path: str | os.PathLike[str]):
        self._path = Path(out_path)
        self._fp: TextIO | None = None
        self._tmp_path: Path | None = None
        self._lock = threading.Lock()
        self.records_written = 0

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        """Create a temp file next to the destination for writing."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tmp_path = self._path.parent / f"{self._path.name}.tmp"
        self._fp = self._open_handle(self._tmp_path)
        self.records_written = 0

    def write(self, record: Mapping[str, Any]) -> None:
        """Write a single JSON record as a compact line."""
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n"
        with self._lock:
            if self._fp is None:
                raise RuntimeError(f"Sink for {self._path} is not open")
            self._fp.write(line)
            self.records_written += 1

    def process_chunk(self, content: str, context: ChunkContext) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Close any open handle and move the temp file into place."""
        with self._lock:
            if not self._fp:
                return
            try:
                self._fp.close()
            finally:
                self._fp = None
            if self._tmp_path:
                os.replace(self._tmp_path, self._path)
                self._tmp_path = None

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Ensure resources are closed when used as a context manager."""
        self.close()

    def _open_handle(self, path: Path) -> TextIO:
        return open(path, "w", encoding="utf-8", newline="")


class JSONLChunkSink(_BaseJSONLSink):
    """One ``{"text", "meta"}`` record per chunk."""

    def process_chunk(self, content: str, context: ChunkContext) -> None:
        self.write(build_chunk_record(content, context))


class GzipJSONLChunkSink(JSONLChunkSink):
    """:class:`JSONLChunkSink` with gzip-compressed output."""

    def _open_handle(self, path: Path) -> TextIO:
        return gzip.open(path, "wt", encoding="utf-8", newline="")


class HealthMetricsJSONLSink(_BaseJSONLSink):
    """One normalized health metric per ``<Record>`` line.

    Records without a ``type`` or ``value`` attribute are skipped and
    counted in ``records_skipped``.
    """

    def __init__(self, out_path: str | os.PathLike[str], *, compress: bool = False):
        super().__init__(out_path)
        self._compress = compress
        self.records_skipped = 0

    def _open_handle(self, path: Path) -> TextIO:
        if self._compress:
            return gzip.open(path, "wt", encoding="utf-8", newline="")
        return super()._open_handle(path)

    def process_chunk(self, content: str, context: ChunkContext) -> None:
        skipped = 0
        for rec in extract_records(content).records:
            metric = build_health_metric(parse_record_attributes(rec), context.user_id)
            if metric is None:
                skipped += 1
                continue
            metric["document_id"] = context.document_id
            metric["chunk_index"] = context.chunk_index
            self.write(metric)
        if skipped:
            with self._lock:
                self.records_skipped += skipped
            log.warning(
                "Skipped %d records without type/value in chunk %d of %s",
                skipped,
                context.chunk_index,
                context.file_name,
            )


class NoopChunkSink:
    """Accepts every chunk and keeps only a count."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.chunks_seen = 0

    def open(self) -> None:
        pass

    def process_chunk(self, content: str, context: ChunkContext) -> None:
        with self._lock:
            self.chunks_seen += 1

    def close(self) -> None:
        pass

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def make_sink(cfg: SinkConfig) -> ChunkSink:
    """Build an unopened sink from ``cfg``.

    Raises:
        ValueError: Unknown kind or missing path.
    """
    cfg.validate()
    if cfg.kind == "noop":
        return NoopChunkSink()
    assert cfg.path is not None
    if cfg.kind == "jsonl":
        return GzipJSONLChunkSink(cfg.path) if cfg.compress else JSONLChunkSink(cfg.path)
    if cfg.kind == "metrics_jsonl":
        return HealthMetricsJSONLSink(cfg.path, compress=cfg.compress)
    # parquet: pyarrow is an optional extra, imported only when requested.
    from .parquet import ParquetChunkSink

    return ParquetChunkSink(cfg.path, row_group_size=cfg.row_group_size)
