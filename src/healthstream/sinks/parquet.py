# parquet.py
# SPDX-License-Identifier: MIT
"""Parquet output for chunk records (requires the ``parquet`` extra).

Each chunk becomes one row: the formatted ``text`` plus a ``meta`` struct
with a fixed set of typed columns. Caller metadata varies from run to run,
so it is stored as a JSON string in ``meta.extra`` and the file schema
stays the same for every chunk.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Mapping, Optional, Self

import pyarrow as pa
import pyarrow.parquet as pq

from ..core.interfaces import ChunkContext, Record
from ..core.log import get_logger
from ..core.records import build_chunk_record

__all__ = ["ParquetChunkSink", "CHUNK_META_TYPE"]

log = get_logger(__name__)

CHUNK_META_TYPE = pa.struct(
    [
        ("user_id", pa.string()),
        ("document_id", pa.string()),
        ("session_id", pa.string()),
        ("file_name", pa.string()),
        ("chunk_index", pa.int64()),
        ("n_records", pa.int64()),
        ("content_length", pa.int64()),
        ("sha256", pa.string()),
        ("original_format", pa.string()),
        ("schema_version", pa.string()),
        ("extra", pa.string()),
    ]
)
_TYPED_META_KEYS = tuple(f.name for f in CHUNK_META_TYPE if f.name != "extra")


def _meta_row(meta: Mapping[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {key: meta.get(key) for key in _TYPED_META_KEYS}
    extra = {k: v for k, v in meta.items() if k not in _TYPED_META_KEYS}
    row["extra"] = json.dumps(extra, sort_keys=True, default=str) if extra else None
    return row


class ParquetChunkSink:
    """Chunk sink writing a single Parquet file, one row per chunk.

    Rows are buffered and written ``row_group_size`` at a time. Output goes
    to ``<path>.tmp`` and is renamed onto ``path`` by :meth:`close`.
    Safe to share between threads.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        text_field: str = "text",
        meta_field: str = "meta",
        compression: str = "snappy",
        row_group_size: int = 10_000,
    ) -> None:
        if row_group_size <= 0:
            raise ValueError("row_group_size must be greater than 0")
        self._target = Path(path)
        self._staging: Optional[Path] = None
        self._schema = pa.schema(
            [(text_field or "text", pa.string()), (meta_field or "meta", CHUNK_META_TYPE)]
        )
        self._compression = compression or "snappy"
        self._row_group_size = row_group_size
        self._pending: list[Record] = []
        self._writer: Optional[pq.ParquetWriter] = None
        self._lock = threading.Lock()
        self._is_open = False
        self.records_written = 0

    @property
    def path(self) -> Path:
        return self._target

    def open(self) -> None:
        self._target.parent.mkdir(parents=True, exist_ok=True)
        self._staging = self._target.with_name(self._target.name + ".tmp")
        self._writer = pq.ParquetWriter(self._staging, self._schema, compression=self._compression)
        self._pending = []
        self.records_written = 0
        self._is_open = True

    def process_chunk(self, content: str, context: ChunkContext) -> None:
        self.write(build_chunk_record(content, context))

    def write(self, record: Record) -> None:
        """Queue one chunk record; a full row group is written immediately.

        Raises:
            RuntimeError: The sink is not open.
        """
        with self._lock:
            if not self._is_open:
                raise RuntimeError("ParquetChunkSink is not open")
            self._pending.append(record)
            self.records_written += 1
            if len(self._pending) >= self._row_group_size:
                self._write_pending()

    def close(self) -> None:
        with self._lock:
            if not self._is_open:
                return
            self._is_open = False
            writer, self._writer = self._writer, None
            try:
                self._write_pending(writer)
            finally:
                if writer is not None:
                    writer.close()
            if self._staging is not None:
                os.replace(self._staging, self._target)
                self._staging = None
        log.debug("Wrote %d chunk rows to %s", self.records_written, self._target)

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _write_pending(self, writer: Optional[pq.ParquetWriter] = None) -> None:
        writer = writer or self._writer
        if not self._pending or writer is None:
            return
        text_name, meta_name = self._schema.names
        rows = [
            {
                text_name: rec.get("text") or "",
                meta_name: _meta_row(rec.get("meta") or {}),
            }
            for rec in self._pending
        ]
        writer.write_table(pa.Table.from_pylist(rows, schema=self._schema))
        self._pending = []
