# runner.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import os
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.concurrency import Executor, resolve_executor_config
from ..core.config import HealthStreamConfig
from ..core.interfaces import ChunkProcessor
from ..core.log import get_logger
from ..core.pipeline import ChunkStreamService
from ..core.session import SessionRegistry
from ..sinks.sinks import make_sink
from ..sources.fs import local_file_source

__all__ = ["FileResult", "IngestSummary", "ingest_files"]

log = get_logger(__name__)


@dataclass(slots=True)
class FileResult:
    """Outcome of streaming one file.

    Attributes:
        path (str): Path given on input.
        status (str): ``ok`` or ``failed``.
        session_id (str | None): Session id, when streaming started.
        chunks (int): Chunks processed successfully.
        error (str | None): Error message for failed files.
    """
    path: str
    status: str = "ok"
    session_id: str | None = None
    chunks: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "status": self.status, "chunks": self.chunks}
        if self.session_id is not None:
            data["session_id"] = self.session_id
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class IngestSummary:
    files: list[FileResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(f.status != "failed" for f in self.files)

    @property
    def total_chunks(self) -> int:
        return sum(f.chunks for f in self.files)

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "files": [f.as_dict() for f in self.files],
            "total_chunks": self.total_chunks,
            "failed": sum(1 for f in self.files if f.status == "failed"),
        }


def _ingest_one(
    service: ChunkStreamService,
    cfg: HealthStreamConfig,
    path: str,
) -> FileResult:
    result = FileResult(path=path)

    def _count(chunk_index: int, completed: int) -> None:
        result.chunks += 1

    options = cfg.stream.to_options(on_chunk_complete=_count)
    source = local_file_source(path)
    session_id = service.process_stream(
        source,
        cfg.metadata.user_id or "",
        cfg.metadata.document_id,
        options,
        cfg.metadata.extra,
    )
    result.session_id = session_id
    return result


def ingest_files(
    paths: Sequence[str | os.PathLike[str]],
    cfg: HealthStreamConfig,
    processor: ChunkProcessor | None = None,
    *,
    registry: SessionRegistry | None = None,
) -> IngestSummary:
    """Stream every file in ``paths`` through one processor.

    When ``processor`` is None a sink is built from ``cfg.sink`` and opened
    for the duration of the run. Files run serially unless
    ``cfg.pipeline.max_workers`` allows more; each file gets its own
    session. With ``cfg.pipeline.fail_fast`` the first failure is raised;
    otherwise failures are recorded in the summary.

    Returns:
        IngestSummary: Per-file results in input order.
    """
    cfg.stream.validate()
    cfg.pipeline.validate()
    names = _unique(str(Path(p)) for p in paths)
    owned_sink = None
    if processor is None:
        owned_sink = make_sink(cfg.sink)
        owned_sink.open()
        processor = owned_sink

    service = ChunkStreamService(processor, config=cfg.stream, registry=registry)
    results: dict[str, FileResult] = {}
    lock = threading.Lock()

    def _run(path: str) -> FileResult:
        try:
            res = _ingest_one(service, cfg, path)
        except Exception as exc:
            log.error("Failed to ingest %s: %s", path, exc)
            res = FileResult(path=path, status="failed", error=str(exc))
            with lock:
                results[path] = res
            if cfg.pipeline.fail_fast:
                raise
            return res
        with lock:
            results[path] = res
        return res

    def _noop(_: FileResult) -> None:
        pass

    try:
        exec_cfg = resolve_executor_config(cfg.pipeline, n_items=len(names))
        if exec_cfg.max_workers == 1:
            for name in names:
                _run(name)
        else:
            Executor(exec_cfg).map_unordered(
                names, _run, _noop, fail_fast=cfg.pipeline.fail_fast
            )
    finally:
        if owned_sink is not None:
            owned_sink.close()

    summary = IngestSummary(files=[results[n] for n in names if n in results])
    log.info(
        "Ingest complete: %d files, %d chunks, %d failed",
        len(summary.files),
        summary.total_chunks,
        sum(1 for f in summary.files if f.status == "failed"),
    )
    return summary


def _unique(paths: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for p in paths:
        if p not in seen:
            seen.add(p)
            out.append(p)
    return out
