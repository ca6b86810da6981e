import json
import threading
from pathlib import Path

import pytest

from healthstream.cli.runner import ingest_files
from healthstream.core.config import HealthStreamConfig
from healthstream.core.session import SessionRegistry

RECORD = '<Record type="HKQuantityTypeIdentifierStepCount" value="{n}" unit="count"/>'


def _write_export(path: Path, n_records: int) -> Path:
    body = "\n".join(RECORD.format(n=i) for i in range(n_records))
    path.write_text(f"<HealthData>\n{body}\n</HealthData>\n", encoding="utf-8")
    return path


def _config(**stream) -> HealthStreamConfig:
    cfg = HealthStreamConfig()
    cfg.metadata.user_id = "u1"
    cfg.stream.max_retries = 0
    for key, value in stream.items():
        setattr(cfg.stream, key, value)
    return cfg


class CollectingProcessor:
    def __init__(self, fail_on: str | None = None):
        self.fail_on = fail_on
        self.calls = []
        self._lock = threading.Lock()

    def process_chunk(self, content, context):
        if self.fail_on and context.file_name == self.fail_on:
            raise RuntimeError("processor rejected chunk")
        with self._lock:
            self.calls.append((context.file_name, context.chunk_index))


def test_ingest_serial_with_processor(tmp_path: Path):
    a = _write_export(tmp_path / "a.xml", 20)
    b = _write_export(tmp_path / "b.xml", 5)
    proc = CollectingProcessor()

    summary = ingest_files([a, b, a], _config(chunk_size=200), proc)

    assert summary.ok
    assert [Path(f.path).name for f in summary.files] == ["a.xml", "b.xml"]
    assert all(f.session_id and f.session_id.startswith("process_") for f in summary.files)
    a_indices = [i for name, i in proc.calls if name == "a.xml"]
    assert a_indices == list(range(len(a_indices)))
    assert summary.total_chunks == len(proc.calls)
    assert summary.files[0].chunks == len(a_indices)


def test_ingest_parallel_keeps_input_order(tmp_path: Path):
    paths = [_write_export(tmp_path / f"f{i}.xml", 10) for i in range(4)]
    cfg = _config(chunk_size=150)
    cfg.pipeline.max_workers = 3
    proc = CollectingProcessor()
    registry = SessionRegistry()

    summary = ingest_files(paths, cfg, proc, registry=registry)

    assert summary.ok
    assert [f.path for f in summary.files] == [str(p) for p in paths]
    for p in paths:
        indices = [i for name, i in proc.calls if name == p.name]
        assert indices == list(range(len(indices)))
    assert len(registry) == 0


def test_ingest_records_failures(tmp_path: Path):
    good = _write_export(tmp_path / "good.xml", 3)
    bad = _write_export(tmp_path / "bad.xml", 3)
    missing = tmp_path / "missing.xml"
    proc = CollectingProcessor(fail_on="bad.xml")

    summary = ingest_files([good, bad, missing], _config(), proc)

    assert not summary.ok
    statuses = {Path(f.path).name: f.status for f in summary.files}
    assert statuses == {"good.xml": "ok", "bad.xml": "failed", "missing.xml": "failed"}
    bad_result = summary.files[1]
    assert "Failed to process chunk 0 after 1 attempts" in bad_result.error
    assert summary.as_dict()["failed"] == 2


def test_ingest_fail_fast_raises(tmp_path: Path):
    bad = _write_export(tmp_path / "bad.xml", 3)
    cfg = _config()
    cfg.pipeline.fail_fast = True
    with pytest.raises(RuntimeError, match="Failed to process chunk"):
        ingest_files([bad], cfg, CollectingProcessor(fail_on="bad.xml"))


def test_ingest_builds_sink_from_config(tmp_path: Path):
    export = _write_export(tmp_path / "export.xml", 4)
    out = tmp_path / "out" / "metrics.jsonl"
    cfg = _config()
    cfg.sink.kind = "metrics_jsonl"
    cfg.sink.path = out

    summary = ingest_files([export], cfg)

    assert summary.ok
    rows = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    assert [r["value"] for r in rows] == [0.0, 1.0, 2.0, 3.0]
    assert {r["user_id"] for r in rows} == {"u1"}
