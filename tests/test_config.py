import json
from pathlib import Path

import pytest

from healthstream.core.config import (
    HealthStreamConfig,
    ProcessingOptions,
    SinkConfig,
    StreamConfig,
    load_config_from_path,
)


def test_defaults_match_documented_values():
    opts = ProcessingOptions()
    assert opts.chunk_size == 5_242_880
    assert opts.max_retries == 3
    assert opts.per_attempt_timeout_ms == 30_000
    assert opts.max_file_size == 5 * 1024**3
    assert opts.on_progress is None and opts.on_chunk_complete is None

    stream = StreamConfig()
    assert stream.read_block_size == 65536
    assert stream.backoff_base_s == 1.0
    assert stream.backoff_factor == 2.0
    assert stream.expected_extension == ".xml"


def test_to_options_carries_callbacks():
    seen = []
    opts = StreamConfig(chunk_size=10, max_retries=1).to_options(on_progress=seen.append)
    assert opts.chunk_size == 10
    assert opts.max_retries == 1
    opts.on_progress(50.0)
    assert seen == [50.0]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"chunk_size": 0},
        {"max_retries": -1},
        {"per_attempt_timeout_ms": 0},
        {"read_block_size": 0},
        {"backoff_factor": -1.0},
    ],
)
def test_stream_config_validate_rejects(kwargs):
    with pytest.raises(ValueError):
        StreamConfig(**kwargs).validate()


def test_stream_config_normalizes_extension():
    cfg = StreamConfig(expected_extension="xml")
    cfg.validate()
    assert cfg.expected_extension == ".xml"


def test_sink_config_validate_normalizes_kind(tmp_path: Path):
    cfg = SinkConfig(kind=" Parquet ", path=tmp_path / "x.parquet")
    cfg.validate()
    assert cfg.kind == "parquet"


def test_json_roundtrip(tmp_path: Path):
    cfg = HealthStreamConfig()
    cfg.stream.chunk_size = 1024
    cfg.sink.kind = "metrics_jsonl"
    cfg.sink.path = tmp_path / "metrics.jsonl"
    cfg.pipeline.max_workers = 3
    cfg.metadata.user_id = "u1"
    cfg.metadata.extra["source"] = "upload"

    path = tmp_path / "cfg.json"
    cfg.to_json(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["stream"]["chunk_size"] == 1024
    assert "encoding" not in data["stream"]

    loaded = load_config_from_path(path)
    assert loaded.stream.chunk_size == 1024
    assert loaded.sink.kind == "metrics_jsonl"
    assert loaded.sink.path == tmp_path / "metrics.jsonl"
    assert loaded.pipeline.max_workers == 3
    assert loaded.metadata.user_id == "u1"
    assert loaded.metadata.extra == {"source": "upload"}


def test_from_toml(tmp_path: Path):
    path = tmp_path / "cfg.toml"
    path.write_text(
        "\n".join(
            [
                "[stream]",
                "chunk_size = 2048",
                "max_retries = 5",
                'encoding = "utf-16"',
                "",
                "[sink]",
                'kind = "noop"',
                "",
                "[logging]",
                'level = "DEBUG"',
                "",
                "[metadata]",
                'user_id = "u9"',
                'project = "demo"',
            ]
        ),
        encoding="utf-8",
    )
    cfg = load_config_from_path(path)
    assert cfg.stream.chunk_size == 2048
    assert cfg.stream.max_retries == 5
    assert cfg.stream.encoding == "utf-16"
    assert cfg.sink.kind == "noop"
    assert cfg.logging.level == "DEBUG"
    assert cfg.metadata.user_id == "u9"
    assert cfg.metadata.extra == {"project": "demo"}
    cfg.validate()


def test_from_dict_ignores_unknown_keys():
    cfg = HealthStreamConfig.from_dict({"stream": {"chunk_size": "512", "bogus": 1}, "other": {}})
    assert cfg.stream.chunk_size == 512


def test_unsupported_extension(tmp_path: Path):
    path = tmp_path / "cfg.yaml"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported config extension"):
        load_config_from_path(path)


def test_metadata_serialized_through_run_metadata():
    cfg = HealthStreamConfig()
    assert cfg.to_dict()["metadata"] == {}

    cfg.metadata.user_id = "u1"
    cfg.metadata.extra["export_dir"] = Path("/data/exports")
    assert cfg.to_dict()["metadata"] == {"user_id": "u1", "extra": {"export_dir": "/data/exports"}}


@pytest.mark.parametrize(
    "raw, expected",
    [("false", False), ("False", False), ("no", False), (0, False), ("true", True), ("on", True), (1, True), (True, True)],
)
def test_bool_fields_parse_strings(raw, expected):
    cfg = HealthStreamConfig.from_dict({"sink": {"compress": raw}, "pipeline": {"fail_fast": raw}})
    assert cfg.sink.compress is expected
    assert cfg.pipeline.fail_fast is expected


def test_bool_fields_reject_other_values():
    with pytest.raises(ValueError, match="Expected a boolean"):
        HealthStreamConfig.from_dict({"sink": {"compress": "maybe"}})
