# config.py
# SPDX-License-Identifier: MIT
"""Configuration models and helpers for healthstream runs.

This module defines declarative dataclasses for streaming, sinks, multi-file
execution, logging, and run metadata, along with helpers for serializing and
loading configurations from JSON and TOML. :class:`ProcessingOptions` is the
per-call runtime counterpart; it may carry callbacks and is never serialized.
"""
from __future__ import annotations

import json
import tomllib
import types
from collections.abc import Sequence as ABCSequence
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import (
    Any,
    Dict,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from .interfaces import ChunkCompleteCallback, ProgressCallback
from .log import DEFAULT_LOG_FORMAT, PACKAGE_LOGGER_NAME, configure_logging

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MAX_FILE_SIZE",
    "SINK_KINDS",
    "ProcessingOptions",
    "StreamConfig",
    "SinkConfig",
    "PipelineConfig",
    "LoggingConfig",
    "RunMetadata",
    "HealthStreamConfig",
    "load_config_from_path",
]

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024 * 1024
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_MS = 30_000

SINK_KINDS = ("jsonl", "metrics_jsonl", "parquet", "noop")


# ---------------------------------------------------------------------------
# Per-call options
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class ProcessingOptions:
    """Options recognized by one ``process_stream`` call.

    Attributes:
        chunk_size (int): Chunk threshold in characters.
        max_retries (int): Retries after the first attempt of a chunk.
        per_attempt_timeout_ms (int): Timeout of one processor attempt.
        on_progress (Callable[[float], None] | None): Receives percent
            progress after each chunk and once more at the end.
        on_chunk_complete (Callable[[int, int], None] | None): Receives
            ``(chunk_index, chunks_completed_so_far)`` after each chunk.
        max_file_size (int): Largest accepted source size in bytes.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    per_attempt_timeout_ms: int = DEFAULT_TIMEOUT_MS
    on_progress: Optional[ProgressCallback] = None
    on_chunk_complete: Optional[ChunkCompleteCallback] = None
    max_file_size: int = DEFAULT_MAX_FILE_SIZE


# ---------------------------------------------------------------------------
# Declarative sections
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class StreamConfig:
    """Streaming, chunking, and retry settings.

    Attributes:
        chunk_size (int): Chunk threshold in characters.
        max_retries (int): Retries after the first attempt of a chunk.
        per_attempt_timeout_ms (int): Timeout of one processor attempt.
        max_file_size (int): Largest accepted source size in bytes.
        read_block_size (int): Bytes requested per read.
        backoff_base_s (float): Delay before the first retry, in seconds.
        backoff_factor (float): Multiplier applied to the delay per retry.
        expected_extension (str): Required (case-insensitive) file suffix.
        encoding (str | None): Explicit text codec; None sniffs a BOM and
            falls back to UTF-8.
    """
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    per_attempt_timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    read_block_size: int = 64 * 1024
    backoff_base_s: float = 1.0
    backoff_factor: float = 2.0
    expected_extension: str = ".xml"
    encoding: Optional[str] = None

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("stream.chunk_size must be greater than 0.")
        if self.max_retries < 0:
            raise ValueError("stream.max_retries cannot be negative.")
        if self.per_attempt_timeout_ms <= 0:
            raise ValueError("stream.per_attempt_timeout_ms must be greater than 0.")
        if self.max_file_size <= 0:
            raise ValueError("stream.max_file_size must be greater than 0.")
        if self.read_block_size <= 0:
            raise ValueError("stream.read_block_size must be greater than 0.")
        if self.backoff_base_s < 0 or self.backoff_factor < 0:
            raise ValueError("stream.backoff_base_s and stream.backoff_factor cannot be negative.")
        if self.expected_extension and not self.expected_extension.startswith("."):
            self.expected_extension = "." + self.expected_extension

    def to_options(
        self,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_chunk_complete: Optional[ChunkCompleteCallback] = None,
    ) -> ProcessingOptions:
        """Build per-call options from this section plus optional callbacks."""
        return ProcessingOptions(
            chunk_size=self.chunk_size,
            max_retries=self.max_retries,
            per_attempt_timeout_ms=self.per_attempt_timeout_ms,
            on_progress=on_progress,
            on_chunk_complete=on_chunk_complete,
            max_file_size=self.max_file_size,
        )


@dataclass(slots=True)
class SinkConfig:
    """Where processed chunks go.

    Attributes:
        kind (str): One of ``jsonl``, ``metrics_jsonl``, ``parquet`` or
            ``noop``.
        path (Path | None): Output file; required for every kind but
            ``noop``.
        compress (bool): Gzip the JSONL output.
        row_group_size (int): Rows buffered per Parquet row group.
    """
    kind: str = "jsonl"
    path: Optional[Path] = None
    compress: bool = False
    row_group_size: int = 10_000

    def validate(self) -> None:
        kind = (self.kind or "jsonl").strip().lower()
        if kind not in SINK_KINDS:
            raise ValueError(f"sink.kind must be one of {list(SINK_KINDS)}; got {self.kind!r}.")
        self.kind = kind
        if kind != "noop" and self.path is None:
            raise ValueError(f"sink.path is required for sink kind {kind!r}.")
        if self.row_group_size <= 0:
            raise ValueError("sink.row_group_size must be greater than 0.")


@dataclass(slots=True)
class PipelineConfig:
    """
    Controls multi-file execution.

    max_workers = 1 → files are processed one after another
    max_workers = 0 → auto (os.cpu_count or 1)
    Chunks of one file are always processed in order on one thread; workers
    only ever run different files.
    """
    max_workers: int = 1
    fail_fast: bool = False

    def validate(self) -> None:
        if self.max_workers < 0:
            raise ValueError("pipeline.max_workers cannot be negative.")


@dataclass(slots=True)
class LoggingConfig:
    """Console logging for CLI runs, applied through :func:`configure_logging`."""
    level: Union[int, str] = "INFO"
    propagate: bool = True
    fmt: Optional[str] = DEFAULT_LOG_FORMAT
    logger_name: str = PACKAGE_LOGGER_NAME

    def apply(self) -> None:
        """Apply this logging configuration to the package logger."""
        configure_logging(
            level=self.level,
            propagate=self.propagate,
            fmt=self.fmt,
            logger_name=self.logger_name or PACKAGE_LOGGER_NAME,
        )


@dataclass(slots=True)
class RunMetadata:
    """Identity attached to every chunk of a run.

    ``extra`` holds arbitrary key/value pairs merged into each chunk's
    context metadata.
    """
    user_id: Optional[str] = None
    document_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialized form used in config files; unset fields are omitted."""
        data: Dict[str, Any] = {}
        if self.user_id is not None:
            data["user_id"] = self.user_id
        if self.document_id is not None:
            data["document_id"] = self.document_id
        if self.extra:
            data["extra"] = _to_plain(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RunMetadata":
        """Create a RunMetadata instance from a mapping.

        Keys other than ``user_id``, ``document_id`` and ``extra`` land in
        ``extra``.
        """
        if not data:
            return cls()
        extra = dict(data.get("extra") or {})
        for key, value in data.items():
            if key not in ("user_id", "document_id", "extra"):
                extra.setdefault(key, value)
        return cls(
            user_id=data.get("user_id"),
            document_id=data.get("document_id"),
            extra=extra,
        )


# ---------------------------------------------------------------------------
# Master config
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(slots=True)
class HealthStreamConfig:
    """Everything needed to describe a healthstream run.

    Holds only serializable knobs. Processors, sinks, callbacks and session
    registries are runtime wiring and never live here.
    """
    stream: StreamConfig = field(default_factory=StreamConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metadata: RunMetadata = field(default_factory=RunMetadata)

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, RunMetadata):
            self.metadata = RunMetadata.from_dict(dict(self.metadata or {}))

    def validate(self) -> None:
        """Validate every section, normalizing values in place.

        Raises:
            ValueError: If any section holds an out-of-range value.
        """
        self.stream.validate()
        self.sink.validate()
        self.pipeline.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form of the config; unset optional values are omitted."""
        return _dataclass_to_dict(self)

    def to_json(self, path: Path | str, *, indent: int = 2) -> str:
        """Write :meth:`to_dict` to ``path`` as sorted, indented JSON and return the path."""
        target = Path(path)
        target.write_text(json.dumps(self.to_dict(), indent=indent, sort_keys=True), encoding="utf-8")
        return str(target)

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any]) -> T:
        return _dataclass_from_dict(cls, data)

    @classmethod
    def from_json(cls: Type[T], path: Path | str) -> T:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(payload)

    @classmethod
    def from_toml(cls: Type[T], path: Path | str) -> T:
        """Read a TOML file whose tables are named after the config sections.

        ``[stream]``, ``[sink]``, ``[pipeline]``, ``[logging]`` and
        ``[metadata]`` are all optional; missing ones keep their defaults.
        """
        with open(path, "rb") as fp:
            return cls.from_dict(tomllib.load(fp))


def load_config_from_path(path: str | Path) -> HealthStreamConfig:
    """Load a config file, picking the parser from its suffix.

    Raises:
        ValueError: The suffix is neither ``.toml`` nor ``.json``.
    """
    p = Path(path)
    loaders = {".toml": HealthStreamConfig.from_toml, ".json": HealthStreamConfig.from_json}
    loader = loaders.get(p.suffix.lower())
    if loader is None:
        raise ValueError(f"Unsupported config extension {p.suffix!r}; expected .toml or .json")
    return loader(p)


# ---------------------------------------------------------------------------
# dict <-> dataclass conversion
# ---------------------------------------------------------------------------

_SCALARS = (str, int, float, bool)
_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def _dataclass_to_dict(obj: Any) -> Dict[str, Any]:
    """Dataclass to a JSON-ready dict; fields that end up as None are left out."""
    out: Dict[str, Any] = {}
    for f in fields(obj):
        plain = _to_plain(getattr(obj, f.name))
        if plain is not None:
            out[f.name] = plain
    return out


def _to_plain(value: Any) -> Any:
    """JSON-ready form of ``value``, or None for anything without one."""
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, RunMetadata):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return _dataclass_to_dict(value)
    if isinstance(value, Mapping):
        pairs = ((str(k), _to_plain(v)) for k, v in value.items())
        return {k: v for k, v in pairs if v is not None}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_plain(v) for v in value]
    return None


def _dataclass_from_dict(cls: Type[T], data: Mapping[str, Any] | None) -> T:
    """Build ``cls`` from ``data``, coercing each known field by its annotation.

    Keys that are not fields of ``cls`` are dropped.
    """
    hints = get_type_hints(cls)
    source = data or {}
    kwargs = {
        f.name: _from_plain(hints.get(f.name, f.type), source[f.name])
        for f in fields(cls)  # type: ignore[arg-type]
        if f.name in source
    }
    return cls(**kwargs)


def _from_plain(annotation: Any, value: Any) -> Any:
    """Inverse of :func:`_to_plain` for one annotated field."""
    if value is None:
        return None
    target, _ = _strip_optional(annotation)
    if target is RunMetadata:
        return RunMetadata.from_dict(value)
    if isinstance(target, type) and is_dataclass(target):
        return _dataclass_from_dict(target, value)
    if target is Path:
        return Path(value)
    if target is bool:
        return _parse_bool(value)
    if target in _SCALARS:
        return target(value)
    origin, args = get_origin(target), get_args(target)
    if origin is dict:
        key_t, val_t = args or (Any, Any)
        return {_from_plain(key_t, k): _from_plain(val_t, v) for k, v in value.items()}
    if origin in (list, tuple, ABCSequence):
        item_t = args[0] if args else Any
        converted = [_from_plain(item_t, v) for v in value]
        return tuple(converted) if origin is tuple else converted
    return value


def _parse_bool(value: Any) -> bool:
    """Strict boolean parsing; ``bool("false")`` would be True.

    Raises:
        ValueError: ``value`` is not a bool, 0/1, or a true/false word.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _strip_optional(annotation: Any) -> Tuple[Any, bool]:
    """Split ``X | None`` (or ``Optional[X]``) into ``(X, True)``.

    Other annotations come back unchanged with ``False``.
    """
    if get_origin(annotation) not in (Union, types.UnionType):
        return annotation, False
    members = [a for a in get_args(annotation) if a is not type(None)]
    if len(members) != 1:
        return annotation, False
    inner, _ = _strip_optional(members[0])
    return inner, True
