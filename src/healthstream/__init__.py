# __init__.py
# SPDX-License-Identifier: MIT
"""
Top-level package exports for :mod:`healthstream`.

healthstream turns very large XML health exports into bounded chunks of
complete ``<Record .../>`` elements without loading the file into memory,
and hands each chunk to a processor with bounded retries.

Public surface
--------------
The symbols in :data:`PRIMARY_API` are the recommended entry points:

- Describe an input with :func:`local_file_source` or :func:`bytes_source`.
- Stream it with :class:`ChunkStreamService` (or :func:`process_stream`)
  into any object implementing ``process_chunk(content, context)``.
- Use the bundled sinks or :func:`ingest_files` for config-driven runs.

Examples:
    Stream one export into a JSONL file::

        >>> from healthstream import JSONLChunkSink, local_file_source, process_stream
        >>> with JSONLChunkSink("out/chunks.jsonl") as sink:
        ...     session_id = process_stream(
        ...         local_file_source("export.xml"), sink, user_id="user-1"
        ...     )
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Package version
# ---------------------------------------------------------------------------
try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("healthstream")
except Exception:  # PackageNotFoundError or runtime env oddities
    __version__ = "0.0.0+unknown"


# ---------------------------------------------------------------------------
# Primary public API (exported via __all__)
# ---------------------------------------------------------------------------
from .cli.runner import FileResult, IngestSummary, ingest_files
from .core.chunk import Chunk, ChunkAssembler
from .core.config import (
    HealthStreamConfig,
    LoggingConfig,
    PipelineConfig,
    ProcessingOptions,
    RunMetadata,
    SinkConfig,
    StreamConfig,
    load_config_from_path,
)
from .core.extract import ExtractResult, extract_records
from .core.interfaces import ChunkContext, ChunkProcessor, ChunkSink, StreamSource
from .core.log import configure_logging, get_logger, temp_level
from .core.pipeline import (
    ChunkProcessingError,
    ChunkStreamService,
    PreconditionError,
    process_stream,
)
from .core.retry import ChunkOutcome, ChunkState, ChunkTimeoutError, RetryingProcessor, RetryPolicy
from .core.session import ProcessingSession, SessionNotFoundError, SessionRegistry
from .core.stream import StreamDriver
from .sinks.sinks import (
    GzipJSONLChunkSink,
    HealthMetricsJSONLSink,
    JSONLChunkSink,
    NoopChunkSink,
    make_sink,
)
from .sources.fs import bytes_source, local_file_source

PRIMARY_API = [
    "__version__",
    "ChunkStreamService",
    "process_stream",
    "ProcessingOptions",
    "StreamSource",
    "ChunkContext",
    "ChunkProcessor",
    "ChunkSink",
    "PreconditionError",
    "ChunkProcessingError",
    "ChunkTimeoutError",
    "SessionNotFoundError",
    "SessionRegistry",
    "ProcessingSession",
    "HealthStreamConfig",
    "StreamConfig",
    "SinkConfig",
    "PipelineConfig",
    "LoggingConfig",
    "RunMetadata",
    "load_config_from_path",
    "local_file_source",
    "bytes_source",
    "JSONLChunkSink",
    "GzipJSONLChunkSink",
    "HealthMetricsJSONLSink",
    "NoopChunkSink",
    "make_sink",
    "ingest_files",
    "IngestSummary",
    "FileResult",
]

# Lower-level pieces for callers assembling their own pipeline.
BUILDING_BLOCKS = [
    "extract_records",
    "ExtractResult",
    "Chunk",
    "ChunkAssembler",
    "StreamDriver",
    "RetryingProcessor",
    "RetryPolicy",
    "ChunkOutcome",
    "ChunkState",
    "configure_logging",
    "get_logger",
    "temp_level",
]

__all__ = list(PRIMARY_API) + BUILDING_BLOCKS
