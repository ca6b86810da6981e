# pipeline.py
# SPDX-License-Identifier: MIT
"""Streaming entry point coordinating the driver, retries, and sessions."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from .chunk import Chunk
from .config import ProcessingOptions, StreamConfig
from .interfaces import ChunkContext, ChunkProcessor, StreamSource
from .log import get_logger
from .retry import RetryingProcessor, RetryPolicy
from .session import ProcessingSession, SessionRegistry
from .stream import StreamDriver

__all__ = [
    "PreconditionError",
    "ChunkProcessingError",
    "validate_source",
    "ChunkStreamService",
    "process_stream",
]

log = get_logger(__name__)

# Byte progress can reach 100 before the last chunk is processed; only the
# final report once the chunk total is known may say 100.
IN_FLIGHT_PROGRESS_CAP = 99.0


class PreconditionError(ValueError):
    """Raised before any read when the source, user, or options are invalid."""


class ChunkProcessingError(RuntimeError):
    """Raised when a chunk exhausted its retries; aborts the stream."""

    def __init__(self, chunk_index: int, attempts: int, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"Failed to process chunk {chunk_index} after {attempts} attempts: {detail}"
        )
        self.chunk_index = chunk_index
        self.attempts = attempts
        self.last_error = last_error


def validate_source(
    source: StreamSource | None,
    user_id: str | None,
    options: ProcessingOptions,
    *,
    expected_extension: str = ".xml",
) -> None:
    """Check every precondition of a streaming call without touching the stream.

    Raises:
        PreconditionError: On the first failed check.
    """
    if source is None:
        raise PreconditionError("A source is required")
    if not user_id or not str(user_id).strip():
        raise PreconditionError("User ID is required and cannot be empty")
    if source.size <= 0:
        raise PreconditionError(f"Source {source.name!r} is empty")
    if expected_extension and not source.name.lower().endswith(expected_extension.lower()):
        raise PreconditionError(f"Only {expected_extension} files are supported; got {source.name!r}")
    if options.chunk_size <= 0:
        raise PreconditionError("Chunk size must be greater than 0")
    if options.max_retries < 0:
        raise PreconditionError("Max retries cannot be negative")
    if options.per_attempt_timeout_ms <= 0:
        raise PreconditionError("Timeout must be greater than 0")
    if options.max_file_size <= 0:
        raise PreconditionError("Max file size must be greater than 0")
    if source.size > options.max_file_size:
        raise PreconditionError(
            f"File size {source.size} exceeds the limit of {options.max_file_size} bytes"
        )


class ChunkStreamService:
    """Stream sources into chunks and hand each chunk to a processor.

    One service can run several files at once from different threads; each
    call gets its own driver, buffer and session. Sessions are tracked in
    ``registry``, shared with anyone who wants to observe or cancel them.
    """

    def __init__(
        self,
        processor: ChunkProcessor,
        *,
        config: StreamConfig | None = None,
        registry: SessionRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.processor = processor
        self.config = config or StreamConfig()
        self.config.validate()
        self.registry = registry or SessionRegistry()
        self._sleep = sleep

    def default_options(self) -> ProcessingOptions:
        return self.config.to_options()

    def process_stream(
        self,
        source: StreamSource,
        user_id: str,
        document_id: str | None = None,
        options: ProcessingOptions | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        """Stream ``source`` to the processor chunk by chunk.

        Args:
            source (StreamSource): File to read.
            user_id (str): Owner of the file; must not be blank.
            document_id (str | None): Document the chunks belong to.
                Defaults to the session id.
            options (ProcessingOptions | None): Per-call options; defaults
                come from the service's :class:`StreamConfig`.
            metadata (Mapping[str, Any] | None): Extra keys passed to the
                processor in every chunk context.

        Returns:
            str: The session id, once every chunk reached a terminal state
            or the session was cancelled.

        Raises:
            PreconditionError: Invalid source, user or options.
            ChunkProcessingError: A chunk failed after all retries.
        """
        opts = options or self.default_options()
        validate_source(source, user_id, opts, expected_extension=self.config.expected_extension)

        session = self.registry.start(source.name, source.size)
        doc_id = document_id or session.id
        retrying = RetryingProcessor(
            self.processor,
            RetryPolicy(
                max_retries=opts.max_retries,
                per_attempt_timeout=opts.per_attempt_timeout_ms / 1000.0,
                backoff_base=self.config.backoff_base_s,
                backoff_factor=self.config.backoff_factor,
            ),
            sleep=self._sleep,
        )
        driver = StreamDriver(
            read_block_size=self.config.read_block_size,
            encoding=self.config.encoding,
            should_continue=lambda: not session.cancelled,
        )
        extra = dict(metadata or {})

        def _on_chunk(chunk: Chunk) -> None:
            context = ChunkContext(
                user_id=user_id,
                document_id=doc_id,
                session_id=session.id,
                chunk_index=chunk.index,
                file_name=source.name,
                metadata=extra,
            )
            outcome = retrying.process(chunk.content, context)
            if not outcome.succeeded:
                raise ChunkProcessingError(
                    chunk.index, outcome.attempts, outcome.last_error
                ) from outcome.last_error
            self.registry.on_chunk_resolved(session.id, chunk.index, outcome)
            session.bytes_read = driver.bytes_read
            if opts.on_chunk_complete is not None:
                opts.on_chunk_complete(chunk.index, chunk.index + 1)
            if opts.on_progress is not None:
                opts.on_progress(min(session.byte_progress, IN_FLIGHT_PROGRESS_CAP))

        try:
            with source.open_stream() as stream:
                total = driver.run(stream, opts.chunk_size, _on_chunk)
            session.bytes_read = driver.bytes_read
            if driver.stopped or session.cancelled:
                log.info(
                    "Session %s cancelled after %d chunks", session.id, len(session.processed_chunks)
                )
                return session.id
            self.registry.set_total(session.id, total)
            if opts.on_progress is not None:
                opts.on_progress(session.progress)
            log.info(
                "Session %s finished %s: %d chunks, %d bytes",
                session.id,
                source.name,
                total,
                driver.bytes_read,
            )
            return session.id
        except ChunkProcessingError as exc:
            log.error("Session %s aborted: %s", session.id, exc)
            raise
        finally:
            self.registry.finish(session.id)

    def progress(self, session_id: str) -> float:
        return self.registry.progress(session_id)

    def cancel(self, session_id: str) -> ProcessingSession:
        return self.registry.cancel(session_id)

    def active_sessions(self) -> list[ProcessingSession]:
        return self.registry.active_sessions()


def process_stream(
    source: StreamSource,
    processor: ChunkProcessor,
    user_id: str,
    document_id: str | None = None,
    options: ProcessingOptions | None = None,
    metadata: Mapping[str, Any] | None = None,
    *,
    config: StreamConfig | None = None,
    registry: SessionRegistry | None = None,
) -> str:
    """One-shot convenience wrapper around :class:`ChunkStreamService`."""
    service = ChunkStreamService(processor, config=config, registry=registry)
    return service.process_stream(source, user_id, document_id, options, metadata)
