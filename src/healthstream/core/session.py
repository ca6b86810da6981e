# session.py
# SPDX-License-Identifier: MIT
"""Processing sessions and the registry that tracks them."""

from __future__ import annotations

import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .log import get_logger
from .retry import ChunkOutcome

__all__ = [
    "SessionNotFoundError",
    "ProcessingSession",
    "SessionRegistry",
    "generate_session_id",
]

log = get_logger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LEN = 9


class SessionNotFoundError(KeyError):
    """Raised when a session id is not (or no longer) registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Processing session {self.session_id} not found"


def generate_session_id(now_ms: Optional[int] = None) -> str:
    """Return an id of the form ``process_<epoch-ms>_<9 base-36 chars>``."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LEN))
    return f"process_{now_ms}_{suffix}"


@dataclass(slots=True)
class ProcessingSession:
    """
    State of one file being streamed.

    Attributes:
        id (str): Unique session id.
        file_name (str): Name of the source file.
        file_size (int): Size of the source in bytes.
        total_chunks (int | None): Number of chunks, known only once the
            whole stream was read.
        processed_chunks (set[int]): Indices of chunks that succeeded.
        created_at (float): Epoch seconds at creation.
        cancelled (bool): Set by :meth:`SessionRegistry.cancel`.
        bytes_read (int): Bytes pulled from the stream so far.
    """

    id: str
    file_name: str
    file_size: int
    total_chunks: Optional[int] = None
    processed_chunks: Set[int] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)
    cancelled: bool = False
    bytes_read: int = 0

    @property
    def progress(self) -> float:
        """Percent of chunks processed; 0 until the chunk total is known."""
        if self.total_chunks is None:
            return 0.0
        if self.total_chunks == 0:
            return 100.0
        return len(self.processed_chunks) / self.total_chunks * 100.0

    @property
    def byte_progress(self) -> float:
        """Percent of the source read so far, capped at 100."""
        if self.file_size <= 0:
            return 0.0
        return min(self.bytes_read / self.file_size * 100.0, 100.0)

    @property
    def is_complete(self) -> bool:
        return self.total_chunks is not None and len(self.processed_chunks) >= self.total_chunks


class SessionRegistry:
    """
    Thread-safe map of session id to :class:`ProcessingSession`.

    One registry is typically shared by a service and everything that wants
    to observe or cancel its sessions. Sessions leave the registry when they
    finish, fail or are cancelled.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, ProcessingSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def start(self, file_name: str, file_size: int) -> ProcessingSession:
        with self._lock:
            session_id = generate_session_id()
            while session_id in self._sessions:
                session_id = generate_session_id()
            session = ProcessingSession(id=session_id, file_name=file_name, file_size=file_size)
            self._sessions[session_id] = session
        log.info("Started session %s for %s (%d bytes)", session_id, file_name, file_size)
        return session

    def get(self, session_id: str) -> Optional[ProcessingSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def on_chunk_resolved(self, session_id: str, chunk_index: int, outcome: ChunkOutcome) -> None:
        """Record a chunk's terminal outcome; only successes count toward progress."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not outcome.succeeded:
                return
            if session.total_chunks is not None and chunk_index >= session.total_chunks:
                raise ValueError(
                    f"Chunk index {chunk_index} out of range for {session.total_chunks} chunks"
                )
            session.processed_chunks.add(chunk_index)

    def set_total(self, session_id: str, total_chunks: int) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.total_chunks = total_chunks

    def progress(self, session_id: str) -> float:
        """Chunk-based progress in percent, or 0 for unknown sessions."""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.progress if session is not None else 0.0

    def cancel(self, session_id: str) -> ProcessingSession:
        """
        Flag a session as cancelled and drop it from the registry.

        The driver notices the flag at its next read or chunk dispatch; an
        attempt already running is not interrupted.

        Raises:
            SessionNotFoundError: If ``session_id`` is not registered.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(session_id)
            session.cancelled = True
        log.info("Cancelled session %s", session_id)
        return session

    def finish(self, session_id: str) -> Optional[ProcessingSession]:
        """Remove a session that completed or failed."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def active_sessions(self) -> List[ProcessingSession]:
        with self._lock:
            return list(self._sessions.values())
