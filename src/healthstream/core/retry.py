# retry.py
# SPDX-License-Identifier: MIT
"""Bounded retry with exponential backoff and a per-attempt timeout.

Each chunk moves through an explicit state machine::

    PENDING -> ATTEMPTING -> SUCCESS
                          -> ATTEMPTING (after a backoff delay)
                          -> EXHAUSTED

SUCCESS and EXHAUSTED are terminal. Attempts run on a worker thread so the
caller can stop waiting after ``per_attempt_timeout`` seconds; a timed-out
attempt is not interrupted and may still finish in the background.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum

from .extract import count_record_markers
from .interfaces import ChunkContext, ChunkProcessor
from .log import get_logger

__all__ = [
    "ChunkState",
    "ChunkTimeoutError",
    "RetryPolicy",
    "ChunkOutcome",
    "RetryingProcessor",
]

log = get_logger(__name__)


class ChunkTimeoutError(TimeoutError):
    """Raised (as an attempt error) when one attempt outlives its timeout."""


class ChunkState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (ChunkState.SUCCESS, ChunkState.EXHAUSTED)


_TRANSITIONS: dict[ChunkState, frozenset[ChunkState]] = {
    ChunkState.PENDING: frozenset({ChunkState.ATTEMPTING, ChunkState.SUCCESS}),
    ChunkState.ATTEMPTING: frozenset(
        {ChunkState.ATTEMPTING, ChunkState.SUCCESS, ChunkState.EXHAUSTED}
    ),
    ChunkState.SUCCESS: frozenset(),
    ChunkState.EXHAUSTED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry budget and timing for one chunk.

    Attributes:
        max_retries (int): Retries after the first attempt; the chunk is
            attempted at most ``max_retries + 1`` times.
        per_attempt_timeout (float): Seconds to wait for one attempt.
        backoff_base (float): Delay in seconds before the first retry.
        backoff_factor (float): Multiplier applied per retry.
    """

    max_retries: int = 3
    per_attempt_timeout: float = 30.0
    backoff_base: float = 1.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be greater than 0")
        if self.backoff_base < 0 or self.backoff_factor < 0:
            raise ValueError("backoff_base and backoff_factor cannot be negative")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows zero-based ``attempt``."""
        return self.backoff_base * (self.backoff_factor ** attempt)


@dataclass(slots=True)
class ChunkOutcome:
    """Result of driving one chunk to a terminal state.

    Attributes:
        chunk_index (int): Chunk the outcome belongs to.
        state (ChunkState): Current state; terminal once ``process`` returns.
        attempts (int): Attempts started so far.
        skipped (bool): True when the chunk held no record markers and the
            processor was never called.
        last_error (BaseException | None): Error of the latest failed attempt.
        attempt_started (list[float]): Clock reading at each attempt start.
        delays (list[float]): Backoff delays applied between attempts.
    """

    chunk_index: int
    state: ChunkState = ChunkState.PENDING
    attempts: int = 0
    skipped: bool = False
    last_error: BaseException | None = None
    attempt_started: list[float] = field(default_factory=list)
    delays: list[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is ChunkState.SUCCESS

    def transition(self, new_state: ChunkState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid chunk state transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state


class RetryingProcessor:
    """Drive a :class:`ChunkProcessor` call through the retry state machine.

    ``sleep`` and ``clock`` are injectable so tests can observe backoff
    without waiting on the wall clock.
    """

    def __init__(
        self,
        processor: ChunkProcessor,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.processor = processor
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    def process(self, content: str, context: ChunkContext) -> ChunkOutcome:
        """Attempt ``content`` until success or the retry budget runs out.

        Args:
            content (str): Chunk text handed to the processor.
            context (ChunkContext): Identity of the chunk.

        Returns:
            ChunkOutcome: Outcome in state SUCCESS or EXHAUSTED.
        """
        idx = context.chunk_index
        outcome = ChunkOutcome(chunk_index=idx)

        if not content or not content.strip() or count_record_markers(content) == 0:
            log.warning("Chunk %d contains no records, skipping", idx)
            outcome.skipped = True
            outcome.transition(ChunkState.SUCCESS)
            return outcome

        policy = self.policy
        while not outcome.state.is_terminal:
            attempt = outcome.attempts
            outcome.transition(ChunkState.ATTEMPTING)
            outcome.attempts += 1
            outcome.attempt_started.append(self._clock())
            log.debug("Processing chunk %d, attempt %d/%d", idx, attempt + 1, policy.max_attempts)

            error = self._run_attempt(content, context)
            if error is None:
                outcome.transition(ChunkState.SUCCESS)
                log.info("Chunk %d processed on attempt %d", idx, attempt + 1)
                continue

            outcome.last_error = error
            if outcome.attempts >= policy.max_attempts:
                outcome.transition(ChunkState.EXHAUSTED)
                log.error(
                    "Chunk %d failed after %d attempts: %s",
                    idx,
                    outcome.attempts,
                    error,
                )
                continue

            delay = policy.delay_for(attempt)
            outcome.delays.append(delay)
            log.warning(
                "Chunk %d attempt %d failed (%s); retrying in %.3fs",
                idx,
                attempt + 1,
                error,
                delay,
            )
            if delay > 0:
                self._sleep(delay)
        return outcome

    def _run_attempt(self, content: str, context: ChunkContext) -> BaseException | None:
        """Run one processor call against the timeout; return its error, if any."""
        pool = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"healthstream-chunk-{context.chunk_index}",
        )
        try:
            future = pool.submit(self.processor.process_chunk, content, context)
            done, _ = wait([future], timeout=self.policy.per_attempt_timeout)
            if not done:
                timeout_ms = int(self.policy.per_attempt_timeout * 1000)
                return ChunkTimeoutError(
                    f"Chunk {context.chunk_index} processing timed out after {timeout_ms}ms"
                )
            return future.exception()
        finally:
            # Never join: a timed-out call keeps running in the background.
            pool.shutdown(wait=False)
