import threading

import pytest

from healthstream.core.interfaces import ChunkContext
from healthstream.core.retry import (
    ChunkOutcome,
    ChunkState,
    ChunkTimeoutError,
    RetryingProcessor,
    RetryPolicy,
)

CONTENT = '<Record type="A" value="1"/>'


def _ctx(index: int = 0) -> ChunkContext:
    return ChunkContext(
        user_id="u1",
        document_id="d1",
        session_id="process_1_abc",
        chunk_index=index,
        file_name="export.xml",
    )


class FlakyProcessor:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[str] = []

    def process_chunk(self, content, context):
        self.calls.append(content)
        if len(self.calls) <= self.failures:
            raise ConnectionError(f"transient failure {len(self.calls)}")
        return "ok"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self) -> float:
        return self.now


def _retrying(processor, clock: FakeClock, **policy) -> RetryingProcessor:
    return RetryingProcessor(processor, RetryPolicy(**policy), sleep=clock.sleep, clock=clock)


def test_success_first_attempt() -> None:
    clock = FakeClock()
    proc = FlakyProcessor(failures=0)
    outcome = _retrying(proc, clock).process(CONTENT, _ctx())
    assert outcome.state is ChunkState.SUCCESS
    assert outcome.succeeded
    assert outcome.attempts == 1
    assert outcome.delays == []
    assert clock.sleeps == []


def test_two_failures_then_success_with_backoff() -> None:
    clock = FakeClock()
    proc = FlakyProcessor(failures=2)
    outcome = _retrying(proc, clock, max_retries=3).process(CONTENT, _ctx())

    assert outcome.succeeded
    assert outcome.attempts == 3
    assert len(proc.calls) == 3
    assert outcome.delays == [1.0, 2.0]
    assert clock.sleeps == [1.0, 2.0]
    # Attempt starts are at least the backoff apart.
    starts = outcome.attempt_started
    assert starts[1] - starts[0] >= 1.0
    assert starts[2] - starts[1] >= 2.0


def test_exhaustion_after_max_retries_plus_one_attempts() -> None:
    clock = FakeClock()
    proc = FlakyProcessor(failures=100)
    outcome = _retrying(proc, clock, max_retries=2).process(CONTENT, _ctx(4))

    assert outcome.state is ChunkState.EXHAUSTED
    assert outcome.attempts == 3
    assert len(proc.calls) == 3
    assert isinstance(outcome.last_error, ConnectionError)
    assert "transient failure 3" in str(outcome.last_error)
    assert outcome.delays == [1.0, 2.0]


def test_zero_retries_means_single_attempt() -> None:
    clock = FakeClock()
    proc = FlakyProcessor(failures=1)
    outcome = _retrying(proc, clock, max_retries=0).process(CONTENT, _ctx())
    assert outcome.state is ChunkState.EXHAUSTED
    assert outcome.attempts == 1
    assert clock.sleeps == []


def test_custom_backoff() -> None:
    clock = FakeClock()
    proc = FlakyProcessor(failures=3)
    outcome = _retrying(proc, clock, max_retries=3, backoff_base=0.5, backoff_factor=3.0).process(
        CONTENT, _ctx()
    )
    assert outcome.succeeded
    assert outcome.delays == [0.5, 1.5, 4.5]


@pytest.mark.parametrize("content", ["", "   \n", "<HealthData></HealthData>"])
def test_content_without_records_is_skipped(content) -> None:
    clock = FakeClock()
    proc = FlakyProcessor(failures=0)
    outcome = _retrying(proc, clock).process(content, _ctx())
    assert outcome.succeeded
    assert outcome.skipped
    assert outcome.attempts == 0
    assert proc.calls == []


def test_attempt_timeout_is_retried_then_exhausts() -> None:
    release = threading.Event()

    class StuckProcessor:
        calls = 0

        def process_chunk(self, content, context):
            StuckProcessor.calls += 1
            release.wait(5)

    clock = FakeClock()
    retrying = _retrying(StuckProcessor(), clock, max_retries=1, per_attempt_timeout=0.05)
    try:
        outcome = retrying.process(CONTENT, _ctx(2))
    finally:
        release.set()

    assert outcome.state is ChunkState.EXHAUSTED
    assert outcome.attempts == 2
    assert isinstance(outcome.last_error, ChunkTimeoutError)
    assert "Chunk 2" in str(outcome.last_error)
    assert StuckProcessor.calls == 2


def test_slow_success_within_timeout() -> None:
    class SlowProcessor:
        def process_chunk(self, content, context):
            threading.Event().wait(0.01)

    clock = FakeClock()
    outcome = _retrying(SlowProcessor(), clock, per_attempt_timeout=2.0).process(CONTENT, _ctx())
    assert outcome.succeeded


def test_policy_delay_for() -> None:
    policy = RetryPolicy()
    assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]
    assert policy.max_attempts == 4


def test_policy_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(per_attempt_timeout=0)


def test_terminal_states_reject_transitions() -> None:
    outcome = ChunkOutcome(chunk_index=0)
    outcome.transition(ChunkState.ATTEMPTING)
    outcome.transition(ChunkState.SUCCESS)
    with pytest.raises(RuntimeError):
        outcome.transition(ChunkState.ATTEMPTING)
