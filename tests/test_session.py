import re
import threading

import pytest

from healthstream.core.retry import ChunkOutcome, ChunkState
from healthstream.core.session import SessionNotFoundError, SessionRegistry, generate_session_id


def _outcome(index: int, state: ChunkState = ChunkState.SUCCESS) -> ChunkOutcome:
    return ChunkOutcome(chunk_index=index, state=state, attempts=1)


def test_session_id_format() -> None:
    sid = generate_session_id(now_ms=1700000000000)
    assert re.fullmatch(r"process_1700000000000_[0-9a-z]{9}", sid)
    assert generate_session_id() != generate_session_id()


def test_progress_unknown_total_is_zero() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 100)
    reg.on_chunk_resolved(session.id, 0, _outcome(0))
    assert reg.progress(session.id) == 0.0


def test_progress_after_total_known() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 100)
    for i in range(3):
        reg.on_chunk_resolved(session.id, i, _outcome(i))
    reg.set_total(session.id, 4)
    assert reg.progress(session.id) == 75.0
    reg.on_chunk_resolved(session.id, 3, _outcome(3))
    assert reg.progress(session.id) == 100.0
    assert session.is_complete


def test_failed_outcome_does_not_count() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 100)
    reg.on_chunk_resolved(session.id, 0, _outcome(0, ChunkState.EXHAUSTED))
    reg.set_total(session.id, 1)
    assert session.processed_chunks == set()
    assert reg.progress(session.id) == 0.0


def test_processed_never_exceeds_total() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 100)
    reg.set_total(session.id, 1)
    with pytest.raises(ValueError):
        reg.on_chunk_resolved(session.id, 1, _outcome(1))


def test_zero_chunk_session_reports_complete() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 10)
    reg.set_total(session.id, 0)
    assert reg.progress(session.id) == 100.0


def test_unknown_session_progress_is_zero() -> None:
    assert SessionRegistry().progress("process_0_missing") == 0.0


def test_cancel_flags_and_removes() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 100)
    assert reg.active_sessions() == [session]

    cancelled = reg.cancel(session.id)

    assert cancelled is session
    assert session.cancelled is True
    assert session.id not in reg
    assert reg.active_sessions() == []


def test_cancel_unknown_session_raises() -> None:
    reg = SessionRegistry()
    with pytest.raises(SessionNotFoundError) as excinfo:
        reg.cancel("process_0_missing")
    assert isinstance(excinfo.value, KeyError)
    assert "process_0_missing" in str(excinfo.value)


def test_finish_removes_session() -> None:
    reg = SessionRegistry()
    session = reg.start("export.xml", 100)
    assert reg.finish(session.id) is session
    assert len(reg) == 0
    assert reg.finish(session.id) is None


def test_concurrent_sessions_are_independent() -> None:
    reg = SessionRegistry()
    ids: list[str] = []
    lock = threading.Lock()

    def worker(n: int) -> None:
        session = reg.start(f"file{n}.xml", 10)
        for i in range(5):
            reg.on_chunk_resolved(session.id, i, _outcome(i))
        reg.set_total(session.id, 5)
        with lock:
            ids.append(session.id)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(ids)) == 8
    assert all(reg.progress(sid) == 100.0 for sid in ids)
