# concurrency.py
# SPDX-License-Identifier: MIT
"""Bounded thread pool for streaming several export files at once.

A task is always a whole file: one driver, one buffer, one session. Chunks
of a single file never leave the thread that reads it.
"""
from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Generic, TypeVar

from .config import PipelineConfig
from .log import get_logger

__all__ = ["ExecutorConfig", "Executor", "resolve_executor_config"]

log = get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class ExecutorConfig:
    """Worker count and submission window for :class:`Executor`.

    ``window`` caps how many files are submitted but not yet collected;
    it is never taken below ``max_workers``.
    """
    max_workers: int
    window: int


class _Inflight(Generic[ResultT]):
    """Futures submitted to the pool and not yet handed to a callback."""

    def __init__(
        self,
        on_result: Callable[[ResultT], None],
        on_error: Callable[[BaseException], None] | None,
        fail_fast: bool,
    ) -> None:
        self.futures: set[Future[ResultT]] = set()
        self._on_result = on_result
        self._on_error = on_error
        self._fail_fast = fail_fast

    def __len__(self) -> int:
        return len(self.futures)

    def collect_one_batch(self) -> None:
        """Block until at least one future finishes, then dispatch every finished one."""
        finished, self.futures = wait(self.futures, return_when=FIRST_COMPLETED)
        for fut in finished:
            err = fut.exception()
            if err is None:
                self._on_result(fut.result())
                continue
            log.debug("Worker task failed: %s", err)
            if self._on_error is not None:
                self._on_error(err)
            if self._fail_fast:
                for other in self.futures:
                    other.cancel()
                raise err


class Executor:
    """Thread pool with a bounded submission window.

    Callbacks run on the calling thread, in completion order.
    """

    def __init__(self, cfg: ExecutorConfig) -> None:
        self.cfg = cfg

    def map_unordered(
        self,
        items: Iterable[ItemT],
        fn: Callable[[ItemT], ResultT],
        on_result: Callable[[ResultT], None],
        *,
        fail_fast: bool = False,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        """Run ``fn`` over ``items`` on worker threads.

        Args:
            items (Iterable[ItemT]): Work items, consumed lazily.
            fn (Callable[[ItemT], ResultT]): Work function.
            on_result (Callable[[ResultT], None]): Receives each result.
            fail_fast (bool): Cancel queued work and re-raise the first
                error instead of carrying on.
            on_error (Callable[[BaseException], None] | None): Receives each
                error, before any fail-fast re-raise.

        Raises:
            ValueError: ``max_workers`` is below 1.
            Exception: The first worker error when ``fail_fast`` is set.
        """
        if self.cfg.max_workers < 1:
            raise ValueError("Executor requires max_workers >= 1")
        limit = max(self.cfg.window, self.cfg.max_workers)
        inflight: _Inflight[ResultT] = _Inflight(on_result, on_error, fail_fast)
        with ThreadPoolExecutor(
            max_workers=self.cfg.max_workers,
            thread_name_prefix="healthstream-file",
        ) as pool:
            for item in items:
                if len(inflight) >= limit:
                    inflight.collect_one_batch()
                inflight.futures.add(pool.submit(fn, item))
            while len(inflight):
                inflight.collect_one_batch()


def resolve_executor_config(cfg: PipelineConfig, *, n_items: int | None = None) -> ExecutorConfig:
    """Turn ``PipelineConfig.max_workers`` into concrete executor settings.

    Zero means one worker per CPU. The count is capped by ``n_items`` when
    known and is always at least one; the window is twice the worker count.
    """
    workers = cfg.max_workers if cfg.max_workers > 0 else (os.cpu_count() or 1)
    if n_items is not None:
        workers = min(workers, n_items)
    workers = max(1, workers)
    return ExecutorConfig(max_workers=workers, window=2 * workers)
