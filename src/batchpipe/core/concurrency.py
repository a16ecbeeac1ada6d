# concurrency.py
# SPDX-License-Identifier: MIT
"""Worker-pool helpers for batch dispatch.

Wraps thread and process pool executors with a bounded submission window and
derives executor settings for the batch scheduler from the pipeline config and
processor hints.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import (
    FIRST_COMPLETED,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from .config import PipelineConfig
from .log import get_logger

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ExecutorConfig:
    """Immutable executor settings used to construct worker pools.

    Attributes:
        max_workers (int): Maximum number of worker threads or processes.
        window (int): Maximum number of in-flight tasks before submission
            blocks.
        kind (Literal["thread", "process"]): Executor implementation to use.
    """
    max_workers: int
    window: int
    kind: Literal["thread", "process"]


class Executor:
    """Run tasks in a thread or process pool with bounded submission.

    Each :meth:`map_unordered` call creates its own pool and returns only
    after every submitted task has finished, so one call is a complete
    fan-out/fan-in barrier. Results reach the callbacks in completion order
    on the calling thread.

    Attributes:
        cfg (ExecutorConfig): Executor configuration for this instance.
    """

    def __init__(self, cfg: ExecutorConfig) -> None:
        self.cfg = cfg

    def _make_executor(self):
        if self.cfg.max_workers < 1:
            raise ValueError("Executor requires max_workers >= 1")
        if self.cfg.kind == "process":
            return ProcessPoolExecutor(max_workers=self.cfg.max_workers)
        return ThreadPoolExecutor(max_workers=self.cfg.max_workers, thread_name_prefix="batchpipe")

    def map_unordered(
        self,
        items: Iterable[T],
        fn: Callable[[T], R],
        on_result: Callable[[R], None],
        *,
        on_error: Callable[[T, BaseException], None] | None = None,
    ) -> None:
        """Submit items to workers and consume results as they complete.

        Args:
            items (Iterable[T]): Items to process.
            fn (Callable[[T], R]): Worker function invoked for each item.
            on_result (Callable[[R], None]): Callback for each successful
                result.
            on_error (Callable[[T, BaseException], None] | None): Callback for
                an item whose submission or worker call raised. When omitted
                the error is logged and dropped.
        """
        window = max(self.cfg.window, self.cfg.max_workers)

        def _report(item: T, exc: BaseException) -> None:
            if on_error is not None:
                on_error(item, exc)
            else:
                log.warning("Worker failed for %r: %s", item, exc)

        with self._make_executor() as pool:
            pending: dict[Future[R], T] = {}

            def _drain() -> None:
                done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
                for fut in done:
                    item = pending.pop(fut)
                    try:
                        result = fut.result()
                    except Exception as exc:  # noqa: BLE001
                        _report(item, exc)
                        continue
                    on_result(result)

            for item in items:
                try:
                    pending[pool.submit(fn, item)] = item
                except Exception as exc:  # noqa: BLE001
                    _report(item, exc)
                    continue
                if len(pending) >= window:
                    _drain()

            while pending:
                _drain()


def _preferred_executor(obj: Any) -> str | None:
    """Read a ``preferred_executor`` hint from a processor, ignoring junk values."""
    raw = getattr(obj, "preferred_executor", None)
    if raw is None:
        return None
    if isinstance(raw, str) and raw.strip().lower() in {"thread", "process"}:
        return raw.strip().lower()
    log.warning(
        "Invalid concurrency hint on %s: preferred_executor must be \"thread\" or \"process\", got %r.",
        type(obj).__name__,
        raw,
    )
    return None


def resolve_batch_executor_config(
    pipeline: PipelineConfig,
    processor: Any | None = None,
    *,
    batch_len: int | None = None,
) -> ExecutorConfig:
    """Build executor settings for dispatching one batch.

    ``pipeline.concurrency`` bounds the workers; when it is 0 every item in
    the batch gets a worker. A smaller final batch never spins up more workers
    than it has items. The processor's ``preferred_executor`` hint wins over
    ``pipeline.executor_kind``.

    Args:
        pipeline (PipelineConfig): Scheduler configuration.
        processor (Any | None): Processor whose hints may override the kind.
        batch_len (int | None): Size of the batch about to be dispatched.

    Returns:
        ExecutorConfig: Settings for the batch worker pool.
    """
    max_workers = pipeline.max_workers
    if batch_len is not None:
        max_workers = min(max_workers, max(1, batch_len))
    max_workers = max(1, max_workers)
    kind = _preferred_executor(processor) or (pipeline.executor_kind or "thread").strip().lower()
    if kind not in {"thread", "process"}:
        kind = "thread"
    return ExecutorConfig(max_workers=max_workers, window=max_workers, kind=kind)  # type: ignore[arg-type]


__all__ = [
    "Executor",
    "ExecutorConfig",
    "resolve_batch_executor_config",
]
