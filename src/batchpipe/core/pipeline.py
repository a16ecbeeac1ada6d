# pipeline.py
# SPDX-License-Identifier: MIT
"""Batch scheduler coordinating item sources, processors, and reporting."""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .concurrency import Executor, resolve_batch_executor_config
from .config import PipelineConfig
from .errors import Cancelled, TargetConflict
from .interfaces import (
    ItemProcessor,
    ItemSource,
    Outcome,
    OutcomeStatus,
    ProcessContext,
    Reporter,
    WorkItem,
)
from .log import get_logger
from .stats import LoggingReporter, RunStatistics
from ..sinks.errorlog import ErrorLogEntry, ErrorLogSink, NullErrorLog

log = get_logger(__name__)


def describe_error(exc: BaseException) -> str:
    """Render an exception as ``Type: message`` for outcomes and the error log."""
    msg = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {msg}" if msg else name


def _output_exists(processor: ItemProcessor, target: Path) -> bool:
    check = getattr(processor, "output_exists", None)
    if callable(check):
        return bool(check(target))
    return target.exists()


def process_item(
    item: WorkItem,
    processor: ItemProcessor,
    *,
    skip_existing: bool,
    ctx: ProcessContext | None = None,
) -> Outcome:
    """Run the idempotence check and the processor for a single item.

    Never raises: any failure while resolving the target, creating its parent
    directory, or transforming the item comes back as a FAILED outcome.

    Args:
        item (WorkItem): Item to handle.
        processor (ItemProcessor): Processor that owns the output mapping and
            the transformation.
        skip_existing (bool): Return SKIPPED when the target already exists.
        ctx (ProcessContext | None): Run context; a fresh one when omitted.

    Returns:
        Outcome: PROCESSED, SKIPPED, or FAILED.
    """
    ctx = ctx or ProcessContext()
    target: Path | None = None
    try:
        target = Path(processor.target_for(item))
        if skip_existing and _output_exists(processor, target):
            return Outcome.skipped(item, target)
        if ctx.cancelled:
            raise Cancelled("cancelled before start")
        target.parent.mkdir(parents=True, exist_ok=True)
        processor.process(item, target, ctx)
    except Exception as exc:  # noqa: BLE001
        return Outcome.failed(item, describe_error(exc), target)
    return Outcome.processed(item, target)


@dataclass
class _ItemTask:
    """Picklable per-item callable handed to the worker pool."""

    processor: ItemProcessor
    skip_existing: bool
    ctx: ProcessContext = field(default_factory=ProcessContext)

    def __call__(self, item: WorkItem) -> Outcome:
        return process_item(
            item,
            self.processor,
            skip_existing=self.skip_existing,
            ctx=self.ctx,
        )


class BatchScheduler:
    """Drain an item source in fixed-size batches with one batch in flight.

    Each batch is fanned out to a bounded worker pool and fully drained before
    the next batch is pulled from the source. Between batches the scheduler
    reports progress and sleeps for ``inter_batch_pause`` seconds so buffers,
    file handles and connections from the previous burst can be released.

    Outcomes are folded into :attr:`stats` on the scheduler's thread as they
    arrive; failed outcomes are written to the error log at the same moment.
    Item failures never fail the run.

    Attributes:
        processor (ItemProcessor): Transformation applied to every item.
        config (PipelineConfig): Batching and idempotence settings.
        reporter (Reporter): Receives progress and the final summary.
        error_log (ErrorLogSink | NullErrorLog): Failure record.
        stats (RunStatistics): Counters for the current (or last) run.
    """

    def __init__(
        self,
        processor: ItemProcessor,
        *,
        config: PipelineConfig | None = None,
        reporter: Reporter | None = None,
        error_log: ErrorLogSink | NullErrorLog | None = None,
        on_outcome: Callable[[Outcome], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.processor = processor
        self.config = config or PipelineConfig()
        self.reporter: Reporter = reporter or LoggingReporter()
        if error_log is None:
            path = self.config.error_log_path
            error_log = ErrorLogSink(path) if path else NullErrorLog()
        self.error_log = error_log
        self._on_outcome_hook = on_outcome
        self._sleep = sleep
        self._clock = clock
        self._stop = threading.Event()
        self._source_exhausted = False
        self._claims: dict[str, str] = {}
        self.stats = RunStatistics(clock=clock)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def request_stop(self) -> None:
        """Ask the run to stop after the current batch drains.

        Safe to call from signal handlers and other threads. Processors see
        the request through ``ProcessContext.cancelled``.
        """
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _open_source(source: ItemSource | Iterable[WorkItem]) -> Iterator[WorkItem]:
        iter_items = getattr(source, "iter_items", None)
        if callable(iter_items):
            return iter(iter_items())
        return iter(source)  # type: ignore[arg-type]

    def _pull_batch(self, items: Iterator[WorkItem]) -> list[WorkItem]:
        """Accumulate up to ``batch_size`` items, stopping early on exhaustion."""
        batch: list[WorkItem] = []
        size = self.config.batch_size
        while len(batch) < size and not self._source_exhausted:
            try:
                item = next(items)
            except StopIteration:
                self._source_exhausted = True
                break
            except Exception as exc:  # noqa: BLE001
                log.warning("Item source failed; ending enumeration: %s", describe_error(exc))
                self._source_exhausted = True
                break
            batch.append(item)
            self.stats.note_scanned()
        return batch

    def _handle_outcome(self, outcome: Outcome) -> None:
        self.stats.record(outcome)
        if outcome.status is OutcomeStatus.FAILED:
            log.warning("Failed %s: %s", outcome.item.key, outcome.reason)
            self.error_log.append(ErrorLogEntry.from_outcome(outcome))
        else:
            log.debug("%s %s -> %s", outcome.status.value, outcome.item.key, outcome.target)
        if self._on_outcome_hook is not None:
            try:
                self._on_outcome_hook(outcome)
            except Exception as exc:  # noqa: BLE001
                log.warning("on_outcome hook failed for %s: %s", outcome.item.key, exc)

    def _handle_worker_error(self, item: WorkItem, exc: BaseException) -> None:
        # Only reachable when the pool itself fails (e.g. pickling under a
        # process executor); process_item never raises.
        self._handle_outcome(Outcome.failed(item, describe_error(exc)))

    def _claim_targets(self, batch: list[WorkItem]) -> list[WorkItem]:
        """Fail items whose output location already belongs to another item.

        The first item (in source order) to map to a target owns it for the
        rest of the run; later items with a different key are FAILED instead
        of overwriting that output or being skipped because of it.
        """
        ready: list[WorkItem] = []
        for item in batch:
            try:
                target = Path(self.processor.target_for(item))
            except Exception:  # noqa: BLE001
                # process_item reports mapping failures.
                ready.append(item)
                continue
            claim = os.path.normcase(os.path.abspath(target))
            owner = self._claims.setdefault(claim, item.key)
            if owner != item.key:
                exc = TargetConflict(f"{target} is already produced by {owner}")
                self._handle_outcome(Outcome.failed(item, describe_error(exc), target))
                continue
            ready.append(item)
        return ready

    def _dispatch(self, batch: list[WorkItem], task: _ItemTask) -> None:
        """Process every item of ``batch`` and return once all have finished."""
        batch = self._claim_targets(batch)
        if not batch:
            return
        exec_cfg = resolve_batch_executor_config(self.config, self.processor, batch_len=len(batch))
        if exec_cfg.max_workers <= 1 and exec_cfg.kind == "thread":
            for item in batch:
                self._handle_outcome(task(item))
            return
        Executor(exec_cfg).map_unordered(
            batch,
            task,
            self._handle_outcome,
            on_error=self._handle_worker_error,
        )

    def _notify(self, method: str) -> None:
        fn: Any = getattr(self.reporter, method, None)
        if not callable(fn):
            return
        try:
            fn(self.stats)
        except Exception as exc:  # noqa: BLE001
            log.warning(
                "Reporter %s.%s failed: %s",
                type(self.reporter).__name__,
                method,
                exc,
            )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def run(self, source: ItemSource | Iterable[WorkItem]) -> RunStatistics:
        """Process every item from ``source`` and return the run statistics.

        Raises:
            PipelineConfigError: Before any item is pulled, when the
                configuration is invalid.
        """
        cfg = self.config
        cfg.validate()
        self.stats = stats = RunStatistics(clock=self._clock)
        self._source_exhausted = False
        self._claims = {}
        ctx = ProcessContext(cancel_event=self._stop)
        task = _ItemTask(self.processor, skip_existing=cfg.skip_existing, ctx=ctx)

        log.debug(
            "Starting run batch_size=%d max_workers=%d executor=%s skip_existing=%s pause=%.3fs",
            cfg.batch_size,
            cfg.max_workers,
            cfg.executor_kind,
            cfg.skip_existing,
            cfg.inter_batch_pause,
        )
        try:
            items = self._open_source(source)
            while not self._stop.is_set():
                batch = self._pull_batch(items)
                if not batch:
                    break
                self._dispatch(batch, task)
                stats.batches += 1
                self._notify("on_progress")
                if self._source_exhausted or self._stop.is_set():
                    break
                if cfg.inter_batch_pause > 0:
                    self._sleep(cfg.inter_batch_pause)
        finally:
            stats.cancelled = self._stop.is_set()
            stats.finish()
            self._notify("on_summary")
        return stats


def run_pipeline(
    source: ItemSource | Iterable[WorkItem],
    processor: ItemProcessor,
    config: PipelineConfig | None = None,
    *,
    reporter: Reporter | None = None,
    error_log: ErrorLogSink | NullErrorLog | None = None,
) -> RunStatistics:
    """Convenience wrapper: build a :class:`BatchScheduler` and run it once."""
    scheduler = BatchScheduler(processor, config=config, reporter=reporter, error_log=error_log)
    return scheduler.run(source)


__all__ = ["BatchScheduler", "process_item", "run_pipeline", "describe_error"]
