# stats.py
# SPDX-License-Identifier: MIT
"""Run statistics and the default progress reporter."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .interfaces import Outcome, OutcomeStatus
from .log import get_logger

log = get_logger(__name__)


# Convention: hot-path dataclasses use slots=True to reduce per-instance overhead.
@dataclass(slots=True)
class RunStatistics:
    """Counters for one pipeline run.

    ``total_scanned`` counts items pulled from the source; the other three
    counters are fed from outcomes. Once a run has drained,
    ``total_scanned == processed + skipped + errors``.

    The scheduler is the only writer and updates counters from its own
    thread, so no locking is involved.
    """

    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total_scanned: int = 0
    batches: int = 0
    cancelled: bool = False
    clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)
    started_at: float = field(default=0.0)
    finished_at: float | None = None

    def __post_init__(self) -> None:
        if not self.started_at:
            self.started_at = self.clock()

    @property
    def completed(self) -> int:
        """Items that reached a terminal outcome."""
        return self.processed + self.skipped + self.errors

    def note_scanned(self, count: int = 1) -> None:
        self.total_scanned += count

    def record(self, outcome: Outcome) -> None:
        """Fold one outcome into the counters."""
        status = outcome.status
        if status is OutcomeStatus.PROCESSED:
            self.processed += 1
        elif status is OutcomeStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = self.clock()

    def elapsed(self, now: float | None = None) -> float:
        """Seconds since the run started (frozen once :meth:`finish` ran)."""
        if now is None:
            now = self.finished_at if self.finished_at is not None else self.clock()
        return max(0.0, now - self.started_at)

    def throughput(self, now: float | None = None) -> float:
        """Processed items per second; 0.0 when nothing ran or no time passed."""
        elapsed = self.elapsed(now)
        if elapsed <= 0 or self.processed <= 0:
            return 0.0
        return self.processed / elapsed

    def as_dict(self) -> dict[str, object]:
        """Return a stable dict shape for reporting and the CLI."""
        return {
            "processed": int(self.processed),
            "skipped": int(self.skipped),
            "errors": int(self.errors),
            "total_scanned": int(self.total_scanned),
            "batches": int(self.batches),
            "elapsed_seconds": round(self.elapsed(), 3),
            "throughput": round(self.throughput(), 3),
            "cancelled": bool(self.cancelled),
        }


def format_progress(stats: RunStatistics) -> str:
    """Single-line progress text emitted after each batch."""
    return (
        f"progress: scanned={stats.total_scanned} processed={stats.processed} "
        f"skipped={stats.skipped} errors={stats.errors} "
        f"rate={stats.throughput():.2f} items/s"
    )


def format_summary(stats: RunStatistics) -> str:
    """Multi-line summary block emitted once at the end of a run."""
    title = "Run cancelled" if stats.cancelled else "Run complete"
    return (
        f"{title}\n"
        f"  elapsed: {stats.elapsed():.2f}s\n"
        f"  scanned: {stats.total_scanned}\n"
        f"  processed: {stats.processed}\n"
        f"  skipped: {stats.skipped}\n"
        f"  errors: {stats.errors}\n"
        f"  average rate: {stats.throughput():.2f} items/s"
    )


class LoggingReporter:
    """Reporter that writes progress and summary through the package logger."""

    def __init__(self, logger=None) -> None:
        self.log = logger or log

    def on_progress(self, stats: RunStatistics) -> None:
        self.log.info("%s", format_progress(stats))

    def on_summary(self, stats: RunStatistics) -> None:
        level = self.log.warning if (stats.errors or stats.cancelled) else self.log.info
        level("%s", format_summary(stats))


__all__ = ["RunStatistics", "LoggingReporter", "format_progress", "format_summary"]
