# interfaces.py
# SPDX-License-Identifier: MIT
"""Shared data types and protocols for sources, processors, and reporters."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Iterable,
    Literal,
    Optional,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .stats import RunStatistics


# -----------------------------------------------------------------------------
# Shared data types
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class WorkItem:
    """
    One unit of work emitted by an item source.

    Attributes:
        key (str): Stable identifier for the input, e.g. an absolute file
            path or a URL. Used in logs and error-log lines.
        rel_path (str): POSIX-style path relative to the source root (for
            files) or the derived file name (for URLs). Processors use it to
            compute the output location.
        kind (str): ``"file"`` or ``"url"``.
    """
    key: str
    rel_path: str
    kind: Literal["file", "url"] = "file"


class OutcomeStatus(str, Enum):
    """Terminal states of a single processing attempt."""

    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Outcome:
    """
    Result of processing one WorkItem.

    Attributes:
        item (WorkItem): The item this outcome belongs to.
        status (OutcomeStatus): Processed, skipped, or failed.
        reason (str | None): Failure description; only set for FAILED.
        target (str | None): Output location, when it could be resolved.
    """
    item: WorkItem
    status: OutcomeStatus
    reason: Optional[str] = None
    target: Optional[str] = None

    @classmethod
    def processed(cls, item: WorkItem, target: Path | str) -> Outcome:
        return cls(item=item, status=OutcomeStatus.PROCESSED, target=str(target))

    @classmethod
    def skipped(cls, item: WorkItem, target: Path | str) -> Outcome:
        return cls(item=item, status=OutcomeStatus.SKIPPED, target=str(target))

    @classmethod
    def failed(cls, item: WorkItem, reason: str, target: Path | str | None = None) -> Outcome:
        return cls(
            item=item,
            status=OutcomeStatus.FAILED,
            reason=reason,
            target=str(target) if target is not None else None,
        )

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


@dataclass
class ProcessContext:
    """
    Per-run context handed to processors with every item.

    Attributes:
        cancel_event (threading.Event | None): Set when the run has been asked
            to stop. Long-running processors should poll :attr:`cancelled`
            and abort early. None under process pools, where events cannot be
            shared.
    """
    cancel_event: Optional[threading.Event] = field(default=None)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def __getstate__(self):
        # Events hold locks and cannot cross a process boundary.
        return {"cancel_event": None}

    def __setstate__(self, state) -> None:
        self.cancel_event = None


# -----------------------------------------------------------------------------
# Extension-point protocols
# -----------------------------------------------------------------------------

@runtime_checkable
class ItemSource(Protocol):
    """
    Produces WorkItems lazily.

    Each call to :meth:`iter_items` starts a fresh enumeration; a single
    iterator is not restartable once partially consumed.
    """

    def iter_items(self) -> Iterable[WorkItem]:
        """
        Yield WorkItems in enumeration order.

        Yields:
            WorkItem: Descriptor of the next unit of work.
        """
        ...


@runtime_checkable
class ItemProcessor(Protocol):
    """
    Transforms one WorkItem into a persisted output.

    Implementations must map items to output locations deterministically so
    the pipeline can skip items whose output already exists.
    """

    def target_for(self, item: WorkItem) -> Path:
        """
        Return the output location for an item.

        Args:
            item (WorkItem): Item to map.

        Returns:
            Path: Where the processed output lives.
        """
        ...

    def process(self, item: WorkItem, target: Path, ctx: ProcessContext) -> None:
        """
        Produce the output for ``item`` at ``target``.

        The parent directory of ``target`` already exists when this is
        called. Failures are reported by raising.

        Args:
            item (WorkItem): Item to transform.
            target (Path): Output location from :meth:`target_for`.
            ctx (ProcessContext): Run-level context (cancellation).
        """
        ...


@runtime_checkable
class Reporter(Protocol):
    """Receives run statistics at batch boundaries and at the end of a run."""

    def on_progress(self, stats: "RunStatistics") -> None:
        """Called once after every completed batch."""
        ...

    def on_summary(self, stats: "RunStatistics") -> None:
        """Called once when the run finishes (including cancelled runs)."""
        ...


__all__ = [
    "WorkItem",
    "OutcomeStatus",
    "Outcome",
    "ProcessContext",
    "ItemSource",
    "ItemProcessor",
    "Reporter",
]
