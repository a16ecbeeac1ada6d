# errorlog.py
# SPDX-License-Identifier: MIT
"""Append-only error log for per-item failures."""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from ..core.interfaces import Outcome
from ..core.log import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ErrorLogEntry:
    """One failed item as recorded in the error log."""

    item_id: str
    description: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> ErrorLogEntry:
        return cls(item_id=outcome.item.key, description=outcome.reason or "unknown error")

    def to_line(self) -> str:
        # Newlines in exception text would break the one-line-per-failure format.
        desc = " ".join(self.description.splitlines())
        return f"ERROR: {self.item_id} - {desc}\n"


class ErrorLogSink:
    """Durable, append-only record of failures.

    Every :meth:`append` opens the file in append mode, writes one line, and
    fsyncs before returning, so entries survive a crash that happens right
    after the failure. Writes are serialized with a lock. The file is never
    truncated or rotated here.

    Failing to write the log never aborts the run: the problem is reported
    through the package logger and counted in :attr:`write_failures`.
    """

    def __init__(self, path: str | os.PathLike[str], *, fsync: bool = True) -> None:
        self.path = Path(path)
        self.fsync = fsync
        self.written = 0
        self.write_failures = 0
        self._lock = threading.Lock()

    def append(self, entry: ErrorLogEntry) -> bool:
        """Append one entry; return False when the write failed."""
        with self._lock:
            try:
                line = entry.to_line()
                self.path.parent.mkdir(parents=True, exist_ok=True)
                # Undecodable file names arrive as surrogate escapes.
                with open(self.path, "a", encoding="utf-8", errors="backslashreplace", newline="") as fp:
                    fp.write(line)
                    fp.flush()
                    if self.fsync:
                        os.fsync(fp.fileno())
            except (OSError, ValueError) as exc:
                self.write_failures += 1
                log.warning(
                    "Could not write error log %s for %r: %s",
                    self.path,
                    entry.item_id,
                    exc,
                )
                return False
            self.written += 1
            return True

    def __repr__(self) -> str:
        return f"ErrorLogSink({str(self.path)!r})"


class NullErrorLog:
    """Stand-in used when no error log path is configured."""

    written = 0
    write_failures = 0

    def append(self, entry: ErrorLogEntry) -> bool:
        return True


__all__ = ["ErrorLogEntry", "ErrorLogSink", "NullErrorLog"]
