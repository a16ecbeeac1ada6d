# files.py
# SPDX-License-Identifier: MIT
"""Atomic output files for processors."""
from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import BinaryIO, Self


class AtomicFileSink:
    """Write a file through a temporary sibling and move it into place.

    The final path only ever holds complete output: data goes to a hidden
    ``.<name>.<token>.tmp`` file in the same directory, and :meth:`commit`
    renames it over the target with :func:`os.replace`. Leaving the ``with``
    block through an exception discards the temporary file instead.

    Attributes:
        path (Path): Final output location.
        tmp_path (Path): Temporary file receiving the data.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self.tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex[:12]}.tmp")
        self._fp: BinaryIO | None = None
        self.bytes_written = 0

    def open(self) -> BinaryIO:
        """Create the temporary file and return its binary handle."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fp = open(self.tmp_path, "wb")
        return self._fp

    @property
    def stream(self) -> BinaryIO:
        assert self._fp is not None, "sink is not open"
        return self._fp

    def write(self, data: bytes) -> int:
        n = self.stream.write(data)
        self.bytes_written += n
        return n

    def commit(self) -> Path:
        """Flush, close, and move the temporary file onto :attr:`path`."""
        try:
            if self._fp is not None:
                try:
                    self._fp.flush()
                    os.fsync(self._fp.fileno())
                finally:
                    self._fp.close()
                    self._fp = None
            os.replace(self.tmp_path, self.path)
        except OSError:
            self.abort()
            raise
        return self.path

    def abort(self) -> None:
        """Close and delete the temporary file; the target is left untouched."""
        if self._fp is not None:
            self._fp.close()
            self._fp = None
        try:
            self.tmp_path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.abort()


__all__ = ["AtomicFileSink"]
