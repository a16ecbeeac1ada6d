# errors.py
# SPDX-License-Identifier: MIT
"""Exception types raised by batchpipe."""

from __future__ import annotations

__all__ = [
    "BatchpipeError",
    "PipelineConfigError",
    "ConversionError",
    "DownloadError",
    "Cancelled",
    "TargetConflict",
]


class BatchpipeError(RuntimeError):
    """Base class for errors raised by batchpipe."""


class PipelineConfigError(BatchpipeError, ValueError):
    """Raised before any work starts when the run configuration is unusable."""


class ConversionError(BatchpipeError):
    """Raised by the image converter when an input cannot be re-encoded."""


class DownloadError(BatchpipeError):
    """Raised by the downloader when a URL cannot be fetched and persisted."""


class Cancelled(BatchpipeError):
    """Raised inside a processor when the run was asked to stop."""


class TargetConflict(BatchpipeError):
    """Raised when two items of one run map to the same output location."""
