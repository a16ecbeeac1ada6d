# log.py
# SPDX-License-Identifier: MIT
"""Logging setup for batchpipe runs.

Every module logs through a child of the ``batchpipe`` logger, which carries a
NullHandler until a caller opts in. The CLI does so via
:func:`configure_logging`, which sends progress lines and the run summary to a
console stream and, optionally, to a run log file next to the error log.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path

from .errors import PipelineConfigError

__all__ = [
    "PACKAGE_LOGGER_NAME",
    "DEFAULT_FORMAT",
    "get_logger",
    "configure_logging",
    "temp_level",
]

PACKAGE_LOGGER_NAME = "batchpipe"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


def _coerce_level(level: int | str) -> int:
    """Accept ``"debug"``, ``"WARNING"``, ``"15"`` or an int."""
    if isinstance(level, int):
        return level
    text = str(level).strip()
    if text.isdigit():
        return int(text)
    value = logging.getLevelName(text.upper())
    if not isinstance(value, int):
        raise PipelineConfigError(f"Unknown log level: {level!r}")
    return value


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``name``'s logger, or the package logger when omitted."""
    return logging.getLogger(name or PACKAGE_LOGGER_NAME)


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_batchpipe_owned", False)]


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream=None,
    fmt: str | None = None,
    datefmt: str | None = None,
    propagate: bool | None = None,
    logger_name: str = PACKAGE_LOGGER_NAME,
    log_file: str | os.PathLike[str] | None = None,
) -> logging.Logger:
    """Route batchpipe log records to a console stream and an optional file.

    Calling this again replaces the handlers installed by an earlier call, so
    the CLI and tests can reconfigure freely without stacking duplicates.

    Args:
        level (int | str): Level or level name for the configured logger.
        stream (IO[str] | None): Console stream; defaults to sys.stderr.
        fmt (str | None): Record format; :data:`DEFAULT_FORMAT` when omitted.
        datefmt (str | None): Timestamp format.
        propagate (bool | None): Let records reach ancestor loggers. None
            keeps propagation on so pytest's caplog still sees records.
        logger_name (str): Logger to configure.
        log_file (str | os.PathLike | None): Also append records to this
            file; parent directories are created.

    Returns:
        logging.Logger: The configured logger.

    Raises:
        PipelineConfigError: If ``level`` names no known level.
    """
    logger = get_logger(logger_name)
    logger.setLevel(_coerce_level(level))
    logger.propagate = True if propagate is None else bool(propagate)

    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()

    formatter = logging.Formatter(fmt=fmt or DEFAULT_FORMAT, datefmt=datefmt)
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8", errors="backslashreplace"))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._batchpipe_owned = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


@contextmanager
def temp_level(level: int | str, name: str | None = None):
    """Run a ``with`` block with ``name``'s logger at ``level``."""
    logger = get_logger(name)
    old = logger.level
    logger.setLevel(_coerce_level(level))
    try:
        yield logger
    finally:
        logger.setLevel(old)
