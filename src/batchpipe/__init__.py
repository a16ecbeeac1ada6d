# __init__.py
# SPDX-License-Identifier: MIT
"""
Top-level package exports for :mod:`batchpipe`.

Public surface and stability
----------------------------
batchpipe runs one transformation over a large collection of inputs in
fixed-size batches, skipping inputs whose output already exists and recording
failures without stopping the run. The symbols listed in :data:`PRIMARY_API`
are the recommended public surface and are exported via :data:`__all__`. In
general, callers should:

- Build a configuration via :class:`BatchpipeConfig` or load one from
  TOML/JSON with :func:`load_config_from_path`, then call :func:`run`.
- Or use one of the task helpers, :func:`convert_images` and
  :func:`download_urls`.
- Read the returned :class:`RunStatistics`.

Custom tasks
------------
Any object with ``target_for(item)`` and ``process(item, target, ctx)`` can be
handed to :class:`BatchScheduler` together with any iterable of
:class:`WorkItem` (or an object with ``iter_items()``).

Advanced / expert surface
-------------------------
Anything *not* listed in :data:`PRIMARY_API` should be treated as an expert
surface and may change between releases.

Examples:
    Convert a directory of photos::

        >>> from batchpipe import convert_images
        >>> stats = convert_images("photos", "photos-avif", batch_size=50)

    Config-driven run::

        >>> from batchpipe import load_config_from_path, run
        >>> stats = run(load_config_from_path("batchpipe.toml"))
"""


from __future__ import annotations

# ---------------------------------------------------------------------------
# Package version
# ---------------------------------------------------------------------------
try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("batchpipe")
except Exception:  # PackageNotFoundError or runtime env oddities
    __version__ = "0.0.0+unknown"


# ---------------------------------------------------------------------------
# Primary public API (stable; exported via __all__)
# ---------------------------------------------------------------------------
from .cli.runner import (
    convert_images,
    download_urls,
    make_download_config,
    make_image_config,
    run,
)
from .core.config import BatchpipeConfig, load_config_from_path
from .core.pipeline import BatchScheduler, process_item
from .core.stats import RunStatistics

# ---------------------------------------------------------------------------
# Advanced / expert API (imported for convenience; not exported via __all__)
# ---------------------------------------------------------------------------
from .core.config import (
    DownloadConfig,
    HttpConfig,
    ImageConvertConfig,
    LocalDirSourceConfig,
    LoggingConfig,
    PipelineConfig,
    SourceConfig,
    TaskConfig,
)
from .core.errors import (
    BatchpipeError,
    Cancelled,
    ConversionError,
    DownloadError,
    PipelineConfigError,
)
from .core.interfaces import (
    ItemProcessor,
    ItemSource,
    Outcome,
    OutcomeStatus,
    ProcessContext,
    Reporter,
    WorkItem,
)
from .core.log import configure_logging, get_logger, temp_level
from .core.pipeline import run_pipeline
from .core.safe_http import SafeHttpClient
from .core.stats import LoggingReporter, format_progress, format_summary
from .processors.downloads import Downloader
from .processors.images import ImageConverter
from .sinks.errorlog import ErrorLogEntry, ErrorLogSink, NullErrorLog
from .sources.fs import DEFAULT_SKIP_DIRS, DEFAULT_SKIP_FILES, LocalDirSource, iter_tree_files
from .sources.urls import UrlListSource

# ---------------------------------------------------------------------------
# Stable export list
# ---------------------------------------------------------------------------
PRIMARY_API = [
    "__version__",
    "BatchpipeConfig",
    "load_config_from_path",
    "run",
    "convert_images",
    "download_urls",
    "make_image_config",
    "make_download_config",
    "BatchScheduler",
    "process_item",
    "RunStatistics",
]

__all__ = list(PRIMARY_API)
