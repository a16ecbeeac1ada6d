# runner.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import copy
import os
import signal
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..core.config import BatchpipeConfig, LocalDirSourceConfig, SourceConfig, TaskConfig
from ..core.errors import PipelineConfigError
from ..core.interfaces import ItemProcessor, ItemSource, Reporter
from ..core.log import get_logger
from ..core.pipeline import BatchScheduler
from ..core.stats import RunStatistics
from ..processors.downloads import Downloader
from ..processors.images import ImageConverter
from ..sources.fs import LocalDirSource
from ..sources.urls import UrlListSource

log = get_logger(__name__)


# ---------- Factories ----------
def build_source(cfg: BatchpipeConfig) -> ItemSource:
    """Construct the item source described by ``cfg.source``."""
    src = cfg.source
    if src.kind == "local_dir":
        if not src.root:
            raise PipelineConfigError("source.root is required for local_dir sources.")
        return LocalDirSource(src.root, config=src.local)
    if src.kind == "url_list":
        return UrlListSource(
            list(src.urls) if src.urls else None,
            path=src.urls_file,
            json_field=src.json_field,
            dedupe=src.dedupe,
        )
    raise PipelineConfigError(f"Unknown source kind: {src.kind!r}")


def build_processor(cfg: BatchpipeConfig) -> ItemProcessor:
    """Construct the processor described by ``cfg.task``."""
    task = cfg.task
    if not task.output_dir:
        raise PipelineConfigError("task.output_dir is required.")
    if task.kind == "image_convert":
        return ImageConverter(task.output_dir, cfg.images)
    if task.kind == "download":
        return Downloader(task.output_dir, cfg.download, client=cfg.http.build_client())
    raise PipelineConfigError(f"Unknown task kind: {task.kind!r}")


def build_scheduler(
    cfg: BatchpipeConfig,
    *,
    processor: ItemProcessor | None = None,
    reporter: Reporter | None = None,
) -> BatchScheduler:
    """Wire a BatchScheduler for ``cfg`` (processor and reporter may be injected)."""
    return BatchScheduler(
        processor if processor is not None else build_processor(cfg),
        config=cfg.pipeline,
        reporter=reporter,
    )


@contextmanager
def stop_on_sigint(scheduler: BatchScheduler) -> Iterator[None]:
    """Turn the first Ctrl-C into a graceful stop request.

    The current batch drains and the summary is still emitted. A second
    Ctrl-C raises KeyboardInterrupt as usual. Outside the main thread
    signal handlers cannot be installed and this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame) -> None:
        if scheduler.stop_requested:
            raise KeyboardInterrupt
        log.warning("Stop requested; finishing the current batch (Ctrl-C again to abort).")
        scheduler.request_stop()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


# ---------- One generic entry point ----------
def run(
    config: BatchpipeConfig,
    *,
    reporter: Reporter | None = None,
    handle_sigint: bool = True,
) -> RunStatistics:
    """Validate ``config``, build the pipeline, and run it to completion.

    Args:
        config (BatchpipeConfig): Declarative run description.
        reporter (Reporter | None): Progress/summary receiver; the logging
            reporter when omitted.
        handle_sigint (bool): Install the graceful Ctrl-C handler for the
            duration of the run.

    Returns:
        RunStatistics: Counters for the finished (or cancelled) run.

    Raises:
        PipelineConfigError: If the configuration is invalid.
    """
    config.validate()
    output_dir = Path(config.task.output_dir)  # type: ignore[arg-type]
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PipelineConfigError(f"cannot create output directory {output_dir}: {exc}") from exc
    source = build_source(config)
    scheduler = build_scheduler(config, reporter=reporter)
    log.info("Starting %s run: %r -> %s", config.task.kind, source, config.task.output_dir)
    if not handle_sigint:
        return scheduler.run(source)
    with stop_on_sigint(scheduler):
        return scheduler.run(source)


def _clone_base_config(base_config: BatchpipeConfig | None) -> BatchpipeConfig:
    """Deep-copy ``base_config`` so runs never mutate it.

    A pre-built HTTP client is shared rather than copied.
    """
    if base_config is None:
        return BatchpipeConfig()
    client = base_config.http.client
    memo = {id(client): client} if client is not None else {}
    return copy.deepcopy(base_config, memo)


def _apply_pipeline_overrides(cfg: BatchpipeConfig, overrides: dict[str, Any]) -> None:
    """Copy non-None keyword overrides onto ``cfg.pipeline``."""
    pipeline = replace(cfg.pipeline)
    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(pipeline, key):
            raise PipelineConfigError(f"Unknown pipeline option: {key}")
        setattr(pipeline, key, value)
    cfg.pipeline = pipeline


# ---------- Helpers for the two built-in tasks ----------
def make_image_config(
    input_dir: str | os.PathLike[str],
    output_dir: str | os.PathLike[str],
    *,
    base_config: BatchpipeConfig | None = None,
    include_exts: Sequence[str] | None = None,
) -> BatchpipeConfig:
    """Build a config for converting every image under ``input_dir``."""
    cfg = _clone_base_config(base_config)
    local = replace(cfg.source.local) if cfg.source.kind == "local_dir" else LocalDirSourceConfig()
    if include_exts:
        local.include_exts = tuple(include_exts)
    cfg.source = SourceConfig(kind="local_dir", root=str(Path(input_dir)), local=local)
    cfg.task = TaskConfig(kind="image_convert", output_dir=str(Path(output_dir)))
    return cfg


def make_download_config(
    urls: str | os.PathLike[str] | Sequence[str],
    output_dir: str | os.PathLike[str],
    *,
    base_config: BatchpipeConfig | None = None,
    json_field: str | None = None,
) -> BatchpipeConfig:
    """Build a config for downloading a URL list (file path or sequence)."""
    cfg = _clone_base_config(base_config)
    if isinstance(urls, (str, os.PathLike)):
        src = SourceConfig(kind="url_list", urls_file=str(urls), json_field=json_field)
    else:
        src = SourceConfig(kind="url_list", urls=tuple(urls), json_field=json_field)
    cfg.source = src
    cfg.task = TaskConfig(kind="download", output_dir=str(Path(output_dir)))
    return cfg


def convert_images(
    input_dir: str | os.PathLike[str],
    output_dir: str | os.PathLike[str],
    *,
    base_config: BatchpipeConfig | None = None,
    reporter: Reporter | None = None,
    **pipeline_overrides: Any,
) -> RunStatistics:
    """Convert images under ``input_dir`` into ``output_dir``.

    Keyword overrides (``batch_size``, ``concurrency``, ``skip_existing``,
    ...) are applied to the pipeline section of the config.
    """
    cfg = make_image_config(input_dir, output_dir, base_config=base_config)
    _apply_pipeline_overrides(cfg, pipeline_overrides)
    return run(cfg, reporter=reporter, handle_sigint=False)


def download_urls(
    urls: str | os.PathLike[str] | Sequence[str],
    output_dir: str | os.PathLike[str],
    *,
    json_field: str | None = None,
    base_config: BatchpipeConfig | None = None,
    reporter: Reporter | None = None,
    **pipeline_overrides: Any,
) -> RunStatistics:
    """Download every URL from ``urls`` into ``output_dir``."""
    cfg = make_download_config(urls, output_dir, base_config=base_config, json_field=json_field)
    _apply_pipeline_overrides(cfg, pipeline_overrides)
    return run(cfg, reporter=reporter, handle_sigint=False)


__all__ = [
    "build_source",
    "build_processor",
    "build_scheduler",
    "stop_on_sigint",
    "run",
    "make_image_config",
    "make_download_config",
    "convert_images",
    "download_urls",
]
