# config.py
# SPDX-License-Identifier: MIT
"""Configuration models and helpers for batchpipe runs.

This module defines declarative dataclasses for the pipeline scheduler, item
sources, the two built-in processors, HTTP, and logging, along with helpers
for serializing and loading configurations from JSON and TOML.
"""
from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Sequence as ABCSequence
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union, get_args, get_origin, get_type_hints

from .errors import PipelineConfigError
from .log import PACKAGE_LOGGER_NAME, configure_logging
from .safe_http import SafeHttpClient

DEFAULT_IMAGE_EXTS: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp")
DEFAULT_USER_AGENT = "batchpipe/0.1"

SOURCE_KINDS = {"local_dir", "url_list"}
TASK_KINDS = {"image_convert", "download"}


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class PipelineConfig:
    """
    Controls batching, concurrency, and idempotence for a run.

    concurrency = 0 → one worker per item in the batch (batch_size workers)
    executor_kind ∈ {"thread", "process"}
      - "thread": right for network transfers and for encoders that release
        the GIL (Pillow does for most codecs).
      - "process": isolates CPU-heavy encoders; processors and items must be
        picklable and cooperative cancellation is unavailable.

    Attributes:
        batch_size (int): Items per batch; must be >= 1.
        concurrency (int): Worker bound within a batch; 0 means batch_size.
        skip_existing (bool): Skip items whose output already exists.
        inter_batch_pause (float): Seconds to sleep between batches.
        error_log_path (str | None): Append-only failure log; None disables.
        executor_kind (str): "thread" or "process".
        fail_on_errors (bool): Report a non-zero exit status when any item
            failed.
    """
    batch_size: int = 50
    concurrency: int = 0
    skip_existing: bool = True
    inter_batch_pause: float = 0.05
    error_log_path: Optional[str] = None
    executor_kind: str = "thread"
    fail_on_errors: bool = False

    @property
    def max_workers(self) -> int:
        return self.concurrency or self.batch_size

    def validate(self) -> None:
        """Raise PipelineConfigError for values that cannot drive a run."""
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise PipelineConfigError(f"pipeline.batch_size must be an integer; got {self.batch_size!r}.")
        if self.batch_size < 1:
            raise PipelineConfigError(f"pipeline.batch_size must be >= 1; got {self.batch_size}.")
        if self.concurrency < 0:
            raise PipelineConfigError(f"pipeline.concurrency must be >= 0; got {self.concurrency}.")
        if self.inter_batch_pause < 0:
            raise PipelineConfigError(
                f"pipeline.inter_batch_pause must be >= 0; got {self.inter_batch_pause}."
            )
        kind = (self.executor_kind or "thread").strip().lower()
        if kind not in {"thread", "process"}:
            raise PipelineConfigError(
                f"pipeline.executor_kind must be 'thread' or 'process'; got {self.executor_kind!r}."
            )
        self.executor_kind = kind


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class LocalDirSourceConfig:
    """Traversal options for local directory sources.

    Attributes:
        include_exts (tuple[str, ...] | None): Recognized file extensions
            (case-insensitive). None accepts every file.
        skip_hidden (bool): Skip dotfiles and dot-directories.
        skip_junk_dirs (bool): Skip well-known VCS/build/cache directories.
        follow_symlinks (bool): Traverse symbolic links (cycles are pruned).
    """
    include_exts: Optional[Tuple[str, ...]] = DEFAULT_IMAGE_EXTS
    skip_hidden: bool = True
    skip_junk_dirs: bool = True
    follow_symlinks: bool = False


@dataclass(slots=True)
class SourceConfig:
    """Declarative description of the item source for a run.

    Attributes:
        kind (str): ``"local_dir"`` or ``"url_list"``.
        root (str | None): Input directory for ``local_dir``.
        local (LocalDirSourceConfig): Traversal options for ``local_dir``.
        urls_file (str | None): Text or JSON file listing URLs for
            ``url_list``.
        urls (tuple[str, ...]): Inline URLs for ``url_list``.
        json_field (str | None): When ``urls_file`` is JSON, collect string
            values stored under keys with this name at any depth.
        dedupe (bool): Drop repeated URLs.
    """
    kind: str = "local_dir"
    root: Optional[str] = None
    local: LocalDirSourceConfig = field(default_factory=LocalDirSourceConfig)
    urls_file: Optional[str] = None
    urls: Tuple[str, ...] = ()
    json_field: Optional[str] = None
    dedupe: bool = True


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class TaskConfig:
    """Selects the processor and its output root."""
    kind: str = "image_convert"
    output_dir: Optional[str] = None


@dataclass(slots=True)
class ImageConvertConfig:
    """Encoder settings for the image converter.

    Attributes:
        format (str): Target format: ``avif``, ``webp``, ``jpeg``, or ``png``.
        quality (int): Lossy quality, 1-100.
        effort (int): Compression effort, 0 (fastest) to 9 (smallest).
        strip_metadata (bool): Drop EXIF/ICC data from the output.
    """
    format: str = "avif"
    quality: int = 70
    effort: int = 4
    strip_metadata: bool = False


@dataclass(slots=True)
class DownloadConfig:
    """Transfer settings for the URL downloader.

    Attributes:
        timeout (float): Per-request timeout in seconds.
        max_retries (int): Retries for connection-level failures.
        max_bytes (int): Hard cap on bytes written per URL.
        user_agent (str): User-Agent header value.
        shard_chars (int): Leading file-name characters used as the shard
            directory; 0 writes straight into the output root.
    """
    timeout: float = 60.0
    max_retries: int = 2
    max_bytes: int = 200 * 1024 * 1024
    user_agent: str = DEFAULT_USER_AGENT
    shard_chars: int = 2


@dataclass(slots=True)
class HttpConfig:
    """HTTP client settings used by the downloader.

    ``client`` can hold a pre-built SafeHttpClient instance; when set it is
    reused by :meth:`build_client` and never serialized.
    """
    timeout: float = 60.0
    max_redirects: int = 5
    allowed_redirect_suffixes: Tuple[str, ...] = ()
    client: Optional[SafeHttpClient] = None

    def build_client(self) -> SafeHttpClient:
        """Construct (or reuse) the SafeHttpClient for this config."""
        if self.client is not None:
            return self.client
        client = SafeHttpClient(
            timeout=self.timeout,
            max_redirects=self.max_redirects,
            allowed_redirect_suffixes=self.allowed_redirect_suffixes,
        )
        self.client = client
        return client


@dataclass(slots=True)
class LoggingConfig:
    """Controls the package logger; set propagate=True/logger_name to
    integrate with host apps, and ``file`` to keep a run log.
    """
    level: int | str = "INFO"
    propagate: bool = False
    fmt: Optional[str] = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    logger_name: str = PACKAGE_LOGGER_NAME
    file: Optional[str] = None

    def apply(self) -> None:
        """Apply this logging configuration to the package logger."""
        configure_logging(
            level=self.level,
            propagate=self.propagate,
            fmt=self.fmt,
            logger_name=self.logger_name or PACKAGE_LOGGER_NAME,
            log_file=self.file,
        )


# ---------------------------------------------------------------------------
# Master config
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(slots=True)
class BatchpipeConfig:
    """Declarative description of a batchpipe run.

    Only configuration knobs live here. Sources, processors, HTTP clients and
    executors are built from it by :mod:`batchpipe.cli.runner`.
    """
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    task: TaskConfig = field(default_factory=TaskConfig)
    images: ImageConvertConfig = field(default_factory=ImageConvertConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Check the configuration for internal consistency.

        Raises:
            PipelineConfigError: For any value that would make the run fail
                before its first item.
        """
        self.pipeline.validate()
        src = self.source
        if src.kind not in SOURCE_KINDS:
            raise PipelineConfigError(
                f"source.kind must be one of {sorted(SOURCE_KINDS)}; got {src.kind!r}."
            )
        if src.kind == "local_dir":
            if not src.root:
                raise PipelineConfigError("source.root is required for local_dir sources.")
            if not Path(src.root).is_dir():
                raise PipelineConfigError(f"source.root is not a directory: {src.root}")
        elif not (src.urls_file or src.urls):
            raise PipelineConfigError("url_list sources need source.urls_file or source.urls.")
        elif src.urls_file and not Path(src.urls_file).is_file():
            raise PipelineConfigError(f"source.urls_file not found: {src.urls_file}")

        if self.task.kind not in TASK_KINDS:
            raise PipelineConfigError(
                f"task.kind must be one of {sorted(TASK_KINDS)}; got {self.task.kind!r}."
            )
        if not self.task.output_dir:
            raise PipelineConfigError("task.output_dir is required.")
        _check_output_dir(Path(self.task.output_dir))
        if src.kind == "local_dir" and self.task.kind == "image_convert":
            try:
                same = Path(src.root).resolve() == Path(self.task.output_dir).resolve()  # type: ignore[arg-type]
            except OSError:
                same = False
            if same:
                raise PipelineConfigError("task.output_dir must differ from source.root.")

        if not 1 <= int(self.images.quality) <= 100:
            raise PipelineConfigError(f"images.quality must be within 1..100; got {self.images.quality}.")
        if not 0 <= int(self.images.effort) <= 9:
            raise PipelineConfigError(f"images.effort must be within 0..9; got {self.images.effort}.")
        if self.download.max_retries < 0:
            raise PipelineConfigError("download.max_retries must be >= 0.")
        if self.download.max_bytes <= 0:
            raise PipelineConfigError("download.max_bytes must be positive.")

    # -------------------------
    # Serialization helpers
    # -------------------------
    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation, skipping runtime objects."""
        return _dataclass_to_dict(self)

    def to_json(self, path: Path | str, *, indent: int = 2) -> str:
        """Serialize the configuration to JSON and write it to disk.

        Args:
            path (Path | str): Target file path.
            indent (int): Indentation level passed to ``json.dumps``.

        Returns:
            str: String path to the written file.
        """
        target = Path(path)
        target.write_text(json.dumps(self.to_dict(), indent=indent, sort_keys=True), encoding="utf-8")
        return str(target)

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any]) -> T:
        """Instantiate a BatchpipeConfig from a mapping."""
        return _dataclass_from_dict(cls, data)

    @classmethod
    def from_json(cls: Type[T], path: Path | str) -> T:
        """Load a configuration from a JSON file."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(payload)

    @classmethod
    def from_toml(cls: Type[T], path: Path | str) -> T:
        """
        Load a BatchpipeConfig from a TOML file.

        The TOML layout mirrors the dataclass: top-level tables [pipeline],
        [source], [source.local], [task], [images], [download], [http] and
        [logging].
        """
        data = tomllib.loads(Path(path).read_bytes().decode("utf-8"))
        if not isinstance(data, Mapping):
            raise TypeError(f"Top-level TOML document must be a mapping; got {type(data).__name__}.")
        return cls.from_dict(data)


def load_config_from_path(path: str | Path) -> BatchpipeConfig:
    """Load a BatchpipeConfig from a JSON or TOML file.

    Args:
        path (Path | str): Path to a ``.toml`` or ``.json`` config file.

    Returns:
        BatchpipeConfig: Parsed configuration instance.

    Raises:
        ValueError: If the file extension is not ``.toml`` or ``.json``.
    """
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".toml":
        return BatchpipeConfig.from_toml(p)
    if suffix == ".json":
        return BatchpipeConfig.from_json(p)
    raise ValueError(f"Unsupported config extension {p.suffix!r}; expected .toml or .json.")


def _check_output_dir(path: Path) -> None:
    """Check that ``path`` is, or could be created as, a writable directory.

    Nothing is created here; :func:`batchpipe.cli.runner.run` makes the
    directory once validation has passed.
    """
    existing = path
    while not existing.exists() and existing.parent != existing:
        existing = existing.parent
    if not existing.is_dir():
        raise PipelineConfigError(f"output directory is blocked by a file: {existing}")
    if not os.access(existing, os.W_OK | os.X_OK):
        raise PipelineConfigError(f"output directory is not writable: {existing}")


_SKIP_FIELDS: Dict[Type[Any], set[str]] = {
    HttpConfig: {"client"},
}


def _dataclass_to_dict(obj: Any) -> Dict[str, Any]:
    """Serialize dataclasses to JSON-friendly dicts, skipping None and runtime fields."""
    result: Dict[str, Any] = {}
    skip = _SKIP_FIELDS.get(type(obj), set())
    for f in fields(obj):
        if f.name in skip:
            continue
        value = getattr(obj, f.name)
        if value is None:
            continue
        serialized = _serialize_value(value)
        if serialized is not None:
            result[f.name] = serialized
    return result


def _serialize_value(value: Any) -> Any:
    """Best-effort JSON-friendly coercion; drops values that cannot be serialized."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, frozenset)):
        items = [_serialize_value(v) for v in value]
        try:
            return sorted(items)
        except TypeError:
            return items
    if isinstance(value, (list, tuple)):
        return [_serialize_value(v) for v in value]
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            serialized = _serialize_value(v)
            if serialized is not None:
                out[str(k)] = serialized
        return out
    if is_dataclass(value):
        return _dataclass_to_dict(value)
    return None


def _dataclass_from_dict(cls: Type[T], data: Mapping[str, Any] | None) -> T:
    """Instantiate a dataclass of type `cls` from a mapping.

    Unknown keys raise so that typos in config files surface immediately.
    """
    if data is None:
        return cls()  # type: ignore[call-arg]
    type_hints = get_type_hints(cls)
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise PipelineConfigError(f"Unknown {cls.__name__} option(s): {', '.join(unknown)}")

    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        field_type = type_hints.get(f.name, f.type)
        try:
            kwargs[f.name] = _coerce_value(field_type, data[f.name])
        except PipelineConfigError:
            raise
        except (TypeError, ValueError) as exc:
            raise PipelineConfigError(f"Invalid {cls.__name__}.{f.name}: {exc}") from exc
    return cls(**kwargs)  # type: ignore[arg-type]


def _coerce_value(expected_type: Any, value: Any) -> Any:
    """Coerce `value` into the shape implied by `expected_type`."""
    base_type, _ = _strip_optional(expected_type)
    if value is None:
        return None
    if is_dataclass_type(base_type):
        return _dataclass_from_dict(base_type, value)
    origin = get_origin(base_type)
    if origin in (list, tuple, ABCSequence):
        args = get_args(base_type)
        inner = args[0] if args else Any
        items = [_coerce_value(inner, v) for v in value]
        return tuple(items) if origin is tuple else list(items)
    if origin is dict:
        key_type, val_type = get_args(base_type) if get_args(base_type) else (Any, Any)
        return {_coerce_value(key_type, k): _coerce_value(val_type, v) for k, v in value.items()}
    if base_type is Path:
        return Path(value)
    if base_type in (int, float) and isinstance(value, bool):
        raise TypeError(f"expected {base_type.__name__}, got boolean {value!r}")
    if base_type is bool and not isinstance(value, bool):
        raise TypeError(f"expected true or false, got {value!r}")
    if base_type in {str, int, float, bool}:
        return base_type(value)
    return value


def _strip_optional(typ: Any) -> Tuple[Any, bool]:
    """Strip Optional from a type annotation."""
    origin = get_origin(typ)
    if origin is Union:
        args = [arg for arg in get_args(typ) if arg is not type(None)]
        if len(args) == 1:
            base, _ = _strip_optional(args[0])
            return base, True
    return typ, False


def is_dataclass_type(typ: Any) -> bool:
    """Return True if `typ` is a dataclass type (not an instance)."""
    return isinstance(typ, type) and is_dataclass(typ)


__all__ = [
    "BatchpipeConfig",
    "PipelineConfig",
    "SourceConfig",
    "LocalDirSourceConfig",
    "TaskConfig",
    "ImageConvertConfig",
    "DownloadConfig",
    "HttpConfig",
    "LoggingConfig",
    "DEFAULT_IMAGE_EXTS",
    "load_config_from_path",
]
