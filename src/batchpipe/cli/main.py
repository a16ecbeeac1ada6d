# main.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import argparse
import json
import sys
from typing import Optional, Sequence

from ..core.config import BatchpipeConfig, load_config_from_path
from ..core.errors import PipelineConfigError
from ..core.log import configure_logging
from ..core.stats import RunStatistics
from ..processors.images import OUTPUT_FORMATS
from .runner import make_download_config, make_image_config, run

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ITEM_ERRORS = 2
EXIT_CANCELLED = 130


def _add_pipeline_args(p: argparse.ArgumentParser) -> None:
    """Options shared by the ``convert`` and ``download`` commands."""
    p.add_argument("--batch-size", type=int, help="Items per batch (default 50).")
    p.add_argument("--concurrency", type=int, help="Workers per batch; 0 means one per item.")
    p.add_argument("--pause", type=float, help="Seconds to sleep between batches.")
    p.add_argument(
        "--executor",
        choices=["thread", "process"],
        help="Worker pool implementation.",
    )
    p.add_argument(
        "--no-skip-existing",
        action="store_true",
        help="Reprocess items whose output already exists.",
    )
    p.add_argument("--error-log", help="Append failed items to this file.")
    p.add_argument("--base-config", help="Optional base config TOML/JSON.")
    p.add_argument("--strict", action="store_true", help="Exit with status 2 when any item failed.")


def _build_parser() -> argparse.ArgumentParser:
    """Build the top-level batchpipe CLI argument parser.

    Returns:
        argparse.ArgumentParser: Configured argument parser for the CLI.
    """
    parser = argparse.ArgumentParser(prog="batchpipe", description="Batch task pipeline CLI")
    parser.add_argument(
        "--log-level",
        default=None,
        help=(
            "Logging level (e.g., DEBUG, INFO, WARNING). Defaults to INFO, "
            "or to the [logging] table of a config file."
        ),
    )
    parser.add_argument("--log-file", help="Also append log records to this file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_p = subparsers.add_parser("run", help="Run from a config file")
    run_p.add_argument("-c", "--config", required=True, help="Path to config file (TOML or JSON).")
    run_p.add_argument("--dry-run", action="store_true", help="Validate and print config, then exit.")
    run_p.add_argument("--strict", action="store_true", help="Exit with status 2 when any item failed.")

    conv_p = subparsers.add_parser("convert", help="Re-encode every image under a directory.")
    conv_p.add_argument("input_dir", help="Directory to scan for images.")
    conv_p.add_argument("output_dir", help="Directory that receives converted files.")
    conv_p.add_argument("--format", choices=sorted(OUTPUT_FORMATS), help="Output format (default avif).")
    conv_p.add_argument("--quality", type=int, help="Lossy quality 1-100 (default 70).")
    conv_p.add_argument("--effort", type=int, help="Compression effort 0-9 (default 4).")
    conv_p.add_argument("--strip-metadata", action="store_true", help="Drop EXIF and ICC data.")
    conv_p.add_argument(
        "--include-ext",
        action="append",
        dest="include_exts",
        help="Input extension to accept (repeatable; default jpg, jpeg, png, webp).",
    )
    _add_pipeline_args(conv_p)

    dl_p = subparsers.add_parser("download", help="Download every URL from a list.")
    dl_p.add_argument("urls", help="Text file (one URL per line) or JSON document.")
    dl_p.add_argument("output_dir", help="Directory that receives downloaded files.")
    dl_p.add_argument("--json-field", help="Collect URLs stored under this JSON key at any depth.")
    dl_p.add_argument("--retries", type=int, help="Retries for connection failures (default 2).")
    dl_p.add_argument("--timeout", type=float, help="Per-request timeout in seconds.")
    dl_p.add_argument("--max-bytes", type=int, help="Maximum size of a single download.")
    dl_p.add_argument("--shard-chars", type=int, help="Leading name characters used as sub-directory.")
    _add_pipeline_args(dl_p)

    return parser


def _apply_pipeline_args(cfg: BatchpipeConfig, args: argparse.Namespace) -> None:
    """Apply shared pipeline flags to ``cfg`` in place."""
    p = cfg.pipeline
    if args.batch_size is not None:
        p.batch_size = int(args.batch_size)
    if args.concurrency is not None:
        p.concurrency = int(args.concurrency)
    if args.pause is not None:
        p.inter_batch_pause = float(args.pause)
    if args.executor:
        p.executor_kind = args.executor
    if args.no_skip_existing:
        p.skip_existing = False
    if args.error_log:
        p.error_log_path = args.error_log


def _load_base_config(path: Optional[str]) -> Optional[BatchpipeConfig]:
    if not path:
        return None
    return load_config_from_path(path)


def _config_for_convert(args: argparse.Namespace) -> BatchpipeConfig:
    cfg = make_image_config(
        args.input_dir,
        args.output_dir,
        base_config=_load_base_config(args.base_config),
        include_exts=args.include_exts,
    )
    if args.format:
        cfg.images.format = args.format
    if args.quality is not None:
        cfg.images.quality = args.quality
    if args.effort is not None:
        cfg.images.effort = args.effort
    if args.strip_metadata:
        cfg.images.strip_metadata = True
    _apply_pipeline_args(cfg, args)
    return cfg


def _config_for_download(args: argparse.Namespace) -> BatchpipeConfig:
    cfg = make_download_config(
        args.urls,
        args.output_dir,
        base_config=_load_base_config(args.base_config),
        json_field=args.json_field,
    )
    if args.retries is not None:
        cfg.download.max_retries = args.retries
    if args.timeout is not None:
        cfg.download.timeout = args.timeout
        cfg.http.timeout = args.timeout
    if args.max_bytes is not None:
        cfg.download.max_bytes = args.max_bytes
    if args.shard_chars is not None:
        cfg.download.shard_chars = args.shard_chars
    _apply_pipeline_args(cfg, args)
    return cfg


def exit_code_for(stats: RunStatistics, *, strict: bool) -> int:
    """Map run statistics to a process exit status.

    Item failures do not fail a run unless ``strict`` is set. A cancelled run
    reports 130, the conventional status for SIGINT.
    """
    if stats.cancelled:
        return EXIT_CANCELLED
    if strict and stats.errors > 0:
        return EXIT_ITEM_ERRORS
    return EXIT_OK


def _run_and_report(cfg: BatchpipeConfig, *, strict: bool) -> int:
    stats = run(cfg)
    print(json.dumps(stats.as_dict(), indent=2))
    return exit_code_for(stats, strict=strict or cfg.pipeline.fail_on_errors)


def _dispatch(args: argparse.Namespace) -> int:
    """Dispatch a parsed CLI command to the appropriate handler.

    Args:
        args (argparse.Namespace): Parsed arguments from the top-level
            argument parser.

    Returns:
        int: Process exit code.
    """
    cmd = args.command
    if cmd == "run":
        cfg = load_config_from_path(args.config)
        if args.log_level is None and args.log_file is None:
            cfg.logging.apply()
        else:
            configure_logging(
                level=args.log_level or cfg.logging.level,
                log_file=args.log_file or cfg.logging.file,
            )
        if args.dry_run:
            cfg.validate()
            print(json.dumps(cfg.to_dict(), indent=2))
            return EXIT_OK
        return _run_and_report(cfg, strict=args.strict)
    configure_logging(level=args.log_level or "INFO", log_file=args.log_file)
    if cmd == "convert":
        return _run_and_report(_config_for_convert(args), strict=args.strict)
    if cmd == "download":
        return _run_and_report(_config_for_download(args), strict=args.strict)
    print(f"Unknown command: {cmd}", file=sys.stderr)
    return EXIT_FAILURE


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the batchpipe command-line interface.

    Args:
        argv (Sequence[str] | None): Optional list of argument strings to
            parse instead of ``sys.argv[1:]``. Primarily useful for tests.

    Returns:
        int: 0 on success (item failures included unless ``--strict``), 1 for
        configuration or fatal errors, 2 for item failures under
        ``--strict``, 130 when interrupted.
    """
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _dispatch(args)
    except PipelineConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_CANCELLED
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
