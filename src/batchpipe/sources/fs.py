# fs.py
# SPDX-License-Identifier: MIT
"""Filesystem item source and the tree walker behind it."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from ..core.config import LocalDirSourceConfig
from ..core.errors import PipelineConfigError
from ..core.interfaces import WorkItem
from ..core.log import get_logger
from ..core.naming import normalize_extensions

__all__ = [
    "DEFAULT_SKIP_DIRS",
    "DEFAULT_SKIP_FILES",
    "iter_tree_files",
    "collect_tree_files",
    "LocalDirSource",
]

log = get_logger(__name__)

# Common junk/build/metadata directories we always skip unless explicitly allowed
DEFAULT_SKIP_DIRS: set[str] = {
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    "node_modules",
    "@eaDir",
    "$RECYCLE.BIN",
    "System Volume Information",
}

# Common junk files to skip regardless of extension filters
DEFAULT_SKIP_FILES: set[str] = {
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
}

OnDirError = Callable[[Path, OSError], None]


def _sorted_entries(path: Path) -> list[os.DirEntry[str]]:
    with os.scandir(path) as it:
        entries = list(it)
    # Ensure deterministic order across platforms
    entries.sort(key=lambda e: (e.name.casefold(), e.name))
    return entries


def iter_tree_files(
    root: os.PathLike[str] | str,
    *,
    include_exts: Iterable[str] | None = None,
    skip_hidden: bool = True,
    skip_junk_dirs: bool = True,
    follow_symlinks: bool = False,
    on_error: OnDirError | None = None,
) -> Iterator[tuple[Path, str]]:
    """Walk ``root`` depth-first and lazily yield matching regular files.

    Traversal keeps an explicit stack of directory iterators, so tree depth is
    bounded only by memory. Within a directory, entries are visited in
    case-insensitive name order and sub-directories are descended into as
    soon as they are met.

    Args:
        root: Directory to traverse.
        include_exts: Only yield files with these suffixes (case-insensitive).
            None yields every file.
        skip_hidden: Skip dotfiles and dot-directories.
        skip_junk_dirs: Skip names in :data:`DEFAULT_SKIP_DIRS`.
        follow_symlinks: Descend into symlinked directories and yield
            symlinked files. Directory cycles are pruned.
        on_error: Called with the directory and the error when a
            sub-directory cannot be listed. Traversal continues either way.

    Yields:
        tuple[Path, str]: Absolute file path and its POSIX path relative to
            ``root``.

    Raises:
        NotADirectoryError: If ``root`` is not a directory.
    """
    walk_root = Path(root).resolve()
    if not walk_root.is_dir():
        raise NotADirectoryError(walk_root)
    exts = normalize_extensions(include_exts)

    # The root listing is allowed to raise; everything below it is best effort.
    visited: set[tuple[int, int]] = set()
    if follow_symlinks:
        st = walk_root.stat()
        visited.add((st.st_dev, st.st_ino))
    stack: list[tuple[str, Iterator[os.DirEntry[str]]]] = [("", iter(_sorted_entries(walk_root)))]

    while stack:
        prefix, entries = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            continue
        name = entry.name
        if skip_hidden and name.startswith("."):
            continue
        rel = f"{prefix}{name}"
        try:
            is_link = entry.is_symlink()
            if is_link and not follow_symlinks:
                continue
            is_dir = entry.is_dir(follow_symlinks=follow_symlinks)
        except OSError:
            continue

        if is_dir:
            if skip_junk_dirs and name in DEFAULT_SKIP_DIRS:
                continue
            dir_path = walk_root / rel
            try:
                if follow_symlinks:
                    st = entry.stat(follow_symlinks=True)
                    key = (st.st_dev, st.st_ino)
                    if key in visited:
                        log.debug("Skipping directory cycle at %s", dir_path)
                        continue
                    visited.add(key)
                children = _sorted_entries(dir_path)
            except OSError as exc:
                log.warning("Cannot read directory %s: %s", dir_path, exc)
                if on_error is not None:
                    on_error(dir_path, exc)
                continue
            stack.append((f"{rel}/", iter(children)))
            continue

        if name in DEFAULT_SKIP_FILES:
            continue
        if exts is not None and os.path.splitext(name)[1].lower() not in exts:
            continue
        try:
            if not entry.is_file(follow_symlinks=follow_symlinks):
                continue
        except OSError:
            continue
        yield walk_root / rel, rel


def collect_tree_files(*args, **kwargs) -> list[Path]:
    """Return the file paths produced by iter_tree_files.

    This is a convenience wrapper useful in tests.
    """
    return [path for path, _ in iter_tree_files(*args, **kwargs)]


class LocalDirSource:
    """Yield a WorkItem for every recognized file under a directory.

    Attributes:
        root (Path): Directory being traversed.
        config (LocalDirSourceConfig): Traversal options.
        errors (int): Sub-directories that could not be read during the most
            recent enumeration.
    """

    def __init__(self, root: str | os.PathLike[str], *, config: LocalDirSourceConfig | None = None) -> None:
        self.root = Path(root)
        if not self.root.is_dir():
            raise PipelineConfigError(f"input root is not a directory: {self.root}")
        self.config = config or LocalDirSourceConfig()
        self.errors = 0

    def _on_error(self, path: Path, exc: OSError) -> None:
        self.errors += 1

    def iter_items(self) -> Iterator[WorkItem]:
        """Start a fresh traversal and yield items as files are discovered."""
        cfg = self.config
        self.errors = 0
        for path, rel in iter_tree_files(
            self.root,
            include_exts=cfg.include_exts,
            skip_hidden=cfg.skip_hidden,
            skip_junk_dirs=cfg.skip_junk_dirs,
            follow_symlinks=cfg.follow_symlinks,
            on_error=self._on_error,
        ):
            yield WorkItem(key=str(path), rel_path=rel, kind="file")

    def __repr__(self) -> str:
        return f"LocalDirSource({str(self.root)!r})"
