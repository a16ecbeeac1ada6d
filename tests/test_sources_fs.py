# test_sources_fs.py
# SPDX-License-Identifier: MIT
import os
import sys
from pathlib import Path

import pytest

import batchpipe.sources.fs as fs_mod
from batchpipe.core.config import LocalDirSourceConfig
from batchpipe.core.errors import PipelineConfigError
from batchpipe.sources.fs import LocalDirSource, collect_tree_files, iter_tree_files


def _touch(path: Path, data: bytes = b"x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def _rels(src: LocalDirSource) -> list[str]:
    return [item.rel_path for item in src.iter_items()]


def test_depth_first_case_insensitive_order(tmp_path):
    _touch(tmp_path / "B.jpg")
    _touch(tmp_path / "c.jpg")
    _touch(tmp_path / "a" / "z.jpg")
    _touch(tmp_path / "a" / "Y.png")

    assert _rels(LocalDirSource(tmp_path)) == ["a/Y.png", "a/z.jpg", "B.jpg", "c.jpg"]


def test_items_carry_absolute_key_and_file_kind(tmp_path):
    target = _touch(tmp_path / "sub" / "pic.jpeg")
    items = list(LocalDirSource(tmp_path).iter_items())

    assert len(items) == 1
    assert items[0].key == str(target.resolve())
    assert items[0].rel_path == "sub/pic.jpeg"
    assert items[0].kind == "file"


def test_extension_filter_is_case_insensitive(tmp_path):
    for name in ("A.JPG", "b.Png", "c.txt", "d.webp", "e.gif"):
        _touch(tmp_path / name)

    assert _rels(LocalDirSource(tmp_path)) == ["A.JPG", "b.Png", "d.webp"]

    cfg = LocalDirSourceConfig(include_exts=("gif", ".TXT"))
    assert _rels(LocalDirSource(tmp_path, config=cfg)) == ["c.txt", "e.gif"]


def test_hidden_and_junk_entries_are_skipped(tmp_path):
    _touch(tmp_path / "keep.jpg")
    _touch(tmp_path / ".secret.jpg")
    _touch(tmp_path / ".cache" / "thumb.jpg")
    _touch(tmp_path / "node_modules" / "logo.png")
    _touch(tmp_path / "Thumbs.db")

    assert _rels(LocalDirSource(tmp_path)) == ["keep.jpg"]

    cfg = LocalDirSourceConfig(include_exts=None, skip_hidden=False, skip_junk_dirs=False)
    rels = _rels(LocalDirSource(tmp_path, config=cfg))
    assert rels == [".cache/thumb.jpg", ".secret.jpg", "keep.jpg", "node_modules/logo.png"]


def test_traversal_is_lazy(tmp_path, monkeypatch):
    for d in ("a", "b", "c"):
        _touch(tmp_path / d / f"{d}.jpg")
    listed = []
    real = fs_mod._sorted_entries

    def counting(path):
        listed.append(Path(path).name)
        return real(path)

    monkeypatch.setattr(fs_mod, "_sorted_entries", counting)
    it = LocalDirSource(tmp_path).iter_items()
    first = next(it)

    assert first.rel_path == "a/a.jpg"
    assert listed == [tmp_path.resolve().name, "a"]


def test_source_is_restartable(tmp_path):
    _touch(tmp_path / "one.jpg")
    _touch(tmp_path / "two.png")
    src = LocalDirSource(tmp_path)

    assert _rels(src) == _rels(src) == ["one.jpg", "two.png"]


def test_unreadable_subdirectory_is_logged_and_skipped(tmp_path, monkeypatch, caplog):
    _touch(tmp_path / "a" / "1.jpg")
    _touch(tmp_path / "locked" / "2.jpg")
    _touch(tmp_path / "z" / "3.jpg")
    real = fs_mod._sorted_entries

    def guarded(path):
        if Path(path).name == "locked":
            raise PermissionError(13, "Permission denied", str(path))
        return real(path)

    monkeypatch.setattr(fs_mod, "_sorted_entries", guarded)
    src = LocalDirSource(tmp_path)

    assert _rels(src) == ["a/1.jpg", "z/3.jpg"]
    assert src.errors == 1
    assert any("locked" in rec.getMessage() for rec in caplog.records)


def test_missing_root_is_a_configuration_error(tmp_path):
    with pytest.raises(PipelineConfigError):
        LocalDirSource(tmp_path / "missing")
    with pytest.raises(NotADirectoryError):
        list(iter_tree_files(tmp_path / "missing"))


def test_deep_tree_does_not_recurse(tmp_path):
    deep = tmp_path
    for _ in range(sys.getrecursionlimit() + 50):
        deep = deep / "d"
        deep.mkdir()
    (deep / "bottom.jpg").write_bytes(b"x")

    files = collect_tree_files(tmp_path, include_exts=[".jpg"])
    assert files == [(deep / "bottom.jpg").resolve()]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinks_ignored_by_default_and_cycles_pruned(tmp_path):
    root = tmp_path / "root"
    _touch(root / "d" / "pic.jpg")
    outside = _touch(tmp_path / "outside.jpg")
    (root / "link.jpg").symlink_to(outside)
    (root / "d" / "loop").symlink_to(root / "d", target_is_directory=True)

    assert _rels(LocalDirSource(root)) == ["d/pic.jpg"]

    cfg = LocalDirSourceConfig(follow_symlinks=True)
    assert _rels(LocalDirSource(root, config=cfg)) == ["d/pic.jpg", "link.jpg"]
