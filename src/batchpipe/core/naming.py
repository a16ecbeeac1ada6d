# naming.py
# SPDX-License-Identifier: MIT
"""Helpers for constructing safe output names and normalizing extensions."""

from __future__ import annotations

import hashlib
import posixpath
import re
from collections.abc import Iterable
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

__all__ = [
    "normalize_extensions",
    "sanitize_filename",
    "filename_from_url",
    "replace_suffix",
    "shard_dir",
]

_WINDOWS_RESERVED = {
    "con",
    "prn",
    "aux",
    "nul",
    *(f"com{i}" for i in range(1, 10)),
    *(f"lpt{i}" for i in range(1, 10)),
}
_UNSAFE_RX = re.compile(r'[\x00-\x1f\x7f<>:"/\\|?*]')
# Leaves room for a "-<hash>" tag under the common 255-byte name limit.
MAX_NAME_BYTES = 200


def normalize_extensions(exts: Iterable[str] | None) -> set[str] | None:
    """Normalize extension strings into dotted lowercase values.

    Args:
        exts (Iterable[str] | None): Iterable of extensions to normalize.

    Returns:
        set[str] | None: Lowercase extensions prefixed with ".", or None when
            no values remain after cleaning.
    """
    if not exts:
        return None
    out: set[str] = set()
    for ext in exts:
        if not ext:
            continue
        cleaned = ext.strip().lower()
        if not cleaned:
            continue
        out.add(cleaned if cleaned.startswith(".") else f".{cleaned}")
    return out or None


def _truncate_utf8(text: str, limit: int) -> str:
    return text.encode("utf-8")[: max(0, limit)].decode("utf-8", "ignore")


def sanitize_filename(name: str | None, *, maxlen: int = MAX_NAME_BYTES) -> str | None:
    """Reduce ``name`` to a single-segment file name that is safe to create.

    Percent-escapes are decoded and directory parts are dropped. Unicode
    letters are kept; path separators, control characters and characters
    Windows refuses in names become ``_``. The result is capped at ``maxlen``
    UTF-8 bytes, preserving a short extension. Returns None when nothing
    usable is left.
    """
    if not name:
        return None
    base = unquote(name).replace("\\", "/").split("/")[-1]
    base = _UNSAFE_RX.sub("_", base).strip(" .")
    if not base or set(base) <= {"_", "."}:
        return None
    if base.split(".", 1)[0].lower() in _WINDOWS_RESERVED:
        base = f"_{base}"
    if len(base.encode("utf-8")) > maxlen:
        stem, dot, ext = base.rpartition(".")
        if dot and stem and 0 < len(ext) < 16:
            base = f"{_truncate_utf8(stem, maxlen - len(ext.encode('utf-8')) - 1)}.{ext}"
        else:
            base = _truncate_utf8(base, maxlen)
    return base


def filename_from_url(url: str) -> str:
    """Derive a deterministic file name from the path of ``url``.

    The decoded last path segment is used as is when it is already a safe
    name. When sanitizing had to change or shorten it, the first 8 hex digits
    of the URL's SHA-1 are appended to the stem so that distinct URLs do not
    collapse onto one name. Without a usable segment the name is the first 16
    hex digits of that SHA-1.
    """
    raw = posixpath.basename(urlsplit(url).path)
    digest = hashlib.sha1(url.encode("utf-8", "surrogateescape")).hexdigest()
    name = sanitize_filename(raw)
    if not name:
        return digest[:16]
    if name == unquote(raw):
        return name
    tagged = sanitize_filename(raw, maxlen=MAX_NAME_BYTES - 9) or name
    stem, dot, ext = tagged.rpartition(".")
    if not dot:
        stem, ext = tagged, ""
    return f"{stem}-{digest[:8]}{dot}{ext}"


def replace_suffix(rel_path: str, ext: str) -> str:
    """Swap the final suffix of a POSIX relative path for ``ext``.

    >>> replace_suffix("a/b.JPG", ".avif")
    'a/b.avif'
    """
    ext = ext if ext.startswith(".") else f".{ext}"
    p = PurePosixPath(rel_path)
    return str(p.with_suffix(ext)) if p.suffix else f"{rel_path}{ext}"


def shard_dir(name: str, chars: int) -> str:
    """Return the shard directory for ``name`` (its first ``chars`` characters)."""
    if chars <= 0:
        return ""
    return name[:chars]
