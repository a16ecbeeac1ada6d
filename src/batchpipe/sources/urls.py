# urls.py
# SPDX-License-Identifier: MIT
"""Item source that yields one WorkItem per URL."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from ..core.errors import PipelineConfigError
from ..core.interfaces import WorkItem
from ..core.log import get_logger
from ..core.naming import filename_from_url

__all__ = ["UrlListSource", "extract_json_field"]

log = get_logger(__name__)

_ALLOWED_SCHEMES = {"http", "https"}
_END = object()


def _ensure_http_url(url: str) -> str:
    """Validate that a URL uses http(s) and carries no embedded credentials.

    Raises:
        ValueError: If the URL scheme is unsupported or contains credentials.
    """
    parsed = urlparse(url)
    scheme = (parsed.scheme or "").lower()
    if scheme not in _ALLOWED_SCHEMES:
        raise ValueError(f"unsupported URL scheme: {scheme or '<none>'}")
    if parsed.username or parsed.password:
        raise ValueError("URLs with embedded credentials are not allowed")
    if not parsed.hostname:
        raise ValueError("URL missing host")
    return url


def extract_json_field(doc: Any, field_name: str) -> Iterator[str]:
    """Yield every string stored under ``field_name`` anywhere in ``doc``.

    Values are produced in document order. A list value contributes each of
    its string members.
    """
    stack: list[Iterator[Any]] = [iter([doc])]
    while stack:
        node = next(stack[-1], _END)
        if node is _END:
            stack.pop()
            continue
        if isinstance(node, dict):
            value = node.get(field_name)
            if isinstance(value, str):
                yield value
            elif isinstance(value, list):
                yield from (v for v in value if isinstance(v, str))
            stack.append(iter([v for k, v in node.items() if k != field_name]))
        elif isinstance(node, list):
            stack.append(iter(node))


class UrlListSource:
    """Yield WorkItems for URLs from memory, a text file, or a JSON document.

    Text files hold one URL per line; blank lines and ``#`` comments are
    ignored. A file ending in ``.json`` (or any file when ``json_field`` is
    set) is parsed as JSON: with ``json_field`` every string found under that
    key at any depth is a URL, otherwise the document must be a list of
    strings.

    Invalid URLs are logged and counted in :attr:`invalid`; they do not
    become work items.
    """

    def __init__(
        self,
        urls: Iterable[str] | None = None,
        *,
        path: str | os.PathLike[str] | None = None,
        json_field: str | None = None,
        dedupe: bool = True,
    ) -> None:
        if urls is None and path is None:
            raise PipelineConfigError("UrlListSource needs urls or a path")
        self.urls = list(urls) if urls is not None else None
        self.path = Path(path) if path is not None else None
        if self.path is not None and not self.path.is_file():
            raise PipelineConfigError(f"URL list not found: {self.path}")
        self.json_field = json_field or None
        self.dedupe = dedupe
        self.invalid = 0
        self.duplicates = 0

    def _iter_raw(self) -> Iterator[str]:
        if self.urls is not None:
            yield from self.urls
        if self.path is None:
            return
        if self.json_field or self.path.suffix.lower() == ".json":
            doc = json.loads(self.path.read_text(encoding="utf-8"))
            if self.json_field:
                yield from extract_json_field(doc, self.json_field)
            elif isinstance(doc, list):
                yield from (v for v in doc if isinstance(v, str))
            else:
                raise ValueError(f"{self.path}: expected a JSON list of URLs or a json_field")
            return
        with self.path.open("r", encoding="utf-8") as fp:
            for line in fp:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                yield line

    def iter_items(self) -> Iterator[WorkItem]:
        """Yield one WorkItem per valid (and, when deduping, unseen) URL."""
        self.invalid = 0
        self.duplicates = 0
        seen: set[str] = set()
        for raw in self._iter_raw():
            url = (raw or "").strip()
            if not url:
                continue
            try:
                _ensure_http_url(url)
            except ValueError as exc:
                self.invalid += 1
                log.warning("Skipping invalid URL %r: %s", url, exc)
                continue
            if self.dedupe:
                if url in seen:
                    self.duplicates += 1
                    continue
                seen.add(url)
            yield WorkItem(key=url, rel_path=filename_from_url(url), kind="url")

    def __repr__(self) -> str:
        where = str(self.path) if self.path is not None else f"{len(self.urls or ())} urls"
        return f"UrlListSource({where!r})"
