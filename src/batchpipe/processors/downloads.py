# downloads.py
# SPDX-License-Identifier: MIT
"""URL download processor built on SafeHttpClient."""

from __future__ import annotations

import os
import urllib.request
from pathlib import Path

from ..core.config import DownloadConfig
from ..core.errors import Cancelled, DownloadError
from ..core.interfaces import ProcessContext, WorkItem
from ..core.log import get_logger
from ..core.naming import filename_from_url, shard_dir
from ..core.safe_http import SafeHttpClient
from ..sinks.files import AtomicFileSink

__all__ = ["Downloader", "CHUNK_SIZE"]

log = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


class Downloader:
    """Fetch each URL into ``output_dir/<shard>/<name>``.

    ``name`` is the sanitized last path segment of the URL and ``<shard>`` its
    first ``shard_chars`` characters, which keeps directory sizes manageable
    for large URL lists. Bodies are streamed to a temporary file in
    :data:`CHUNK_SIZE` pieces, so memory stays flat regardless of file size.

    Attributes:
        output_dir (Path): Root directory for downloaded files.
        config (DownloadConfig): Transfer settings.
        client (SafeHttpClient): HTTP client used for every request.
    """

    preferred_executor = "thread"

    def __init__(
        self,
        output_dir: str | os.PathLike[str],
        config: DownloadConfig | None = None,
        *,
        client: SafeHttpClient | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.config = config or DownloadConfig()
        self.client = client or SafeHttpClient(timeout=self.config.timeout)

    def target_for(self, item: WorkItem) -> Path:
        name = item.rel_path or filename_from_url(item.key)
        shard = shard_dir(name, self.config.shard_chars)
        return self.output_dir / shard / name if shard else self.output_dir / name

    def _request(self, url: str) -> urllib.request.Request:
        return urllib.request.Request(url, headers={"User-Agent": self.config.user_agent})

    def _check_declared_length(self, url: str, value: str | None) -> None:
        if not value:
            return
        try:
            declared = int(value)
        except ValueError:
            log.debug("Ignoring invalid Content-Length %r for %s", value, url)
            return
        if declared > self.config.max_bytes:
            raise DownloadError(
                f"Content-Length {declared} exceeds cap {self.config.max_bytes}"
            )

    def process(self, item: WorkItem, target: Path, ctx: ProcessContext) -> None:
        """Download ``item.key`` to ``target``.

        Raises:
            DownloadError: On HTTP status >= 400, an empty body, or a body
                larger than ``max_bytes``.
            Cancelled: If the run is stopped mid-transfer.
            urllib.error.URLError | OSError: When the connection cannot be
                established after ``max_retries`` retries.
        """
        url = item.key
        cap = self.config.max_bytes
        if ctx.cancelled:
            raise Cancelled("cancelled")
        with self.client.open_with_retries(
            self._request(url),
            timeout=self.config.timeout,
            retries=self.config.max_retries,
            backoff_base=1.0,
            backoff_factor=2.0,
        ) as resp:
            if resp.status >= 400:
                raise DownloadError(f"HTTP {resp.status} {resp.reason}".rstrip())
            self._check_declared_length(url, resp.getheader("Content-Length"))
            with AtomicFileSink(target) as sink:
                while True:
                    if ctx.cancelled:
                        raise Cancelled("cancelled")
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    if sink.bytes_written + len(chunk) > cap:
                        raise DownloadError(f"download exceeds cap of {cap} bytes")
                    sink.write(chunk)
                if sink.bytes_written == 0:
                    raise DownloadError("empty response")
        log.debug("Downloaded %s -> %s", url, target)

    def __repr__(self) -> str:
        return f"Downloader({str(self.output_dir)!r})"
