import io
import threading
import urllib.error

import pytest

from batchpipe.core.config import DownloadConfig, PipelineConfig
from batchpipe.core.errors import Cancelled, DownloadError
from batchpipe.core.interfaces import ProcessContext, WorkItem
from batchpipe.core.pipeline import BatchScheduler
from batchpipe.processors.downloads import CHUNK_SIZE, Downloader
from batchpipe.sources.urls import UrlListSource


class FakeResponse:
    def __init__(self, body=b"", status=200, reason="OK", headers=None):
        self._buf = io.BytesIO(body)
        self.status = status
        self.reason = reason
        self._headers = headers or {}
        self.closed = False
        self.reads = 0

    def getheader(self, name, default=None):
        return self._headers.get(name, default)

    def read(self, amt=None):
        self.reads += 1
        return self._buf.read(amt)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FakeClient:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self._lock = threading.Lock()

    def open_with_retries(self, request, *, timeout=None, retries=0, backoff_base=1.0, backoff_factor=2.0):
        with self._lock:
            self.calls.append((request.full_url, request.get_header("User-agent"), retries))
        resp = self.responses[request.full_url]
        if isinstance(resp, Exception):
            raise resp
        return resp


def _item(url):
    return next(iter(UrlListSource([url]).iter_items()))


def test_target_uses_two_character_shard(tmp_path):
    dl = Downloader(tmp_path, client=FakeClient({}))

    assert dl.target_for(_item("https://x.example/audio/ab123.mp3")) == tmp_path / "ab" / "ab123.mp3"

    flat = Downloader(tmp_path, DownloadConfig(shard_chars=0), client=FakeClient({}))
    assert flat.target_for(_item("https://x.example/audio/ab123.mp3")) == tmp_path / "ab123.mp3"


def test_streams_body_to_target(tmp_path):
    url = "https://x.example/ab123.mp3"
    body = b"z" * (CHUNK_SIZE + 10)
    resp = FakeResponse(body)
    client = FakeClient({url: resp})
    dl = Downloader(tmp_path, DownloadConfig(user_agent="tester/1", max_retries=4), client=client)
    item = _item(url)
    target = dl.target_for(item)
    target.parent.mkdir(parents=True)

    dl.process(item, target, ProcessContext())

    assert target.read_bytes() == body
    assert resp.closed
    assert resp.reads >= 2
    assert client.calls == [(url, "tester/1", 4)]


@pytest.mark.parametrize(
    "resp, message",
    [
        (FakeResponse(b"missing", status=404, reason="Not Found"), "HTTP 404"),
        (FakeResponse(b""), "empty response"),
        (FakeResponse(b"x" * 11), "exceeds cap"),
        (FakeResponse(b"x", headers={"Content-Length": "999"}), "Content-Length 999"),
    ],
)
def test_failures_leave_no_file(tmp_path, resp, message):
    url = "https://x.example/file.bin"
    dl = Downloader(tmp_path, DownloadConfig(max_bytes=10), client=FakeClient({url: resp}))
    item = _item(url)
    target = dl.target_for(item)
    target.parent.mkdir(parents=True)

    with pytest.raises(DownloadError, match=message):
        dl.process(item, target, ProcessContext())
    assert list(target.parent.iterdir()) == []


def test_cancellation_between_chunks(tmp_path):
    url = "https://x.example/big.bin"
    event = threading.Event()

    class StopAfterFirstRead(FakeResponse):
        def read(self, amt=None):
            event.set()
            return super().read(amt)

    dl = Downloader(tmp_path, client=FakeClient({url: StopAfterFirstRead(b"y" * (3 * CHUNK_SIZE))}))
    item = _item(url)
    target = dl.target_for(item)
    target.parent.mkdir(parents=True)

    with pytest.raises(Cancelled):
        dl.process(item, target, ProcessContext(cancel_event=event))
    assert not target.exists()


def test_pipeline_download_run(tmp_path):
    urls = [
        "https://x.example/a/ab1.mp3",
        "https://x.example/a/cd2.mp3",
        "https://x.example/a/ef3.mp3",
    ]
    client = FakeClient(
        {
            urls[0]: FakeResponse(b"one"),
            urls[1]: urllib.error.URLError("connection refused"),
            urls[2]: FakeResponse(b"three"),
        }
    )
    errors_log = tmp_path / "errors.log"
    scheduler = BatchScheduler(
        Downloader(tmp_path / "out", client=client),
        config=PipelineConfig(batch_size=5, inter_batch_pause=0, error_log_path=str(errors_log)),
    )

    stats = scheduler.run(UrlListSource(urls))

    assert (stats.processed, stats.errors) == (2, 1)
    assert (tmp_path / "out" / "ab" / "ab1.mp3").read_bytes() == b"one"
    assert (tmp_path / "out" / "ef" / "ef3.mp3").read_bytes() == b"three"
    line = errors_log.read_text(encoding="utf-8")
    assert line.startswith(f"ERROR: {urls[1]} - URLError: ")
    assert "connection refused" in line


def test_pipeline_keeps_unicode_file_names_apart(tmp_path):
    urls = [
        "https://x.example/audio/%E6%95%85%E4%BA%8B%E4%B8%80.mp3",
        "https://x.example/audio/%E6%95%85%E4%BA%8B%E4%BA%8C.mp3",
    ]
    client = FakeClient({urls[0]: FakeResponse(b"one"), urls[1]: FakeResponse(b"two")})
    scheduler = BatchScheduler(
        Downloader(tmp_path / "out", client=client),
        config=PipelineConfig(batch_size=5, inter_batch_pause=0),
    )

    stats = scheduler.run(UrlListSource(urls))

    assert (stats.processed, stats.skipped, stats.errors) == (2, 0, 0)
    assert len(client.calls) == 2
    assert (tmp_path / "out" / "故事" / "故事一.mp3").read_bytes() == b"one"
    assert (tmp_path / "out" / "故事" / "故事二.mp3").read_bytes() == b"two"


def test_pipeline_fails_second_url_with_same_file_name(tmp_path):
    urls = ["https://x.example/v1/ab1.mp3", "https://x.example/v2/ab1.mp3"]
    client = FakeClient({urls[0]: FakeResponse(b"first"), urls[1]: FakeResponse(b"second")})
    scheduler = BatchScheduler(
        Downloader(tmp_path / "out", client=client),
        config=PipelineConfig(batch_size=5, inter_batch_pause=0),
    )

    stats = scheduler.run(UrlListSource(urls))

    assert (stats.processed, stats.skipped, stats.errors) == (1, 0, 1)
    assert [c[0] for c in client.calls] == [urls[0]]
    assert (tmp_path / "out" / "ab" / "ab1.mp3").read_bytes() == b"first"
