import threading

from batchpipe.core.interfaces import Outcome, WorkItem
from batchpipe.sinks.errorlog import ErrorLogEntry, ErrorLogSink, NullErrorLog
from batchpipe.sinks.files import AtomicFileSink


def test_line_format_and_append(tmp_path):
    path = tmp_path / "nested" / "errors.log"
    path.parent.mkdir()
    path.write_text("ERROR: old - kept\n", encoding="utf-8")
    sink = ErrorLogSink(path)

    assert sink.append(ErrorLogEntry("/in/c.jpg", "ConversionError: bad header"))
    assert sink.append(ErrorLogEntry("https://x/y", "line one\nline two"))

    assert path.read_text(encoding="utf-8").splitlines() == [
        "ERROR: old - kept",
        "ERROR: /in/c.jpg - ConversionError: bad header",
        "ERROR: https://x/y - line one line two",
    ]
    assert sink.written == 2


def test_entry_from_outcome():
    outcome = Outcome.failed(WorkItem(key="/a/b.png", rel_path="b.png"), "OSError: denied")
    entry = ErrorLogEntry.from_outcome(outcome)

    assert entry.to_line() == "ERROR: /a/b.png - OSError: denied\n"
    assert entry.timestamp.tzinfo is not None


def test_creates_parent_directories(tmp_path):
    sink = ErrorLogSink(tmp_path / "a" / "b" / "errors.log", fsync=False)
    sink.append(ErrorLogEntry("x", "y"))
    assert sink.path.is_file()


def test_write_failure_is_reported_not_raised(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    sink = ErrorLogSink(blocker / "errors.log")

    assert sink.append(ErrorLogEntry("x", "y")) is False
    assert sink.write_failures == 1
    assert any("Could not write error log" in r.getMessage() for r in caplog.records)


def test_concurrent_appends_do_not_interleave(tmp_path):
    sink = ErrorLogSink(tmp_path / "errors.log", fsync=False)

    def worker(n):
        for i in range(25):
            sink.append(ErrorLogEntry(f"item-{n}-{i}", "failed " + "x" * 200))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    lines = sink.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 100
    assert all(line.startswith("ERROR: item-") and line.endswith("x" * 200) for line in lines)


def test_null_error_log_accepts_everything():
    assert NullErrorLog().append(ErrorLogEntry("x", "y")) is True


def test_atomic_sink_commits_or_discards(tmp_path):
    target = tmp_path / "out.bin"
    with AtomicFileSink(target) as sink:
        sink.write(b"abc")
        assert not target.exists()
    assert target.read_bytes() == b"abc"

    try:
        with AtomicFileSink(target) as sink:
            sink.write(b"partial")
            raise RuntimeError("interrupted")
    except RuntimeError:
        pass
    assert target.read_bytes() == b"abc"
    assert [p.name for p in tmp_path.iterdir()] == ["out.bin"]
