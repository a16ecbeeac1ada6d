import json

import pytest

from batchpipe.core.errors import PipelineConfigError
from batchpipe.sources.urls import UrlListSource, extract_json_field


def test_text_file_skips_blank_lines_and_comments(tmp_path):
    path = tmp_path / "urls.txt"
    path.write_text(
        "# audio files\n"
        "https://cdn.example.com/audio/ab123.mp3\n"
        "\n"
        "   https://cdn.example.com/audio/cd456.mp3  \n",
        encoding="utf-8",
    )

    items = list(UrlListSource(path=path).iter_items())

    assert [i.key for i in items] == [
        "https://cdn.example.com/audio/ab123.mp3",
        "https://cdn.example.com/audio/cd456.mp3",
    ]
    assert [i.rel_path for i in items] == ["ab123.mp3", "cd456.mp3"]
    assert {i.kind for i in items} == {"url"}


def test_json_field_collected_at_any_depth(tmp_path):
    doc = {
        "books": [
            {"title": "one", "pages": [{"audio": "https://x.example/a1.mp3"}, {"audio": "https://x.example/a2.mp3"}]},
            {"title": "two", "pages": [{"text": "no audio"}, {"audio": ["https://x.example/b1.mp3"]}]},
        ]
    }
    path = tmp_path / "books.json"
    path.write_text(json.dumps(doc), encoding="utf-8")

    src = UrlListSource(path=path, json_field="audio")
    assert [i.key for i in src.iter_items()] == [
        "https://x.example/a1.mp3",
        "https://x.example/a2.mp3",
        "https://x.example/b1.mp3",
    ]


def test_json_list_without_field(tmp_path):
    path = tmp_path / "urls.json"
    path.write_text(json.dumps(["https://x.example/1.bin", 7, "https://x.example/2.bin"]), encoding="utf-8")

    assert [i.rel_path for i in UrlListSource(path=path).iter_items()] == ["1.bin", "2.bin"]


def test_invalid_urls_are_counted_and_skipped(caplog):
    src = UrlListSource(
        [
            "ftp://x.example/file",
            "https://user:pw@x.example/secret",
            "not a url",
            "https://x.example/ok.txt",
        ]
    )

    assert [i.key for i in src.iter_items()] == ["https://x.example/ok.txt"]
    assert src.invalid == 3
    assert sum("Skipping invalid URL" in r.getMessage() for r in caplog.records) == 3


def test_dedupe(tmp_path):
    urls = ["https://x.example/a.mp3", "https://x.example/a.mp3", "https://x.example/b.mp3"]

    src = UrlListSource(urls)
    assert len(list(src.iter_items())) == 2
    assert src.duplicates == 1

    assert len(list(UrlListSource(urls, dedupe=False).iter_items())) == 3


def test_nameless_urls_get_stable_hashed_names():
    src = UrlListSource(["https://x.example/", "https://x.example/"], dedupe=False)
    a, b = list(src.iter_items())

    assert a.rel_path == b.rel_path
    assert len(a.rel_path) == 16


def test_requires_input(tmp_path):
    with pytest.raises(PipelineConfigError):
        UrlListSource()
    with pytest.raises(PipelineConfigError):
        UrlListSource(path=tmp_path / "missing.txt")


def test_extract_json_field_handles_nesting():
    doc = [{"a": {"audio": "u1", "deeper": [{"audio": "u2"}]}}, {"audio": 3}]
    assert list(extract_json_field(doc, "audio")) == ["u1", "u2"]
