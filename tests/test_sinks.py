from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest

from rowforge.core.errors import EncodeError
from rowforge.sinks.sinks import GzipJSONLRecordSink, JSONLRecordSink, make_record_sink


def test_jsonl_sink_writes_one_line_per_record(tmp_path: Path) -> None:
    path = tmp_path / "out" / "data.jsonl"
    sink = JSONLRecordSink(path)
    sink.open()
    sink.write({"hello": "world"})
    sink.write([1, 2])
    sink.write("text")
    assert not path.exists()
    sink.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line) for line in lines] == [{"hello": "world"}, [1, 2], "text"]
    assert sink.count == 3
    assert not (tmp_path / "out" / "data.jsonl.tmp").exists()


def test_gzip_jsonl_sink_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "data.jsonl.gz"
    sink = make_record_sink(path)
    assert isinstance(sink, GzipJSONLRecordSink)
    with sink:
        sink.write({"hello": "world"})

    with gzip.open(path, "rt", encoding="utf-8") as fp:
        lines = fp.read().splitlines()
    assert json.loads(lines[0]) == {"hello": "world"}


def test_sink_close_is_idempotent_and_empty_output_is_valid(tmp_path: Path) -> None:
    path = tmp_path / "empty.jsonl"
    sink = make_record_sink(path)
    assert isinstance(sink, JSONLRecordSink)
    sink.open()
    sink.close()
    sink.close()
    assert path.read_text(encoding="utf-8") == ""
    assert sink.count == 0


def test_sink_rejects_reopen_and_writes_after_close(tmp_path: Path) -> None:
    sink = JSONLRecordSink(tmp_path / "x.jsonl")
    sink.open()
    with pytest.raises(RuntimeError):
        sink.open()
    sink.close()
    with pytest.raises(RuntimeError, match="not open"):
        sink.write({"late": True})


def test_sink_encode_error_leaves_no_partial_line(tmp_path: Path) -> None:
    path = tmp_path / "data.jsonl"
    sink = JSONLRecordSink(path)
    sink.open()
    sink.write({"ok": 1})
    with pytest.raises(EncodeError):
        sink.write({"bad": object()})
    sink.close()
    assert path.read_text(encoding="utf-8") == '{"ok":1}\n'
    assert sink.count == 1


def test_sink_context_manager_aborts_on_error(tmp_path: Path) -> None:
    path = tmp_path / "data.jsonl"
    with pytest.raises(ValueError):
        with JSONLRecordSink(path) as sink:
            sink.write({"ok": 1})
            raise ValueError("stop")
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


class _FlushFailingHandle:
    def __init__(self, fp):
        self._fp = fp

    def write(self, text):
        return self._fp.write(text)

    def flush(self):
        raise OSError("disk full")

    def close(self):
        self._fp.close()


class FlushFailingSink(JSONLRecordSink):
    def _open_handle(self, path: Path):
        return _FlushFailingHandle(super()._open_handle(path))


def test_sink_close_failure_removes_partial_output(tmp_path: Path) -> None:
    path = tmp_path / "out.jsonl"
    sink = FlushFailingSink(path)
    sink.open()
    sink.write({"ok": 1})

    with pytest.raises(OSError, match="disk full"):
        sink.close()

    assert list(tmp_path.iterdir()) == []
    sink.abort()
    sink.close()
