from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest

from rowforge.core.concurrency import DispatchConfig
from rowforge.core.engines import compile_script
from rowforge.core.errors import DecodeError, EncodeError, ScriptEvaluationError
from rowforge.core.pipeline import RunReport, TransformPipeline
from rowforge.sinks.sinks import JSONLRecordSink
from rowforge.sources.jsonl_source import JSONLRecordSource


def _source(lines: list[str]) -> JSONLRecordSource:
    data = "".join(line + "\n" for line in lines).encode("utf-8")
    return JSONLRecordSource(io.BytesIO(data), label="mem.jsonl")


def _read(path: Path) -> list:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_pipeline_sequential_drops_and_preserves_order(tmp_path: Path) -> None:
    out = tmp_path / "out.jsonl"
    pipeline = TransformPipeline(
        source=_source(["1", "2", "3", "4", "5"]),
        sink=JSONLRecordSink(out),
        script=compile_script("row = None if row == 3 else row"),
    )
    stats = pipeline.run()

    assert _read(out) == [1, 2, 4, 5]
    assert stats.mode == "sequential"
    assert (stats.read, stats.evaluated, stats.dropped, stats.written) == (5, 5, 1, 4)


def test_pipeline_empty_input_produces_empty_output(tmp_path: Path) -> None:
    out = tmp_path / "out.jsonl"
    stats = TransformPipeline(
        source=_source([]),
        sink=JSONLRecordSink(out),
        script=compile_script("pass"),
    ).run()
    assert out.read_text(encoding="utf-8") == ""
    assert stats.written == 0


def test_pipeline_parallel_writes_every_kept_record(tmp_path: Path) -> None:
    out = tmp_path / "out.jsonl"
    lines = [json.dumps({"id": i}) for i in range(300)]
    stats = TransformPipeline(
        source=_source(lines),
        sink=JSONLRecordSink(out),
        script=compile_script("row = None if row['id'] % 10 == 0 else {'id': row['id'], 'ok': True}"),
        dispatch=DispatchConfig(concurrent=4, queue_size=8),
    ).run()

    records = _read(out)
    assert sorted(r["id"] for r in records) == [i for i in range(300) if i % 10]
    assert all(r["ok"] for r in records)
    assert stats.mode == "parallel"
    assert stats.lanes == 4
    assert stats.written == 270
    assert stats.dropped == 30


@pytest.mark.parametrize("dispatch", [None, DispatchConfig(concurrent=2)])
def test_pipeline_script_failure_aborts_sink(tmp_path: Path, dispatch, caplog) -> None:
    out = tmp_path / "out.jsonl"
    pipeline = TransformPipeline(
        source=_source(["1", "2", "3", "4", "5"]),
        sink=JSONLRecordSink(out),
        script=compile_script("if row == 4:\n    raise ValueError('four')"),
        dispatch=dispatch,
    )
    with caplog.at_level(logging.WARNING, logger="rowforge.core.pipeline"):
        with pytest.raises(ScriptEvaluationError, match="ValueError: four"):
            pipeline.run()

    assert not out.exists()
    assert list(tmp_path.iterdir()) == []
    assert "Transform run failed" in caplog.text


def test_pipeline_decode_failure_names_the_line(tmp_path: Path) -> None:
    out = tmp_path / "out.jsonl"
    pipeline = TransformPipeline(
        source=_source(["1", "{broken", "3"]),
        sink=JSONLRecordSink(out),
        script=compile_script("pass"),
    )
    with pytest.raises(DecodeError, match="mem.jsonl:#2"):
        pipeline.run()
    assert not out.exists()


def test_pipeline_encode_failure_is_fatal(tmp_path: Path) -> None:
    out = tmp_path / "out.jsonl"
    pipeline = TransformPipeline(
        source=_source(["1", "2"]),
        sink=JSONLRecordSink(out),
        script=compile_script("row = {'bad': object()} if row == 2 else row"),
    )
    with pytest.raises(EncodeError):
        pipeline.run()
    assert not out.exists()


def test_pipeline_logs_summary(tmp_path: Path, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="rowforge.core.pipeline"):
        TransformPipeline(
            source=_source(["1", "2"]),
            sink=JSONLRecordSink(tmp_path / "out.jsonl"),
            script=compile_script("pass"),
        ).run()
    assert "Transform summary: mode=sequential lanes=1 read=2 written=2 dropped=0" in caplog.text


def test_run_report_as_dict() -> None:
    report = RunReport(uri="file:///tmp/out.jsonl", count=4)
    assert report.as_dict() == {"uri": "file:///tmp/out.jsonl", "records": 4}


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


def test_pipeline_close_failure_is_a_failed_run(tmp_path: Path, caplog) -> None:
    pipeline = TransformPipeline(
        source=_source(["1", "2"]),
        sink=FlushFailingSink(tmp_path / "out.jsonl"),
        script=compile_script("pass"),
    )
    with caplog.at_level(logging.WARNING, logger="rowforge.core.pipeline"):
        with pytest.raises(OSError, match="disk full"):
            pipeline.run()

    assert list(tmp_path.iterdir()) == []
    assert "Transform run failed" in caplog.text


def test_pipeline_rejects_non_finite_input_as_decode_error(tmp_path: Path) -> None:
    out = tmp_path / "out.jsonl"
    pipeline = TransformPipeline(
        source=_source(["1", "NaN"]),
        sink=JSONLRecordSink(out),
        script=compile_script("pass"),
    )
    with pytest.raises(DecodeError, match="mem.jsonl:#2"):
        pipeline.run()
    assert not out.exists()
