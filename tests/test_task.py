from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest

from rowforge.core.context import LocalRunContext, uri_to_path
from rowforge.core.errors import ConfigurationError, DecodeError, ScriptEvaluationError
from rowforge.core.task import RECORDS_METRIC, FileTransform


def _write_jsonl(path: Path, records: list) -> Path:
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")
    return path


def _context(tmp_path: Path, **variables) -> LocalRunContext:
    return LocalRunContext(
        variables=variables,
        storage_dir=tmp_path / "store",
        temp_dir=tmp_path / "tmp",
    )


def _read_uri(uri: str) -> list:
    path = uri_to_path(uri)
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "rt", encoding="utf-8") as fp:
        return [json.loads(line) for line in fp.read().splitlines()]


def test_file_transform_drops_rows_and_reports_count(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", [1, 2, 3, 4, 5])
    ctx = _context(tmp_path)

    output = FileTransform(from_=str(src), script="row = None if row == 3 else row").run(ctx)

    assert output.uri.startswith("file://")
    assert Path(uri_to_path(output.uri)).name.startswith("filetransform_")
    assert _read_uri(output.uri) == [1, 2, 4, 5]
    assert output.report.count == 4
    assert ctx.metrics == {RECORDS_METRIC: 4}


def test_file_transform_two_lanes_keep_the_same_records(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", [1, 2, 3, 4, 5])
    ctx = _context(tmp_path)

    output = FileTransform(from_=str(src), script="row = None if row == 3 else row", concurrent=2).run(ctx)

    assert sorted(_read_uri(output.uri)) == [1, 2, 4, 5]
    assert output.report.count == 4
    assert output.stats.mode == "parallel"


def test_file_transform_empty_source_reports_zero(tmp_path: Path) -> None:
    src = tmp_path / "in.jsonl"
    src.write_text("", encoding="utf-8")
    ctx = _context(tmp_path)

    output = FileTransform(from_=src.as_uri(), script="pass").run(ctx)

    assert _read_uri(output.uri) == []
    assert output.report.count == 0
    assert ctx.metrics == {RECORDS_METRIC: 0}


def test_file_transform_failure_emits_nothing_and_cleans_up(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", [1, 2, 3, 4, 5])
    ctx = _context(tmp_path)
    task = FileTransform(from_=str(src), script="if row == 4:\n    raise RuntimeError('four')")

    with pytest.raises(ScriptEvaluationError):
        task.run(ctx)

    assert ctx.metrics == {}
    assert not (tmp_path / "store").exists()
    assert list((tmp_path / "tmp").iterdir()) == []


def test_file_transform_parallel_failure_cleans_up(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", list(range(200)))
    ctx = _context(tmp_path)
    task = FileTransform(from_=str(src), script="row = 1 / (row - 50)", concurrent=3)

    with pytest.raises(ScriptEvaluationError, match="ZeroDivisionError"):
        task.run(ctx)

    assert ctx.metrics == {}
    assert list((tmp_path / "tmp").iterdir()) == []


def test_file_transform_decode_failure(tmp_path: Path) -> None:
    src = tmp_path / "in.jsonl"
    src.write_text('1\n{"a":\n3\n', encoding="utf-8")
    ctx = _context(tmp_path)

    with pytest.raises(DecodeError) as excinfo:
        FileTransform(from_=str(src), script="pass").run(ctx)

    assert excinfo.value.lineno == 2
    assert ctx.metrics == {}


@pytest.mark.parametrize("concurrent", [1, 0, -2])
def test_file_transform_rejects_bad_concurrency_before_reading(tmp_path: Path, concurrent: int) -> None:
    ctx = _context(tmp_path)
    task = FileTransform(from_=str(tmp_path / "missing.jsonl"), script="pass", concurrent=concurrent)

    with pytest.raises(ConfigurationError, match="concurrent"):
        task.run(ctx)

    assert not (tmp_path / "tmp").exists()


def test_file_transform_rejects_empty_script(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        FileTransform(from_="in.jsonl", script="  ").validate()


def test_file_transform_parallel_output_matches_sequential(tmp_path: Path) -> None:
    records = [{"id": i, "v": i * 2} for i in range(250)]
    src = _write_jsonl(tmp_path / "in.jsonl", records)
    script = "row = None if row['id'] % 7 == 0 else {'id': row['id'], 'sum': row['id'] + row['v']}"

    seq = FileTransform(from_=str(src), script=script).run(_context(tmp_path / "a"))
    par = FileTransform(from_=str(src), script=script, concurrent=4, queue_size=3).run(_context(tmp_path / "b"))

    seq_rows = _read_uri(seq.uri)
    par_rows = _read_uri(par.uri)
    assert par.report.count == seq.report.count
    assert sorted(par_rows, key=lambda r: r["id"]) == seq_rows


def test_file_transform_renders_templates(tmp_path: Path) -> None:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    _write_jsonl(data_dir / "in.jsonl", [{"n": 1}, {"n": 2}])
    ctx = _context(tmp_path, data_dir=str(data_dir), factor=5)

    output = FileTransform(
        from_="{{ data_dir }}/in.jsonl",
        script="row = row['n'] * {{ factor }}",
    ).run(ctx)

    assert _read_uri(output.uri) == [5, 10]


def test_file_transform_binds_task_variables(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", [1, 20, 3])
    ctx = _context(tmp_path)

    output = FileTransform(
        from_=str(src),
        script="row = row if row >= threshold else None",
        variables={"threshold": 10},
    ).run(ctx)

    assert _read_uri(output.uri) == [20]


def test_file_transform_expression_engine(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", [{"id": 1, "skip": False}, {"id": 2, "skip": True}])
    ctx = _context(tmp_path)

    output = FileTransform(
        from_=str(src),
        script="none if row.skip else {'id': row.id, 'label': 'item-' ~ row.id}",
        engine="expression",
    ).run(ctx)

    assert _read_uri(output.uri) == [{"id": 1, "label": "item-1"}]


def test_file_transform_compressed_output(tmp_path: Path) -> None:
    src = _write_jsonl(tmp_path / "in.jsonl", [{"a": 1}])
    output = FileTransform(from_=str(src), script="pass", compress=True).run(_context(tmp_path))
    assert output.uri.endswith(".jsonl.gz")
    assert _read_uri(output.uri) == [{"a": 1}]


def test_file_transform_reads_gzip_source(tmp_path: Path) -> None:
    src = tmp_path / "in.jsonl.gz"
    with gzip.open(src, "wt", encoding="utf-8") as fp:
        fp.write('{"a": 1}\n{"a": 2}\n')
    output = FileTransform(from_=str(src), script="row = row['a']").run(_context(tmp_path))
    assert _read_uri(output.uri) == [1, 2]


def test_from_options_accepts_alias_and_script_path(tmp_path: Path) -> None:
    script = tmp_path / "script.py"
    script.write_text("row = None\n", encoding="utf-8")
    task = FileTransform.from_options({"from": "in.jsonl", "script_path": str(script), "concurrent": 2})
    assert task.from_ == "in.jsonl"
    assert task.script == "row = None\n"
    assert task.concurrent == 2


def test_from_options_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigurationError, match="parallelism"):
        FileTransform.from_options({"from": "in.jsonl", "script": "pass", "parallelism": 2})
