# task.py
# SPDX-License-Identifier: MIT
"""The file-transform task: one source file in, one transformed file out.

Each row of the source becomes the ``row`` variable of the script. The
script may replace ``row`` or set it to ``None`` to skip the row; whatever
``row`` holds afterwards is written to the output file.

With ``concurrent`` set, rows are transformed on several lanes at once and
the output order is **not** the input order.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..sinks.sinks import make_record_sink
from ..sources.jsonl_source import JSONLReadPolicy, JSONLRecordSource
from .codec import DEFAULT_MAX_LINE_CHARS
from .concurrency import DispatchConfig
from .engines import EngineRegistry, PythonScriptEngine, compile_script
from .errors import ConfigurationError
from .interfaces import RunContext
from .log import get_logger
from .pipeline import PipelineStats, RunReport, TransformPipeline

log = get_logger(__name__)

__all__ = ["FileTransform", "FileTransformOutput", "RECORDS_METRIC"]

RECORDS_METRIC = "records"
_TEMP_PREFIX = "filetransform_"
_TEMP_SUFFIX = ".jsonl"


@dataclass(frozen=True, slots=True)
class FileTransformOutput:
    """What a successful task hands back to its host."""

    uri: str
    report: RunReport
    stats: PipelineStats


@dataclass
class FileTransform:
    """Transform a JSONL file row by row with a script.

    Attributes:
        from_ (str): Source location; templates are expanded by the host.
        script (str): Script body; templates are expanded by the host.
        engine (str): Script engine id.
        concurrent (int | None): Lane count (>= 2) or None for sequential.
        queue_size (int | None): Backpressure window for parallel mode.
        variables (Mapping[str, Any]): Extra names bound in every scope.
        max_line_chars (int | None): Reject input lines longer than this.
        compress (bool): Gzip the output file.
    """

    from_: str
    script: str
    engine: str = PythonScriptEngine.id
    concurrent: int | None = None
    queue_size: int | None = None
    variables: Mapping[str, Any] = field(default_factory=dict)
    max_line_chars: int | None = DEFAULT_MAX_LINE_CHARS
    compress: bool = False

    def validate(self) -> None:
        """Reject unusable settings before any record is read."""
        if not self.from_ or not str(self.from_).strip():
            raise ConfigurationError("from_ must name a source file")
        if not self.script or not self.script.strip():
            raise ConfigurationError("script must not be empty")
        self.dispatch_config().validate()

    def dispatch_config(self) -> DispatchConfig:
        return DispatchConfig(concurrent=self.concurrent, queue_size=self.queue_size)

    def run(self, context: RunContext, *, registry: EngineRegistry | None = None) -> FileTransformOutput:
        """Execute the task against ``context``.

        On failure nothing is registered, no metric is emitted, and the
        temp file is removed before the error propagates.

        Raises:
            ConfigurationError: Invalid settings or script compile failure.
            DecodeError, ScriptEvaluationError, EncodeError: Run failures.
        """
        self.validate()
        source_uri = context.render(self.from_)
        script = compile_script(
            context.render(self.script),
            self.engine,
            registry=registry,
            variables=self.variables,
        )

        suffix = _TEMP_SUFFIX + (".gz" if self.compress else "")
        temp_path = context.new_temp_path(_TEMP_PREFIX, suffix)
        log.debug("Transforming %s into %s (engine=%s)", source_uri, temp_path, script.engine.id)
        try:
            with context.open_uri(source_uri) as stream:
                pipeline = TransformPipeline(
                    source=JSONLRecordSource(
                        stream,
                        label=source_uri,
                        read_policy=JSONLReadPolicy(max_line_chars=self.max_line_chars),
                    ),
                    sink=make_record_sink(temp_path),
                    script=script,
                    dispatch=self.dispatch_config(),
                )
                stats = pipeline.run()
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise

        context.metric(RECORDS_METRIC, stats.written)
        uri = context.put_temp_file(temp_path)
        report = RunReport(uri=uri, count=stats.written)
        return FileTransformOutput(uri=uri, report=report, stats=stats)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> FileTransform:
        """Build a task from a plain mapping such as a config table.

        ``from`` is accepted as an alias of ``from_``.
        """
        data = dict(options)
        if "from" in data:
            data["from_"] = data.pop("from")
        script_path = data.pop("script_path", None)
        if script_path and not data.get("script"):
            data["script"] = Path(os.fspath(script_path)).read_text(encoding="utf-8")
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown file transform options: {unknown}")
        return cls(**data)
