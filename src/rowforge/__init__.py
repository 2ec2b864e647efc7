# __init__.py
# SPDX-License-Identifier: MIT
"""
Top-level package exports for :mod:`rowforge`.

rowforge reads a JSONL file, runs every record through a script, and writes
the records the script keeps to a new JSONL file.

Public surface
--------------
The symbols listed in :data:`PRIMARY_API` are the supported surface and are
exported via :data:`__all__`. Most callers either:

- build a :class:`RowforgeConfig` (or load one with
  :func:`load_config_from_path`) and call :func:`run_transform`, or
- construct a :class:`FileTransform` directly and run it against a
  :class:`LocalRunContext`.

Ordering
--------
Without ``concurrent`` records are written in input order. With
``concurrent=N`` (N >= 2) records are transformed on N lanes and written in
completion order, which is arbitrary.

Examples:
    Drop every record whose ``status`` is ``"skip"``::

        >>> from rowforge import FileTransform, LocalRunContext
        >>> task = FileTransform(
        ...     from_="data/input.jsonl",
        ...     script='if row["status"] == "skip":\\n    row = None',
        ... )
        >>> out = task.run(LocalRunContext(storage_dir="out"))
        >>> out.report.count
"""

from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("rowforge")
except Exception:  # PackageNotFoundError or runtime env oddities
    __version__ = "0.0.0+unknown"

from .core.codec import decode_line, encode_record, iter_decode
from .core.concurrency import DispatchConfig, Dispatcher, dispatch_parallel, dispatch_sequential
from .core.config import (
    LoggingConfig,
    RowforgeConfig,
    StorageConfig,
    TransformConfig,
    load_config_from_path,
)
from .core.context import LocalRunContext
from .core.engines import (
    CompiledScript,
    EngineRegistry,
    ExpressionScriptEngine,
    PythonScriptEngine,
    compile_script,
    default_engine_registry,
)
from .core.errors import (
    ConfigurationError,
    DecodeError,
    EncodeError,
    RowforgeError,
    ScriptEvaluationError,
)
from .core.log import configure_logging, get_logger
from .core.pipeline import PipelineStats, RunReport, TransformPipeline
from .core.runner import run_transform
from .core.task import FileTransform, FileTransformOutput
from .core.transform import apply_transform
from .sinks.sinks import GzipJSONLRecordSink, JSONLRecordSink
from .sources.jsonl_source import JSONLRecordSource

PRIMARY_API = [
    "__version__",
    "RowforgeConfig",
    "TransformConfig",
    "StorageConfig",
    "LoggingConfig",
    "load_config_from_path",
    "run_transform",
    "FileTransform",
    "FileTransformOutput",
    "LocalRunContext",
    "RunReport",
    "PipelineStats",
    "TransformPipeline",
    "DispatchConfig",
    "Dispatcher",
    "dispatch_sequential",
    "dispatch_parallel",
    "apply_transform",
    "compile_script",
    "CompiledScript",
    "EngineRegistry",
    "PythonScriptEngine",
    "ExpressionScriptEngine",
    "default_engine_registry",
    "JSONLRecordSource",
    "JSONLRecordSink",
    "GzipJSONLRecordSink",
    "decode_line",
    "encode_record",
    "iter_decode",
    "RowforgeError",
    "DecodeError",
    "ScriptEvaluationError",
    "EncodeError",
    "ConfigurationError",
    "configure_logging",
    "get_logger",
]

__all__ = list(PRIMARY_API)
