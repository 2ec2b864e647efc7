# SPDX-License-Identifier: MIT
"""Orchestration helpers that bridge configuration, host context, and task."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .config import RowforgeConfig
from .context import LocalRunContext
from .engines import EngineRegistry
from .task import FileTransform, FileTransformOutput

__all__ = ["build_task", "build_context", "run_transform"]


def build_task(config: RowforgeConfig, *, variables: Mapping[str, Any] | None = None) -> FileTransform:
    """Translate a declarative config into a :class:`FileTransform`.

    ``variables`` override ``transform.variables`` in the script scope.
    """
    tc = config.transform
    merged = dict(tc.variables)
    merged.update(variables or {})
    return FileTransform(
        from_=tc.from_,
        script=tc.resolve_script(),
        engine=tc.engine,
        concurrent=tc.concurrent,
        queue_size=tc.queue_size,
        variables=merged,
        max_line_chars=tc.max_line_chars,
        compress=tc.compress,
    )


def build_context(
    config: RowforgeConfig,
    *,
    variables: Mapping[str, Any] | None = None,
) -> LocalRunContext:
    """Create a local host; ``variables`` override ``transform.variables``."""
    merged = dict(config.transform.variables)
    merged.update(variables or {})
    return LocalRunContext(
        variables=merged,
        storage_dir=config.storage.output_dir,
        temp_dir=config.storage.temp_dir,
    )


def run_transform(
    *,
    config: RowforgeConfig,
    variables: Mapping[str, Any] | None = None,
    context: LocalRunContext | None = None,
    registry: EngineRegistry | None = None,
) -> FileTransformOutput:
    """Run the transform described by ``config``.

    Args:
        config (RowforgeConfig): Run configuration; validated first.
        variables (Mapping[str, Any] | None): Extra template and script
            variables.
        context (LocalRunContext | None): Host to use instead of one built
            from ``config.storage``.
        registry (EngineRegistry | None): Engine registry override.

    Returns:
        FileTransformOutput: Output URI, run report, and stats.
    """
    config.validate()
    task = build_task(config, variables=variables)
    ctx = context if context is not None else build_context(config, variables=variables)
    return task.run(ctx, registry=registry)
