# transform.py
# SPDX-License-Identifier: MIT
"""Per-record transform step: bind, evaluate, read back."""

from __future__ import annotations

import threading

from .codec import Record
from .engines import CompiledScript
from .errors import ScriptEvaluationError
from .interfaces import ROW_SLOT
from .log import get_logger

log = get_logger(__name__)

__all__ = ["apply_transform", "RecordTransformer"]


def _preview(record: Record, limit: int = 80) -> str:
    try:
        text = repr(record)
    except Exception:  # noqa: BLE001
        return "<unrepresentable>"
    return text if len(text) <= limit else text[: limit - 3] + "..."


def apply_transform(record: Record, script: CompiledScript) -> Record | None:
    """Run ``script`` for one record and return its replacement.

    A fresh scope is created for every call, so concurrent callers never
    share bindings. The record is dropped (``None`` returned) when the
    script leaves ``row`` unset or ``None``.

    Raises:
        ScriptEvaluationError: If the script raises for this record.
    """
    scope = script.new_scope()
    scope[ROW_SLOT] = record
    try:
        script.evaluate(scope)
    except Exception as exc:  # noqa: BLE001
        raise ScriptEvaluationError(
            f"{script.engine.id} script failed for record {_preview(record)}: "
            f"{type(exc).__name__}: {exc}",
            record=record,
        ) from exc
    return scope.get(ROW_SLOT)


class RecordTransformer:
    """Callable wrapper around :func:`apply_transform` with run counters.

    Counters are updated under a lock because parallel lanes share one
    transformer instance.
    """

    def __init__(self, script: CompiledScript) -> None:
        self.script = script
        self._lock = threading.Lock()
        self.evaluated = 0
        self.dropped = 0

    def __call__(self, record: Record) -> Record | None:
        result = apply_transform(record, self.script)
        with self._lock:
            self.evaluated += 1
            if result is None:
                self.dropped += 1
        return result
