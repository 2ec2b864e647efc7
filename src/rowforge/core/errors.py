# errors.py
# SPDX-License-Identifier: MIT
"""Exception types raised by a transform run.

Every error is fatal to the run that raised it. ``kind`` gives callers a
stable short label for reporting without matching on class names.
"""

from __future__ import annotations

__all__ = [
    "RowforgeError",
    "DecodeError",
    "ScriptEvaluationError",
    "EncodeError",
    "ConfigurationError",
]


class RowforgeError(RuntimeError):
    """Base class for all run failures."""

    kind = "error"


class DecodeError(RowforgeError):
    """Raised when an input line is not a valid serialized record."""

    kind = "decode"

    def __init__(self, message: str, *, lineno: int | None = None, source: str | None = None) -> None:
        location = ""
        if source and lineno is not None:
            location = f"{source}:#{lineno}: "
        elif lineno is not None:
            location = f"line {lineno}: "
        super().__init__(f"{location}{message}")
        self.lineno = lineno
        self.source = source


class ScriptEvaluationError(RowforgeError):
    """Raised when the compiled script fails for a record."""

    kind = "script"

    def __init__(self, message: str, *, record: object = None) -> None:
        super().__init__(message)
        self.record = record


class EncodeError(RowforgeError):
    """Raised when a record cannot be serialized to the output stream."""

    kind = "encode"


class ConfigurationError(RowforgeError, ValueError):
    """Raised for invalid run settings before any record is processed."""

    kind = "config"
