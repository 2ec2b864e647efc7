# interfaces.py
# SPDX-License-Identifier: MIT
"""Interfaces and protocols shared by engines, sinks, and run hosts."""

from __future__ import annotations

from collections.abc import Iterator, MutableMapping
from typing import IO, Any, Protocol, runtime_checkable

from .codec import Record

__all__ = [
    "ROW_SLOT",
    "BindingScope",
    "CompiledProgram",
    "ScriptEngine",
    "RecordSource",
    "RecordSink",
    "RunContext",
]

# Name of the scope slot that carries a record into and out of a script.
ROW_SLOT = "row"

# Per-invocation mutable name -> value mapping; never shared across lanes.
BindingScope = MutableMapping[str, Any]

# Engine-specific executable form of a script; must be safe to invoke
# concurrently from several lanes.
CompiledProgram = Any


@runtime_checkable
class ScriptEngine(Protocol):
    """A scripting backend that compiles once and evaluates many times."""

    id: str

    def compile(self, source: str) -> CompiledProgram:
        """Compile script source into a reusable program.

        Raises:
            ConfigurationError: If the source does not compile.
        """
        ...

    def new_scope(self) -> BindingScope:
        """Return a fresh, empty binding scope."""
        ...

    def evaluate(self, program: CompiledProgram, scope: BindingScope) -> None:
        """Run ``program`` against ``scope``, mutating it in place."""
        ...


class RecordSource(Protocol):
    """Single-pass producer of decoded records."""

    def iter_records(self) -> Iterator[Record]:
        ...


class RecordSink(Protocol):
    """Destination that serializes records one at a time."""

    count: int

    def open(self) -> None:
        ...

    def write(self, record: Record) -> None:
        ...

    def close(self) -> None:
        """Flush and close the destination after a successful run."""
        ...

    def abort(self) -> None:
        """Discard partial output after a failed run."""
        ...


class RunContext(Protocol):
    """Host collaborator that owns locations, temp files, and metrics."""

    def render(self, template: str) -> str:
        """Expand host variables inside ``template``."""
        ...

    def open_uri(self, uri: str) -> IO[bytes]:
        """Open a readable byte stream for ``uri``."""
        ...

    def new_temp_path(self, prefix: str, suffix: str) -> str:
        """Allocate a writable local path for run output."""
        ...

    def put_temp_file(self, path: str) -> str:
        """Register a finished temp file and return its URI."""
        ...

    def metric(self, name: str, value: int, **tags: str) -> None:
        """Emit a counter metric."""
        ...
