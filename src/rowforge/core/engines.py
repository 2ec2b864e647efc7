# engines.py
# SPDX-License-Identifier: MIT
"""Script engines and the registry used to look them up by id.

Two engines ship with rowforge:

- ``python``: the script is a Python statement block executed with the
  record bound to ``row``. Assigning ``row = None`` drops the record.
- ``expression``: the script is a single Jinja2 expression evaluated in a
  sandbox; its value replaces ``row``.

Additional engines are discovered from the ``rowforge.engines`` entry-point
group. Each entry point must resolve to a zero-argument callable (usually
the engine class) returning an object that satisfies
:class:`~rowforge.core.interfaces.ScriptEngine`.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from importlib import metadata
from typing import Any, cast

from jinja2 import StrictUndefined, TemplateSyntaxError, Undefined
from jinja2.sandbox import SandboxedEnvironment

from .errors import ConfigurationError
from .interfaces import ROW_SLOT, BindingScope, CompiledProgram, ScriptEngine
from .log import get_logger

log = get_logger(__name__)

__all__ = [
    "ENGINE_ENTRYPOINT_GROUP",
    "PythonScriptEngine",
    "ExpressionScriptEngine",
    "EngineRegistry",
    "CompiledScript",
    "compile_script",
    "default_engine_registry",
    "load_entrypoint_engines",
]

ENGINE_ENTRYPOINT_GROUP = "rowforge.engines"


class PythonScriptEngine:
    """Execute Python statement blocks against a dict scope."""

    id = "python"

    def compile(self, source: str) -> CompiledProgram:
        try:
            return compile(source, "<rowforge-script>", "exec")
        except SyntaxError as exc:
            raise ConfigurationError(f"python script does not compile: {exc}") from exc

    def new_scope(self) -> BindingScope:
        return {}

    def evaluate(self, program: CompiledProgram, scope: BindingScope) -> None:
        # exec needs a real dict for globals.
        exec(program, cast(dict, scope))


class ExpressionScriptEngine:
    """Evaluate a sandboxed Jinja2 expression; the result replaces ``row``.

    The expression sees every scope variable by name, so ``row`` and any
    configured variables are available. ``none`` drops the record.
    """

    id = "expression"

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)

    def compile(self, source: str) -> CompiledProgram:
        try:
            return self._env.compile_expression(source.strip(), undefined_to_none=False)
        except TemplateSyntaxError as exc:
            raise ConfigurationError(f"expression does not compile: {exc}") from exc

    def new_scope(self) -> BindingScope:
        return {}

    def evaluate(self, program: CompiledProgram, scope: BindingScope) -> None:
        value = program(**scope)
        if isinstance(value, Undefined):
            value._fail_with_undefined_error()
        scope[ROW_SLOT] = value


@dataclass
class EngineRegistry:
    """Registry for script engines keyed by their ids."""

    _engines: dict[str, ScriptEngine] = field(default_factory=dict)

    def register(self, engine: ScriptEngine, *, replace: bool = False) -> None:
        """Register an engine instance under ``engine.id``."""
        engine_id = getattr(engine, "id", None)
        if not isinstance(engine_id, str) or not engine_id:
            raise ValueError(f"Script engine {engine!r} has no id")
        if not replace and engine_id in self._engines:
            raise ValueError(f"Script engine {engine_id!r} is already registered")
        self._engines[engine_id] = engine

    def get(self, engine_id: str) -> ScriptEngine:
        """Return the engine for ``engine_id``.

        Raises:
            ConfigurationError: If no engine is registered under that id.
        """
        key = (engine_id or "").strip().lower()
        engine = self._engines.get(key)
        if engine is None:
            raise ConfigurationError(
                f"Unknown script engine {engine_id!r}; expected one of {sorted(self._engines)}"
            )
        return engine

    def ids(self) -> list[str]:
        return sorted(self._engines)

    def __contains__(self, engine_id: object) -> bool:
        return engine_id in self._engines


def load_entrypoint_engines(registry: EngineRegistry, *, group: str = ENGINE_ENTRYPOINT_GROUP) -> None:
    """Discover engines from entry points and register them.

    Failures are logged and skipped so a broken plugin never hides the
    built-in engines.
    """
    try:
        entry_points = metadata.entry_points()
    except Exception as exc:  # pragma: no cover - importlib.metadata safety
        log.debug("Engine discovery skipped: %s", exc)
        return

    eps: Sequence[metadata.EntryPoint]
    if hasattr(entry_points, "select"):
        eps = cast(Sequence[metadata.EntryPoint], entry_points.select(group=group))
    else:
        grouped = cast(Mapping[str, Sequence[metadata.EntryPoint]], entry_points)
        eps = grouped.get(group, ())
    for ep in eps:
        try:
            factory = ep.load()
        except Exception as exc:  # noqa: BLE001
            log.warning("Failed to import engine plugin %s: %s", ep.name, exc)
            continue
        try:
            registry.register(factory(), replace=True)
        except Exception as exc:  # noqa: BLE001
            log.warning("Engine plugin %s failed to register: %s", ep.name, exc)


def default_engine_registry(*, load_plugins: bool = True) -> EngineRegistry:
    """Return a registry with the built-in engines and any plugin engines."""
    registry = EngineRegistry()
    registry.register(PythonScriptEngine())
    registry.register(ExpressionScriptEngine())
    if load_plugins:
        load_entrypoint_engines(registry)
    return registry


@dataclass(frozen=True)
class CompiledScript:
    """A program compiled once per run plus the engine that evaluates it.

    Attributes:
        engine (ScriptEngine): Engine that compiled ``program``.
        program (CompiledProgram): Immutable, shareable executable.
        variables (Mapping[str, Any]): Values deep-copied into every new
            scope alongside ``row``, so a script that mutates one never
            affects another record or lane.
    """

    engine: ScriptEngine
    program: CompiledProgram
    variables: Mapping[str, Any] = field(default_factory=dict)

    def new_scope(self) -> BindingScope:
        scope = self.engine.new_scope()
        scope.update(copy.deepcopy(dict(self.variables)))
        return scope

    def evaluate(self, scope: BindingScope) -> None:
        self.engine.evaluate(self.program, scope)


def compile_script(
    source: str,
    engine_id: str = PythonScriptEngine.id,
    *,
    registry: EngineRegistry | None = None,
    variables: Mapping[str, Any] | None = None,
) -> CompiledScript:
    """Compile ``source`` with the engine registered as ``engine_id``.

    Raises:
        ConfigurationError: For an unknown engine or a script that does not
            compile.
    """
    if not source or not source.strip():
        raise ConfigurationError("script must not be empty")
    reg = registry if registry is not None else default_engine_registry()
    engine = reg.get(engine_id)
    program = engine.compile(source)
    log.debug("Compiled %d-char script with engine %s", len(source), engine.id)
    return CompiledScript(engine=engine, program=program, variables=dict(variables or {}))
