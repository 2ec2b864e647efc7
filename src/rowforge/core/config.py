# config.py
# SPDX-License-Identifier: MIT
"""Configuration models and helpers for rowforge runs.

This module defines declarative dataclasses for the transform, storage, and
logging settings of a run, along with helpers for serializing and loading
configurations from JSON and TOML.

TOML layout::

    [transform]
    from = "{{ data_dir }}/input.jsonl"
    engine = "python"
    concurrent = 4
    script = '''
    if row["status"] == "skip":
        row = None
    '''

    [transform.variables]
    threshold = 10

    [storage]
    output_dir = "out"

    [logging]
    level = "INFO"
"""
from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, Union, get_args, get_origin, get_type_hints

from .codec import DEFAULT_MAX_LINE_CHARS
from .errors import ConfigurationError
from .log import PACKAGE_LOGGER_NAME, configure_logging

T = TypeVar("T")


@dataclass(slots=True)
class TransformConfig:
    """Settings for the file transform itself.

    Attributes:
        from_ (str): Source location, ``from`` in TOML/JSON. Templates are
            expanded with ``variables`` and any host variables.
        script (str | None): Inline script body.
        script_path (str | None): File holding the script when ``script``
            is not given inline.
        engine (str): Script engine id (``python`` or ``expression`` unless
            a plugin adds more).
        concurrent (int | None): Number of lanes; at least 2 when set.
            Output order is not preserved when set.
        queue_size (int | None): Bounded queue capacity in parallel mode.
        max_line_chars (int | None): Reject input lines longer than this.
        compress (bool): Gzip the output file.
        variables (dict[str, Any]): Names bound in every script scope and
            available to templates.
    """
    from_: str = ""
    script: Optional[str] = None
    script_path: Optional[str] = None
    engine: str = "python"
    concurrent: Optional[int] = None
    queue_size: Optional[int] = None
    max_line_chars: Optional[int] = DEFAULT_MAX_LINE_CHARS
    compress: bool = False
    variables: Dict[str, Any] = field(default_factory=dict)

    def resolve_script(self) -> str:
        """Return the inline script or read ``script_path``."""
        if self.script:
            return self.script
        if self.script_path:
            return Path(self.script_path).read_text(encoding="utf-8")
        raise ConfigurationError("transform.script or transform.script_path is required")


@dataclass(slots=True)
class StorageConfig:
    """Where finished output files are registered.

    Attributes:
        output_dir (str | None): Storage directory; a per-user temp
            location is used when unset.
        temp_dir (str | None): Directory for in-progress output.
    """
    output_dir: Optional[str] = None
    temp_dir: Optional[str] = None


@dataclass(slots=True)
class LoggingConfig:
    """Logging configuration for rowforge runs."""
    level: str = "INFO"
    fmt: Optional[str] = None
    logger_name: str = PACKAGE_LOGGER_NAME

    def apply(self) -> None:
        """Configure the package logger using these settings."""
        configure_logging(level=self.level, fmt=self.fmt, logger_name=self.logger_name)


@dataclass(slots=True)
class RowforgeConfig:
    """Declarative settings for a rowforge run.

    Holds only serializable knobs; compiled scripts, open streams, and
    sinks are created per run and never stored here.
    """
    transform: TransformConfig = field(default_factory=TransformConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate the configuration for internal consistency.

        Raises:
            ConfigurationError: If ``transform.concurrent`` is set below 2,
                the source is missing, or no script is configured.
        """
        tc = self.transform
        if not tc.from_ or not tc.from_.strip():
            raise ConfigurationError("transform.from is required")
        if not tc.script and not tc.script_path:
            raise ConfigurationError("transform.script or transform.script_path is required")
        if tc.concurrent is not None and tc.concurrent < 2:
            raise ConfigurationError(
                f"transform.concurrent must be >= 2 when set; got {tc.concurrent}"
            )
        if tc.queue_size is not None and tc.queue_size < 1:
            raise ConfigurationError(f"transform.queue_size must be >= 1 when set; got {tc.queue_size}")

    # -------------------------
    # Serialization helpers
    # -------------------------
    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation of this configuration."""
        return _dataclass_to_dict(self)

    def to_json(self, path: Path | str, *, indent: int = 2) -> str:
        """Serialize the configuration to JSON and write it to disk.

        Returns:
            str: String path to the written file.
        """
        target = Path(path)
        target.write_text(json.dumps(self.to_dict(), indent=indent, sort_keys=True), encoding="utf-8")
        return str(target)

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any]) -> T:
        """Instantiate a RowforgeConfig from a mapping."""
        return _dataclass_from_dict(cls, data)

    @classmethod
    def from_json(cls: Type[T], path: Path | str) -> T:
        """Load a configuration from a JSON file."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, Mapping):
            raise ConfigurationError(f"Top-level JSON document must be an object; got {type(payload).__name__}.")
        return cls.from_dict(payload)

    @classmethod
    def from_toml(cls: Type[T], path: Path | str) -> T:
        """Load a configuration from a TOML file."""
        data = tomllib.loads(Path(path).read_bytes().decode("utf-8"))
        return cls.from_dict(data)


def load_config_from_path(path: str | Path) -> RowforgeConfig:
    """Load a RowforgeConfig from a JSON or TOML file.

    A relative ``transform.script_path`` is resolved against the config
    file's directory.

    Raises:
        ConfigurationError: If the file extension is not ``.toml`` or
            ``.json``.
    """
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".toml":
        cfg = RowforgeConfig.from_toml(p)
    elif suffix == ".json":
        cfg = RowforgeConfig.from_json(p)
    else:
        raise ConfigurationError(f"Unsupported config extension {p.suffix!r}; expected .toml or .json.")
    sp = cfg.transform.script_path
    if sp and not Path(sp).is_absolute():
        cfg.transform.script_path = str(p.parent / sp)
    return cfg


# Field names that differ from their serialized keys.
_FIELD_ALIASES: Dict[str, str] = {"from_": "from"}


def _dataclass_to_dict(obj: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if is_dataclass(value):
            value = _dataclass_to_dict(value)
        elif isinstance(value, Mapping):
            value = dict(value)
        if value is None:
            continue
        out[_FIELD_ALIASES.get(f.name, f.name)] = value
    return out


def _dataclass_from_dict(cls: Type[T], data: Mapping[str, Any] | None) -> T:
    """Instantiate a dataclass of type ``cls`` from a mapping.

    Unknown keys raise so typos in config files are not silently ignored.
    """
    if data is None:
        return cls()  # type: ignore[call-arg]
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Expected a table for {cls.__name__}; got {type(data).__name__}.")
    type_hints = get_type_hints(cls)
    known: Dict[str, str] = {}
    for f in fields(cls):  # type: ignore[arg-type]
        known[_FIELD_ALIASES.get(f.name, f.name)] = f.name
        known[f.name] = f.name
    unknown = sorted(k for k in data if k not in known)
    if unknown:
        raise ConfigurationError(f"Unknown {cls.__name__} keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        name = known[key]
        kwargs[name] = _coerce_value(type_hints.get(name), value)
    return cls(**kwargs)  # type: ignore[call-arg]


def _coerce_value(expected_type: Any, value: Any) -> Any:
    base_type = _strip_optional(expected_type)
    if value is None:
        return None
    if isinstance(base_type, type) and is_dataclass(base_type):
        return _dataclass_from_dict(base_type, value)
    if get_origin(base_type) is dict:
        return dict(value)
    if base_type is int:
        if isinstance(value, bool):
            raise ConfigurationError(f"Expected an integer; got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Expected an integer; got {value!r}") from exc
    if base_type in {str, bool}:
        return base_type(value)
    return value


def _strip_optional(typ: Any) -> Any:
    """Strip Optional from a type annotation."""
    if get_origin(typ) is Union:
        args = [arg for arg in get_args(typ) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return typ


__all__ = [
    "RowforgeConfig",
    "TransformConfig",
    "StorageConfig",
    "LoggingConfig",
    "load_config_from_path",
]
