# context.py
# SPDX-License-Identifier: MIT
"""Local implementation of the run host: templates, files, and metrics."""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from jinja2 import StrictUndefined, TemplateSyntaxError, UndefinedError
from jinja2.exceptions import SecurityError
from jinja2.sandbox import SandboxedEnvironment

from .codec import open_binary_input
from .errors import ConfigurationError
from .log import get_logger

log = get_logger(__name__)

__all__ = ["LocalRunContext", "uri_to_path"]


def uri_to_path(uri: str) -> Path:
    """Resolve a ``file://`` URI or a plain local path.

    Raises:
        ConfigurationError: For any other URI scheme.
    """
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        if parsed.netloc not in ("", "localhost"):
            raise ConfigurationError(f"Remote file URIs are not supported: {uri!r}")
        return Path(url2pathname(unquote(parsed.path)))
    # Single-letter schemes are Windows drive letters, not URI schemes.
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ConfigurationError(f"Unsupported URI scheme {parsed.scheme!r} in {uri!r}")
    return Path(uri)


def _default_storage_dir() -> Path:
    return Path(tempfile.gettempdir()) / "rowforge" / "storage"


@dataclass
class LocalRunContext:
    """Run host backed by the local filesystem.

    Attributes:
        variables (Mapping[str, Any]): Values available to ``{{ ... }}``
            templates in locations and scripts.
        storage_dir (Path | None): Directory that receives registered temp
            files. Defaults to ``<tmp>/rowforge/storage``.
        temp_dir (Path | None): Directory for in-progress output. Defaults
            to a fresh directory under the system temp location.
        metrics (dict[str, int]): Counters emitted during the run.
    """

    variables: Mapping[str, Any] = field(default_factory=dict)
    storage_dir: Path | None = None
    temp_dir: Path | None = None
    metrics: dict[str, int] = field(default_factory=dict)
    _env: SandboxedEnvironment = field(init=False, repr=False)
    _metrics_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self._env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)
        self.storage_dir = Path(self.storage_dir or _default_storage_dir())
        if self.temp_dir is not None:
            self.temp_dir = Path(self.temp_dir)

    def render(self, template: str) -> str:
        """Expand ``{{ var }}`` placeholders using :attr:`variables`.

        Raises:
            ConfigurationError: For syntax errors, undefined variables, or
                sandbox violations.
        """
        if "{{" not in template and "{%" not in template:
            return template
        try:
            return self._env.from_string(template).render(**dict(self.variables))
        except TemplateSyntaxError as exc:
            raise ConfigurationError(f"Invalid template syntax: {exc}") from exc
        except UndefinedError as exc:
            raise ConfigurationError(f"Undefined template variable: {exc}") from exc
        except SecurityError as exc:
            raise ConfigurationError(f"Template sandbox violation: {exc}") from exc

    def open_uri(self, uri: str) -> IO[bytes]:
        path = uri_to_path(uri)
        if not path.is_file():
            raise ConfigurationError(f"Source file not found: {uri}")
        return open_binary_input(path)

    def new_temp_path(self, prefix: str, suffix: str) -> str:
        base = self.temp_dir
        if base is None:
            base = self.temp_dir = Path(tempfile.mkdtemp(prefix="rowforge_"))
        base.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=base)
        os.close(fd)
        return name

    def put_temp_file(self, path: str) -> str:
        """Move a finished temp file into storage and return its URI."""
        src = Path(path)
        storage = Path(self.storage_dir or _default_storage_dir())
        storage.mkdir(parents=True, exist_ok=True)
        dest = storage / src.name
        shutil.move(str(src), dest)
        uri = dest.resolve().as_uri()
        log.debug("Registered %s as %s", src, uri)
        return uri

    def metric(self, name: str, value: int, **tags: str) -> None:
        with self._metrics_lock:
            self.metrics[name] = self.metrics.get(name, 0) + int(value)
        if tags:
            log.info("metric %s=%d %s", name, value, " ".join(f"{k}={v}" for k, v in sorted(tags.items())))
        else:
            log.info("metric %s=%d", name, value)
