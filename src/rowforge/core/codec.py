# codec.py
# SPDX-License-Identifier: MIT
"""Line-oriented JSON codec for records.

Each line of a stream holds one self-describing JSON value: a scalar, a
list, or an object. Decoding is lazy and single-pass; encoding produces one
compact line per record.
"""

from __future__ import annotations

import codecs
import datetime as _dt
import gzip
import io
import json
import math
from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path
from typing import IO, Any

from .errors import DecodeError, EncodeError

__all__ = [
    "Record",
    "DEFAULT_MAX_LINE_CHARS",
    "decode_line",
    "iter_decode",
    "encode_record",
    "is_gzip_path",
    "open_binary_input",
]

# Records are opaque structured values: scalars, lists, or mappings.
Record = Any

DEFAULT_MAX_LINE_CHARS = 16_000_000


def is_gzip_path(path: str | Path) -> bool:
    return str(path).lower().endswith(".gz")


def open_binary_input(path: str | Path) -> IO[bytes]:
    """Open a local file for reading, decompressing ``.gz`` transparently."""
    if is_gzip_path(path):
        return gzip.open(path, "rb")
    return open(path, "rb")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} is not allowed")


def _parse_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number {text} is out of range")
    return value


def decode_line(line: str, lineno: int | None = None, *, source: str | None = None) -> Record:
    """Decode one serialized line into a record.

    ``NaN``, ``Infinity`` and numbers that overflow a float are rejected, so
    everything accepted here can be encoded again.

    Raises:
        DecodeError: If the line is not valid JSON.
    """
    try:
        return json.loads(line, parse_constant=_reject_constant, parse_float=_parse_float)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid record: {exc.msg} (column {exc.colno})", lineno=lineno, source=source) from exc
    except ValueError as exc:
        raise DecodeError(f"invalid record: {exc}", lineno=lineno, source=source) from exc


def _numbered_lines(
    stream: IO[Any],
    *,
    source: str | None,
    max_line_chars: int | None,
) -> Iterator[tuple[int, str]]:
    """Yield ``(lineno, text)`` pairs from a binary or text stream.

    Reads at most ``max_line_chars + 1`` units per call, so an oversized
    line is rejected without buffering all of it. The line terminator does
    not count towards the limit.
    """
    read_limit = -1 if max_line_chars is None else max_line_chars + 1
    decoder = None if isinstance(stream, io.TextIOBase) else codecs.getincrementaldecoder("utf-8")()
    what = "text" if decoder is None else "UTF-8"
    lineno = 1
    pending = ""
    while True:
        try:
            chunk = stream.readline(read_limit)
            text = chunk if decoder is None or isinstance(chunk, str) else decoder.decode(chunk)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"input is not valid {what}: {exc.reason}", lineno=lineno, source=source) from exc
        if not chunk:
            break
        pending += text
        if max_line_chars is not None and len(pending.rstrip("\r\n")) > max_line_chars:
            raise DecodeError(f"line exceeds max_line_chars={max_line_chars}", lineno=lineno, source=source)
        if pending.endswith("\n"):
            yield lineno, pending
            lineno += 1
            pending = ""
    if decoder is not None:
        try:
            pending += decoder.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"input is not valid UTF-8: {exc.reason}", lineno=lineno, source=source) from exc
    if pending:
        yield lineno, pending


def iter_decode(
    stream: IO[Any],
    *,
    source: str | None = None,
    max_line_chars: int | None = DEFAULT_MAX_LINE_CHARS,
) -> Iterator[Record]:
    """Lazily decode records from ``stream``, one per non-blank line.

    Args:
        stream (IO): Binary or text stream positioned at the first record.
        source (str | None): Label used in error messages.
        max_line_chars (int | None): Lines longer than this, not counting
            the terminator, are rejected.

    Yields:
        Record: Decoded values in stream order.

    Raises:
        DecodeError: On malformed data. Iteration stops at the first error.
    """
    for lineno, raw in _numbered_lines(stream, source=source, max_line_chars=max_line_chars):
        line = raw.strip()
        if not line:
            continue
        yield decode_line(line, lineno, source=source)


def _encode_default(value: Any) -> Any:
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    raise TypeError(f"Object of type {type(value).__name__} is not serializable")


def encode_record(record: Record) -> str:
    """Serialize a record to a compact JSON line including the newline.

    Raises:
        EncodeError: If the record contains values JSON cannot represent.
    """
    try:
        text = json.dumps(
            record,
            ensure_ascii=False,
            separators=(",", ":"),
            allow_nan=False,
            default=_encode_default,
        )
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"cannot serialize record: {exc}") from exc
    return text + "\n"
