# jsonl_source.py
# SPDX-License-Identifier: MIT

"""JSONL source that lazily yields decoded records from a byte stream."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import IO, Any

from ..core.codec import DEFAULT_MAX_LINE_CHARS, Record, iter_decode
from ..core.log import get_logger

log = get_logger(__name__)

__all__ = ["JSONLReadPolicy", "JSONLRecordSource"]


@dataclass
class JSONLReadPolicy:
    """Limits applied while reading records."""

    max_line_chars: int | None = DEFAULT_MAX_LINE_CHARS


@dataclass
class JSONLRecordSource:
    """Reads one record per line from an already opened stream.

    The source is single-pass: the underlying stream is consumed as records
    are pulled, so :meth:`iter_records` may only be called once. Malformed
    lines raise :class:`~rowforge.core.errors.DecodeError`; nothing is
    skipped.

    Attributes:
        stream (IO): Binary or text stream positioned at the first record.
        label (str | None): Location used in log and error messages.
        read_policy (JSONLReadPolicy): Line size limits.
    """

    stream: IO[Any]
    label: str | None = None
    read_policy: JSONLReadPolicy = field(default_factory=JSONLReadPolicy)
    records_read: int = field(default=0, init=False)
    _consumed: bool = field(default=False, init=False, repr=False)

    def iter_records(self) -> Iterator[Record]:
        """Yield records in stream order.

        Raises:
            RuntimeError: On a second call.
            DecodeError: On the first malformed line.
        """
        if self._consumed:
            raise RuntimeError(f"JSONL source {self.label or '<stream>'} has already been read")
        self._consumed = True
        return self._generate()

    def _generate(self) -> Iterator[Record]:
        for record in iter_decode(
            self.stream,
            source=self.label,
            max_line_chars=self.read_policy.max_line_chars,
        ):
            self.records_read += 1
            yield record
        log.debug("Finished %s: read=%d", self.label or "<stream>", self.records_read)
