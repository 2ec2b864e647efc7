# sinks.py
# SPDX-License-Identifier: MIT
"""Sinks that serialize transformed records to JSONL files."""
from __future__ import annotations

import gzip
import os
import threading
from pathlib import Path
from typing import Self, TextIO

from ..core.codec import Record, encode_record
from ..core.log import get_logger

log = get_logger(__name__)


class _BaseJSONLRecordSink:
    """Shared JSONL sink logic: temp file, locked writes, single close."""

    def __init__(self, out_path: str | os.PathLike[str]):
        """Configure a JSONL sink.

        Args:
            out_path (str | os.PathLike[str]): Destination file path. Output
                goes to ``<out_path>.tmp`` until :meth:`close` succeeds.
        """
        self._path = Path(out_path)
        self._fp: TextIO | None = None
        self._tmp_path: Path | None = None
        self._lock = threading.Lock()
        self._closed = False
        self.count = 0

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        """Create the temp file that receives records."""
        if self._fp is not None or self._closed:
            raise RuntimeError(f"Sink for {self._path} cannot be reopened")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tmp_path = self._path.parent / f"{self._path.name}.tmp"
        self._fp = self._open_handle(self._tmp_path)

    def write(self, record: Record) -> None:
        """Serialize one record and count it.

        Encoding happens before the lock is taken so a bad record never
        leaves a partial line behind.

        Raises:
            EncodeError: If the record cannot be serialized.
        """
        line = encode_record(record)
        with self._lock:
            if self._fp is None:
                raise RuntimeError(f"Sink for {self._path} is not open")
            self._fp.write(line)
            self.count += 1

    def close(self) -> None:
        """Flush, close, and move the temp file into place. Idempotent.

        If flushing or closing fails the temp file is deleted before the
        error propagates, so a failed close never leaves partial output.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            fp, self._fp = self._fp, None
        if fp is None:
            return
        try:
            try:
                fp.flush()
            finally:
                fp.close()
            if self._tmp_path:
                os.replace(self._tmp_path, self._path)
                self._tmp_path = None
        except BaseException:
            if self._tmp_path is not None:
                self._tmp_path.unlink(missing_ok=True)
                self._tmp_path = None
            raise

    def abort(self) -> None:
        """Close the handle and delete partial output."""
        with self._lock:
            self._closed = True
            fp, self._fp = self._fp, None
        if fp is not None:
            try:
                fp.close()
            except OSError as exc:
                log.debug("Ignoring close failure while aborting %s: %s", self._path, exc)
        if self._tmp_path is not None:
            self._tmp_path.unlink(missing_ok=True)
            self._tmp_path = None
        log.debug("Discarded partial output for %s after %d records", self._path, self.count)

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Close on success, abort on error."""
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def _open_handle(self, path: Path) -> TextIO:
        """Return a write handle for a fresh file path."""
        raise NotImplementedError


class JSONLRecordSink(_BaseJSONLRecordSink):
    """Streaming JSONL sink (one record per line)."""

    def _open_handle(self, path: Path) -> TextIO:
        return open(path, "w", encoding="utf-8", newline="")


class GzipJSONLRecordSink(_BaseJSONLRecordSink):
    """Streaming JSONL sink that gzip-compresses its output."""

    def _open_handle(self, path: Path) -> TextIO:
        return gzip.open(path, "wt", encoding="utf-8", newline="")


def make_record_sink(out_path: str | os.PathLike[str]) -> _BaseJSONLRecordSink:
    """Pick the sink class from the destination suffix."""
    if str(out_path).lower().endswith(".gz"):
        return GzipJSONLRecordSink(out_path)
    return JSONLRecordSink(out_path)


__all__ = ["JSONLRecordSink", "GzipJSONLRecordSink", "make_record_sink"]
