# concurrency.py
# SPDX-License-Identifier: MIT
"""Sequential and multi-lane dispatch of records through a transform.

Sequential mode runs every record on the calling thread in input order.
Parallel mode wires three stages together with bounded queues::

    reader thread --inbox--> N lane threads --outbox--> calling thread (writer)

Both queues hold at most ``queue_size`` items, so a slow writer blocks the
lanes and slow lanes block the reader. Output order in parallel mode is
whatever order lanes finish in; callers must treat it as arbitrary.

Failure handling is fail-fast. The first exception raised by the reader, a
lane, or the writer is stored in an :class:`ErrorSlot`, which also sets a
shared cancellation event. Every stage checks the event at its loop boundary
and while waiting on a queue. A lane that is evaluating a record when the
event fires finishes that record and exits; its result, and anything still
queued, is discarded. The writer never writes after a failure is recorded.
"""
from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Literal

from .codec import Record
from .errors import ConfigurationError
from .log import get_logger

log = get_logger(__name__)

__all__ = [
    "DispatchConfig",
    "Dispatcher",
    "ErrorSlot",
    "dispatch_sequential",
    "dispatch_parallel",
]

Transform = Callable[[Record], Record | None]
Write = Callable[[Record], None]

_END = object()
_POLL_INTERVAL = 0.05
_QUEUE_SIZE_PER_LANE = 4


@dataclass(frozen=True)
class DispatchConfig:
    """Immutable dispatch settings for one run.

    Attributes:
        concurrent (int | None): Number of lanes. ``None`` selects
            sequential, order-preserving processing; otherwise it must be
            at least 2.
        queue_size (int | None): Capacity of each bounded queue in parallel
            mode. Defaults to four slots per lane and is never smaller than
            the lane count.
    """

    concurrent: int | None = None
    queue_size: int | None = None

    def validate(self) -> None:
        """Raise ConfigurationError for unusable settings."""
        lanes = self.concurrent
        if lanes is not None:
            if isinstance(lanes, bool) or not isinstance(lanes, int):
                raise ConfigurationError(f"concurrent must be an integer; got {lanes!r}")
            if lanes < 2:
                raise ConfigurationError(
                    f"concurrent must be >= 2 when set (omit it for sequential processing); got {lanes}"
                )
        if self.queue_size is not None and self.queue_size < 1:
            raise ConfigurationError(f"queue_size must be >= 1 when set; got {self.queue_size}")

    @property
    def mode(self) -> Literal["sequential", "parallel"]:
        return "sequential" if self.concurrent is None else "parallel"

    def resolved_queue_size(self) -> int:
        lanes = self.concurrent or 1
        size = self.queue_size or lanes * _QUEUE_SIZE_PER_LANE
        return max(size, lanes)


class ErrorSlot:
    """Single-slot holder for the first failure plus a cancellation event."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: BaseException | None = None
        self._origin: str | None = None
        self.cancelled = threading.Event()

    def offer(self, exc: BaseException, origin: str) -> bool:
        """Record ``exc`` if it is the first failure and cancel the run.

        Returns:
            bool: True when ``exc`` became the surfaced error.
        """
        with self._lock:
            first = self._error is None
            if first:
                self._error = exc
                self._origin = origin
        self.cancelled.set()
        if first:
            log.debug("Dispatch cancelled by %s: %s", origin, exc)
        else:
            log.debug("Discarding later failure from %s: %s", origin, exc)
        return first

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def origin(self) -> str | None:
        return self._origin

    def raise_if_set(self) -> None:
        if self._error is not None:
            raise self._error


def dispatch_sequential(records: Iterable[Record], transform: Transform, write: Write) -> int:
    """Transform and write records one at a time, in input order.

    Returns:
        int: Number of records handed to ``write``.
    """
    written = 0
    for record in records:
        result = transform(record)
        if result is None:
            continue
        write(result)
        written += 1
    return written


def dispatch_parallel(
    records: Iterable[Record],
    transform: Transform,
    write: Write,
    *,
    lanes: int,
    queue_size: int,
    poll_interval: float = _POLL_INTERVAL,
) -> int:
    """Fan records out across ``lanes`` worker threads; write on this thread.

    ``write`` is only ever called from the calling thread, so it needs no
    locking of its own. Results arrive in completion order.

    Args:
        records (Iterable[Record]): Single-pass input; consumed by a
            dedicated reader thread.
        transform (Transform): Per-record function; ``None`` drops.
        write (Write): Consumer for retained records.
        lanes (int): Number of worker threads (>= 2).
        queue_size (int): Capacity of the inbox and outbox queues.
        poll_interval (float): Seconds between cancellation checks while
            blocked on a queue.

    Returns:
        int: Number of records handed to ``write``.

    Raises:
        ConfigurationError: If ``lanes`` is below 2.
        BaseException: The first error raised by any stage.
    """
    if lanes < 2:
        raise ConfigurationError(f"parallel dispatch requires at least 2 lanes; got {lanes}")
    capacity = max(queue_size, lanes)
    inbox: queue.Queue[Any] = queue.Queue(maxsize=capacity)
    outbox: queue.Queue[Any] = queue.Queue(maxsize=capacity)
    slot = ErrorSlot()
    cancelled = slot.cancelled
    lane_counts = [0] * lanes

    def _put(q: queue.Queue[Any], item: Any) -> bool:
        while not cancelled.is_set():
            try:
                q.put(item, timeout=poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def _read() -> None:
        iterator = None
        try:
            iterator = iter(records)
            for record in iterator:
                if not _put(inbox, record):
                    return
            for _ in range(lanes):
                if not _put(inbox, _END):
                    return
        except BaseException as exc:  # noqa: BLE001
            slot.offer(exc, "reader")
        finally:
            close = getattr(iterator, "close", None)
            if callable(close):
                close()

    def _lane(index: int) -> None:
        try:
            while not cancelled.is_set():
                try:
                    item = inbox.get(timeout=poll_interval)
                except queue.Empty:
                    continue
                if item is _END:
                    _put(outbox, _END)
                    return
                result = transform(item)
                lane_counts[index] += 1
                if result is not None and not _put(outbox, result):
                    return
        except BaseException as exc:  # noqa: BLE001
            slot.offer(exc, f"lane-{index}")

    written = 0
    finished = 0
    reader = threading.Thread(target=_read, name="rowforge-reader", daemon=True)
    with ThreadPoolExecutor(max_workers=lanes, thread_name_prefix="rowforge-lane") as pool:
        reader.start()
        for index in range(lanes):
            pool.submit(_lane, index)
        try:
            while finished < lanes and not cancelled.is_set():
                try:
                    item = outbox.get(timeout=poll_interval)
                except queue.Empty:
                    continue
                if item is _END:
                    finished += 1
                    continue
                if cancelled.is_set():
                    break
                write(item)
                written += 1
        except BaseException as exc:  # noqa: BLE001
            slot.offer(exc, "writer")
    reader.join()

    log.debug(
        "Parallel dispatch finished: lanes=%d per_lane=%s written=%d failed_by=%s",
        lanes,
        lane_counts,
        written,
        slot.origin,
    )
    slot.raise_if_set()
    return written


class Dispatcher:
    """Run a transform over records in the mode selected by ``cfg``."""

    def __init__(self, cfg: DispatchConfig) -> None:
        cfg.validate()
        self.cfg = cfg

    @property
    def mode(self) -> Literal["sequential", "parallel"]:
        return self.cfg.mode

    def run(self, records: Iterable[Record], transform: Transform, write: Write) -> int:
        """Dispatch ``records`` and return how many were handed to ``write``."""
        if self.cfg.concurrent is None:
            return dispatch_sequential(records, transform, write)
        return dispatch_parallel(
            records,
            transform,
            write,
            lanes=self.cfg.concurrent,
            queue_size=self.cfg.resolved_queue_size(),
        )
