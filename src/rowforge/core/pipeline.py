# pipeline.py
# SPDX-License-Identifier: MIT
"""Pipeline wiring: reader -> dispatcher(transform) -> writer."""

from __future__ import annotations

import time
from dataclasses import dataclass

from .concurrency import DispatchConfig, Dispatcher
from .engines import CompiledScript
from .interfaces import RecordSink, RecordSource
from .log import get_logger
from .transform import RecordTransformer

log = get_logger(__name__)

__all__ = ["RunReport", "PipelineStats", "TransformPipeline"]


@dataclass(frozen=True, slots=True)
class RunReport:
    """Result of a successful run: where the output went and how much."""

    uri: str
    count: int

    def as_dict(self) -> dict[str, object]:
        return {"uri": self.uri, "records": int(self.count)}


@dataclass(slots=True)
class PipelineStats:
    """Counters collected while a pipeline runs.

    ``written`` comes from the sink and is the number of records actually
    serialized, never the number read.
    """

    mode: str = "sequential"
    lanes: int = 1
    read: int = 0
    evaluated: int = 0
    dropped: int = 0
    written: int = 0
    elapsed_s: float = 0.0

    def as_dict(self) -> dict[str, object]:
        return {
            "mode": self.mode,
            "lanes": int(self.lanes),
            "read": int(self.read),
            "evaluated": int(self.evaluated),
            "dropped": int(self.dropped),
            "written": int(self.written),
            "elapsed_s": round(float(self.elapsed_s), 3),
        }


class TransformPipeline:
    """Execute one transform run against an opened source and sink.

    The sink is opened here and closed exactly once on success. On any
    failure it is aborted, so partial output is never exposed, and the
    original error propagates unchanged.
    """

    def __init__(
        self,
        *,
        source: RecordSource,
        sink: RecordSink,
        script: CompiledScript,
        dispatch: DispatchConfig | None = None,
    ) -> None:
        self.source = source
        self.sink = sink
        self.script = script
        self.dispatcher = Dispatcher(dispatch or DispatchConfig())
        self.stats = PipelineStats()
        self.log = get_logger(__name__)

    def run(self) -> PipelineStats:
        """Run the pipeline and return its stats.

        Raises:
            DecodeError, ScriptEvaluationError, EncodeError: The first
                failure observed in any stage.
        """
        cfg = self.dispatcher.cfg
        stats = self.stats = PipelineStats(mode=cfg.mode, lanes=cfg.concurrent or 1)
        transformer = RecordTransformer(self.script)
        started = time.monotonic()

        self.sink.open()
        try:
            self.dispatcher.run(self.source.iter_records(), transformer, self.sink.write)
            self.sink.close()
        except BaseException:
            self.sink.abort()
            self._collect(stats, transformer, started)
            self.log.warning(
                "Transform run failed: mode=%s lanes=%d read=%d evaluated=%d",
                stats.mode,
                stats.lanes,
                stats.read,
                stats.evaluated,
            )
            raise
        self._collect(stats, transformer, started)

        self.log.info(
            "Transform summary: mode=%s lanes=%d read=%d written=%d dropped=%d elapsed=%.3fs",
            stats.mode,
            stats.lanes,
            stats.read,
            stats.written,
            stats.dropped,
            stats.elapsed_s,
        )
        return stats

    def _collect(self, stats: PipelineStats, transformer: RecordTransformer, started: float) -> None:
        stats.read = int(getattr(self.source, "records_read", 0))
        stats.evaluated = transformer.evaluated
        stats.dropped = transformer.dropped
        stats.written = self.sink.count
        stats.elapsed_s = time.monotonic() - started
