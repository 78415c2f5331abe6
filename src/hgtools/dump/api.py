# src/hgtools/dump/api.py
from __future__ import annotations

import concurrent.futures as futures
import os
import tempfile
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, Union

from ..core.config import env_int, feature_enabled
from ..core.logging_config import get_logger
from .accumulator import GraphAccumulator
from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .anomaly_store import write_anomalies
from .formatter import DumpFormatter, FormatError, JsonFormatter
from .records import VertexRecord
from .source import GraphSource

logger = get_logger(__name__)

_PLURAL = {"vertex": "vertices", "edge": "edges"}

PathLike = Union[str, "os.PathLike[str]"]


class DumpError(Exception):
    """Fatal dump failure; raised before any fetch or write work starts."""


@dataclass(frozen=True)
class DumpConfig:
    """Execution knobs for a dump run."""
    max_workers: int = 4
    atomic_writes: bool = False
    anomalies_path: Optional[Path] = None
    newline: bytes = b"\n"
    thread_name_prefix: str = "hgtools-dump"

    @classmethod
    def from_env(cls, **overrides) -> "DumpConfig":
        """
        Defaults overlaid with HGTOOLS_DUMP_MAX_WORKERS and the
        feature.dump.atomic_writes flag; explicit overrides win.
        """
        base = cls(
            max_workers=env_int("dump.max_workers", cls.max_workers),
            atomic_writes=feature_enabled("feature.dump.atomic_writes", cls.atomic_writes),
        )
        return replace(base, **overrides)


@dataclass(frozen=True)
class DumpSummary:
    tables: int
    tables_written: int
    tables_failed: int
    vertices: int
    records_written: int
    records_failed: int
    edges_attached: int
    edges_dropped: int
    fetch_failures: int
    anomalies: int
    wall_ms: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "tables": self.tables,
            "tables_written": self.tables_written,
            "tables_failed": self.tables_failed,
            "vertices": self.vertices,
            "records_written": self.records_written,
            "records_failed": self.records_failed,
            "edges_attached": self.edges_attached,
            "edges_dropped": self.edges_dropped,
            "fetch_failures": self.fetch_failures,
            "anomalies": self.anomalies,
            "wall_ms": self.wall_ms,
        }


def log_summary(summary: DumpSummary) -> None:
    logger.info(
        "dump graph: %d tables (%d failed), %d vertices, %d records written (%d failed), "
        "%d edges attached (%d dropped), %d anomalies in %d ms",
        summary.tables,
        summary.tables_failed,
        summary.vertices,
        summary.records_written,
        summary.records_failed,
        summary.edges_attached,
        summary.edges_dropped,
        summary.anomalies,
        summary.wall_ms,
    )


@dataclass(frozen=True)
class _TableResult:
    label: str
    ok: bool
    written: int = 0
    failed: int = 0


class GraphDumper:
    """
    Dumps a graph into one file per vertex label, each line one vertex with
    its incident edges.

    A run goes through strictly ordered phases on a bounded thread pool:
    ingest vertices → ingest edges → write tables. Each phase is joined before
    the next one starts, so edges only ever see a complete vertex set and
    writers only ever see fully linked records.
    """

    def __init__(
        self,
        source: GraphSource,
        *,
        config: Optional[DumpConfig] = None,
        formatter: Optional[DumpFormatter] = None,
        sink: Optional[AnomalySink] = None,
        reporter: Optional[Callable[[DumpSummary], None]] = None,
    ) -> None:
        self.source = source
        self.config = config or DumpConfig()
        self.sink = sink or AnomalySink()
        self.reporter = reporter or log_summary
        self._formatter: DumpFormatter = formatter or JsonFormatter()
        self.graph = GraphAccumulator(self.sink)

    # ---- formatter ------------------------------------------------------------

    @property
    def formatter(self) -> DumpFormatter:
        return self._formatter

    def set_formatter(self, formatter: Optional[DumpFormatter]) -> DumpFormatter:
        """Install `formatter` (None restores JSON) and return the previous one."""
        old = self._formatter
        self._formatter = formatter or JsonFormatter()
        return old

    # ---- public API -----------------------------------------------------------

    def dump(self, out_dir: PathLike) -> DumpSummary:
        out = _ensure_directory(Path(out_dir))
        start = time.perf_counter()
        before = self.sink.counters()
        formatter = self._formatter
        self.graph = GraphAccumulator(self.sink)

        with futures.ThreadPoolExecutor(
            max_workers=max(1, self.config.max_workers),
            thread_name_prefix=self.config.thread_name_prefix,
        ) as pool:
            self._ingest_phase(pool, "vertex", self.graph.ingest_vertex)
            self._ingest_phase(pool, "edge", self.graph.ingest_edge)

            labels = sorted(self.graph.tables())
            pending = [
                pool.submit(self._write_table_task, out, label, formatter)
                for label in labels
            ]
            results: List[_TableResult] = [f.result() for f in pending]

        after = self.sink.counters()
        summary = DumpSummary(
            tables=len(labels),
            tables_written=sum(1 for r in results if r.ok),
            tables_failed=sum(1 for r in results if not r.ok),
            vertices=self.graph.vertex_count(),
            records_written=sum(r.written for r in results),
            records_failed=sum(r.failed for r in results),
            edges_attached=self.graph.edges_attached,
            edges_dropped=self.graph.edges_dropped,
            fetch_failures=_delta(before, after, f"kind:{AnomalyKind.FETCH_FAILED.value}"),
            anomalies=_delta(before, after, "total"),
            wall_ms=int((time.perf_counter() - start) * 1000),
        )
        self.reporter(summary)

        if self.config.anomalies_path is not None:
            try:
                write_anomalies(self.sink.items(), self.config.anomalies_path)
            except (RuntimeError, OSError) as e:
                logger.error("Failed to persist anomalies to %s: %s", self.config.anomalies_path, e)
        return summary

    # ---- ingestion ------------------------------------------------------------

    def _ingest_phase(
        self,
        pool: futures.Executor,
        kind: str,
        ingest: Callable[[object], object],
    ) -> int:
        if kind == "vertex":
            list_shards, iter_pages = self.source.vertex_shards, self.source.iter_vertex_pages
        else:
            list_shards, iter_pages = self.source.edge_shards, self.source.iter_edge_pages

        try:
            shards: Sequence[Hashable] = list(list_shards())
        except Exception as e:
            self._fetch_failed(kind, "*", e)
            return 0

        pending = [pool.submit(self._ingest_shard, kind, shard, iter_pages, ingest) for shard in shards]
        # barrier: every shard of this phase is done before the caller moves on
        total = sum(f.result() for f in pending)
        logger.debug("ingested %d %s elements from %d shards", total, kind, len(shards))
        return total

    def _ingest_shard(
        self,
        kind: str,
        shard: Hashable,
        iter_pages: Callable[[Hashable], Iterable[Sequence[object]]],
        ingest: Callable[[object], object],
    ) -> int:
        count = 0
        try:
            for page in iter_pages(shard):
                for element in page:
                    try:
                        ingest(element)
                    except Exception as e:
                        self._ingest_failed(kind, element, e)
                        continue
                    count += 1
        except Exception as e:
            self._fetch_failed(kind, shard, e)
        return count

    def _ingest_failed(self, kind: str, element: object, e: BaseException) -> None:
        self.sink.emit(
            Anomaly(
                table=str(getattr(element, "label", "?")),
                kind=AnomalyKind.INGEST_FAILED,
                severity=Severity.ERROR,
                detail=f"Failed to ingest {kind}: {type(e).__name__}: {e}",
                ref=str(getattr(element, "id", "")),
            )
        )

    def _fetch_failed(self, kind: str, shard: Hashable, e: BaseException) -> None:
        self.sink.emit(
            Anomaly(
                table=f"{kind}-shard:{shard}",
                kind=AnomalyKind.FETCH_FAILED,
                severity=Severity.ERROR,
                detail=f"Failed to fetch {_PLURAL[kind]}: {type(e).__name__}: {e}",
            )
        )

    # ---- write ----------------------------------------------------------------

    def _write_table_task(self, out: Path, label: str, formatter: DumpFormatter) -> _TableResult:
        path = _table_path(out, label)
        if path is None:
            self.sink.emit(
                Anomaly(
                    table=label,
                    kind=AnomalyKind.INVALID_TABLE,
                    severity=Severity.ERROR,
                    detail=f"Label {label!r} is not a valid file name inside {out}",
                )
            )
            return _TableResult(label=label, ok=False)

        vertices = list(self.graph.table_for(label).values())
        started = time.perf_counter()
        try:
            if self.config.atomic_writes:
                written, failed = self._write_atomic(path, label, vertices, formatter)
            else:
                written, failed = self._write_file(path, label, vertices, formatter)
        except Exception as e:
            self.sink.emit(
                Anomaly(
                    table=label,
                    kind=AnomalyKind.WRITE_FAILED,
                    severity=Severity.ERROR,
                    detail=f"Failed to write {path}: {type(e).__name__}: {e}",
                )
            )
            return _TableResult(label=label, ok=False)
        finally:
            self.sink.observe_duration("table_write_seconds", time.perf_counter() - started)
        return _TableResult(label=label, ok=True, written=written, failed=failed)

    def _write_atomic(
        self, path: Path, label: str, vertices: Sequence[VertexRecord], formatter: DumpFormatter
    ) -> Tuple[int, int]:
        # private temp name, created exclusively, so it never aliases another table's file
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        tmp = Path(tmp_name)
        published = False
        try:
            with os.fdopen(fd, "wb", buffering=1024 * 1024) as fh:
                result = self._write_records(fh, label, vertices, formatter)
            os.replace(tmp, path)
            published = True
            return result
        finally:
            if not published:
                try:
                    tmp.unlink()
                except FileNotFoundError:
                    pass

    def _write_file(
        self, path: Path, label: str, vertices: Sequence[VertexRecord], formatter: DumpFormatter
    ) -> Tuple[int, int]:
        with open(path, "wb", buffering=1024 * 1024) as fh:
            return self._write_records(fh, label, vertices, formatter)

    def _write_records(
        self, fh: BinaryIO, label: str, vertices: Sequence[VertexRecord], formatter: DumpFormatter
    ) -> Tuple[int, int]:
        written = failed = 0
        newline = self.config.newline
        for vertex in vertices:
            try:
                content = formatter.format(vertex)
            except FormatError as e:
                failed += 1
                self.sink.emit(
                    Anomaly(
                        table=label,
                        kind=AnomalyKind.FORMAT_FAILED,
                        severity=Severity.ERROR,
                        detail=f"Failed to format vertex: {e.code}: {e.message} {e.detail}".rstrip(),
                        ref=str(vertex.id),
                    )
                )
                continue
            fh.write(content)
            fh.write(newline)
            written += 1
        return written, failed


def dump_graph(
    source: GraphSource,
    out_dir: PathLike,
    *,
    config: Optional[DumpConfig] = None,
    formatter: Optional[DumpFormatter] = None,
    sink: Optional[AnomalySink] = None,
    reporter: Optional[Callable[[DumpSummary], None]] = None,
) -> DumpSummary:
    """One-shot dump: build a GraphDumper and run it against out_dir."""
    dumper = GraphDumper(source, config=config, formatter=formatter, sink=sink, reporter=reporter)
    return dumper.dump(out_dir)


# ----------------------------- helpers ----------------------------------------

def _ensure_directory(out: Path) -> Path:
    try:
        out.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DumpError(f"Cannot create output directory {out}: {e}") from e
    if not os.access(out, os.W_OK | os.X_OK):
        raise DumpError(f"Output directory is not writable: {out}")
    return out


def _table_path(out: Path, label: str) -> Optional[Path]:
    if not label or label in (".", "..") or "/" in label or "\\" in label or "\x00" in label:
        return None
    path = out / label
    if path.resolve().parent != out.resolve():
        return None
    return path


def _delta(before: Dict[str, int], after: Dict[str, int], key: str) -> int:
    return after.get(key, 0) - before.get(key, 0)
