# src/hgtools/dump/accumulator.py
from __future__ import annotations

import threading
from typing import Dict, FrozenSet, Hashable, List, Optional

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .records import EdgeRecord, VertexRecord

VertexTable = Dict[Hashable, VertexRecord]


class GraphAccumulator:
    """
    Builds the per-label vertex tables of a dump run and cross-links edges
    into both of their endpoints.

    Ingestion is safe from many threads at once:
      - the table directory is guarded by its own lock (tables are created
        once, then keep their identity for the whole run)
      - record inserts and edge appends take one lock out of a fixed stripe
        set, chosen by the (label, id) of the record being touched

    Edges resolve their endpoints at ingestion time. An edge whose source or
    target vertex is not in the tables yet is dropped and reported; it is
    never retried. Callers must finish vertex ingestion before edges start.
    """

    __slots__ = ("_sink", "_tables", "_tables_lock", "_stripes", "_stats_lock", "_attached", "_dropped")

    def __init__(self, sink: Optional[AnomalySink] = None, *, stripes: int = 64) -> None:
        self._sink = sink or AnomalySink()
        self._tables: Dict[str, VertexTable] = {}
        self._tables_lock = threading.Lock()
        self._stripes: List[threading.Lock] = [threading.Lock() for _ in range(max(1, stripes))]
        self._stats_lock = threading.Lock()
        self._attached = 0
        self._dropped = 0

    # ----------------------------- tables -------------------------------------

    @property
    def sink(self) -> AnomalySink:
        return self._sink

    def tables(self) -> FrozenSet[str]:
        with self._tables_lock:
            return frozenset(self._tables)

    def table_for(self, label: str) -> VertexTable:
        table = self._tables.get(label)
        if table is not None:
            return table
        with self._tables_lock:
            return self._tables.setdefault(label, {})

    # ----------------------------- ingestion ----------------------------------

    def ingest_vertex(self, raw: object) -> VertexRecord:
        """Insert (or overwrite) the record for raw.label / raw.id."""
        record = VertexRecord.from_raw(raw)
        table = self.table_for(record.label)
        with self._stripe(record.label, record.id):
            table[record.id] = record
        return record

    def ingest_edge(self, raw: object) -> bool:
        """
        Attach the edge to its source and target records.
        Returns False when an endpoint is unknown and the edge was dropped.
        """
        source_label = getattr(raw, "source_label")
        target_label = getattr(raw, "target_label")
        source_id = getattr(raw, "source")
        target_id = getattr(raw, "target")

        source = self.table_for(source_label).get(source_id)
        if source is None:
            self._drop(raw, AnomalyKind.MISSING_SOURCE_VERTEX, source_label, source_id)
            return False

        target = self.table_for(target_label).get(target_id)
        if target is None:
            self._drop(raw, AnomalyKind.MISSING_TARGET_VERTEX, target_label, target_id)
            return False

        edge = EdgeRecord.from_raw(raw)
        with self._stripe(source_label, source_id):
            source.add_edge(edge)
        # a self-loop lands twice on the same record, once per end
        with self._stripe(target_label, target_id):
            target.add_edge(edge)
        with self._stats_lock:
            self._attached += 1
        return True

    # ----------------------------- stats --------------------------------------

    def vertex_count(self) -> int:
        with self._tables_lock:
            tables = list(self._tables.values())
        return sum(len(t) for t in tables)

    @property
    def edges_attached(self) -> int:
        with self._stats_lock:
            return self._attached

    @property
    def edges_dropped(self) -> int:
        with self._stats_lock:
            return self._dropped

    # ----------------------------- internals ----------------------------------

    def _stripe(self, label: str, vertex_id: Hashable) -> threading.Lock:
        return self._stripes[hash((label, vertex_id)) % len(self._stripes)]

    def _drop(self, raw: object, kind: AnomalyKind, label: str, vertex_id: Hashable) -> None:
        with self._stats_lock:
            self._dropped += 1
        end = "source" if kind is AnomalyKind.MISSING_SOURCE_VERTEX else "target"
        self._sink.emit(
            Anomaly(
                table=label,
                kind=kind,
                severity=Severity.WARN,
                detail=f"Invalid edge without {end} vertex {vertex_id!r}: {_describe_edge(raw)}",
                ref=str(getattr(raw, "id", "")),
            )
        )


def _describe_edge(raw: object) -> str:
    return (
        f"{getattr(raw, 'id', '?')}"
        f"({getattr(raw, 'source_label', '?')}:{getattr(raw, 'source', '?')}"
        f" -[{getattr(raw, 'label', '?')}]-> "
        f"{getattr(raw, 'target_label', '?')}:{getattr(raw, 'target', '?')})"
    )
