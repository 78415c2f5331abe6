# src/hgtools/dump/anomalies.py
from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..core.logging_config import get_logger

logger = get_logger(__name__)


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AnomalyKind(str, enum.Enum):
    # Ingestion
    MISSING_SOURCE_VERTEX = "MISSING_SOURCE_VERTEX"
    MISSING_TARGET_VERTEX = "MISSING_TARGET_VERTEX"
    FETCH_FAILED = "FETCH_FAILED"
    INGEST_FAILED = "INGEST_FAILED"
    # Write phase
    FORMAT_FAILED = "FORMAT_FAILED"
    WRITE_FAILED = "WRITE_FAILED"
    INVALID_TABLE = "INVALID_TABLE"


@dataclass(frozen=True)
class Anomaly:
    """
    Immutable record of a recoverable problem. `table` is the vertex label
    (or shard token) involved, `ref` the element id when there is one.
    """
    table: str
    kind: AnomalyKind
    severity: Severity
    detail: str = ""
    ref: Optional[str] = None
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict:
        return {
            "table": self.table,
            "ref": self.ref or "",
            "kind": self.kind.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "ts_ms": int(self.ts_ms),
        }


class AnomalySink:
    """
    Thread-safe anomaly collector + lightweight observability.

    - emit(): add an anomaly, update counters, log it
    - items(): snapshot of buffered anomalies
    - counters(): snapshot of counters (for summaries)
    - observe_duration(): record timing histograms (table write times, etc.)
    """

    __slots__ = ("_lock", "_buffer", "_counts", "_timers")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buffer: List[Anomaly] = []
        self._counts: Dict[str, int] = {
            "total": 0,
        }
        # Timers: name -> bucket -> count
        self._timers: Dict[str, Dict[str, int]] = {}

    # ----------------------------- public API ---------------------------------

    def emit(self, anomaly: Anomaly) -> None:
        with self._lock:
            self._buffer.append(anomaly)
            self._counts["total"] = self._counts.get("total", 0) + 1
            self._counts[f"kind:{anomaly.kind.value}"] = self._counts.get(f"kind:{anomaly.kind.value}", 0) + 1
            self._counts[f"sev:{anomaly.severity.value}"] = self._counts.get(f"sev:{anomaly.severity.value}", 0) + 1
        logger.warning("%s [%s] %s", anomaly.kind.value, anomaly.table, anomaly.detail)

    def items(self) -> Sequence[Anomaly]:
        with self._lock:
            return tuple(self._buffer)

    def count(self, kind: AnomalyKind) -> int:
        with self._lock:
            return self._counts.get(f"kind:{kind.value}", 0)

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def observe_duration(self, name: str, seconds: float) -> None:
        """
        Record a single observation into log-scale buckets.
        Example: observe_duration("table_write_seconds", dt)
        """
        bucket = _duration_bucket(seconds)
        with self._lock:
            buckets = self._timers.setdefault(name, {})
            buckets[bucket] = buckets.get(bucket, 0) + 1
            total_key = f"{name}::count"
            buckets[total_key] = buckets.get(total_key, 0) + 1

    def timer_histograms(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {k: dict(v) for k, v in self._timers.items()}


# ----------------------------- helpers ----------------------------------------

def _duration_bucket(seconds: float) -> str:
    """
    Log-ish buckets from microseconds to minutes.
    """
    s = max(0.0, float(seconds))
    if s < 1e-3:
        return "<1ms"
    if s < 1e-2:
        return "<10ms"
    if s < 1e-1:
        return "<100ms"
    if s < 1.0:
        return "<1s"
    if s < 10.0:
        return "<10s"
    if s < 60.0:
        return "<60s"
    return ">=60s"
