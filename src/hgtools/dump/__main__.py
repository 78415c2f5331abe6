# src/hgtools/dump/__main__.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.logging_config import setup_logging
from .anomalies import AnomalySink
from .anomaly_store import read_anomalies
from .api import DumpConfig, DumpSummary, dump_graph
from .formatter import DumpFormatter
from .source import GraphSource


def run_dump(
    source: GraphSource,
    *,
    out_dir: Path,
    config: Optional[DumpConfig] = None,
    formatter: Optional[DumpFormatter] = None,
    configure_logging: bool = True,
) -> Dict[str, Any]:
    """
    Entry the outer CLI calls once it has built a GraphSource.

    - Runs the full dump into out_dir (blocking until every table is written).
    - Returns a JSON-serializable dict with summary, anomaly counters and the
      written table files, plus the table write-time histograms.
    """
    if configure_logging:
        setup_logging()
    out_dir = Path(out_dir)
    sink = AnomalySink()
    summary: DumpSummary = dump_graph(
        source,
        out_dir,
        config=config or DumpConfig.from_env(),
        formatter=formatter,
        sink=sink,
    )
    return {
        "summary": summary.to_dict(),
        "out_dir": str(out_dir),
        "files": sorted(p.name for p in out_dir.iterdir() if p.is_file()),
        "anomaly_counters": sink.counters(),
        "anomalies": [a.to_dict() for a in sink.items()],
        "timings": sink.timer_histograms(),
    }


def load_anomalies(path: Path) -> List[Dict[str, Any]]:
    """
    Helper for re-reading a persisted anomaly file; empty when it does not exist.
    """
    path = Path(path)
    if not path.exists():
        return []
    return read_anomalies(path)
