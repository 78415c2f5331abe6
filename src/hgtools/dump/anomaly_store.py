# src/hgtools/dump/anomaly_store.py
from __future__ import annotations

import time
from pathlib import Path
from typing import Dict, Iterable, List

# Parquet / Arrow
try:
    import pyarrow as pa
    import pyarrow.parquet as pq
except Exception as e:  # pragma: no cover
    _PA_IMPORT_ERROR = e
else:
    _PA_IMPORT_ERROR = None

from .anomalies import Anomaly


SCHEMA_VERSION = "1.0"


def write_anomalies(anomalies: Iterable[Anomaly], path: Path, *, zstd_level: int = 7) -> int:
    """
    Persist a run's anomalies as a single Parquet file and verify it on disk.
    Returns the number of rows written. A zero-row file is still written.
    Any failure surfaces as RuntimeError.
    """
    if _PA_IMPORT_ERROR is not None:
        raise RuntimeError(f"pyarrow is required: {_PA_IMPORT_ERROR}")

    path = Path(path)
    schema = _anomaly_schema()
    try:
        cols: Dict[str, List] = {f.name: [] for f in schema}
        for a in anomalies:
            row = _anomaly_to_arrow_row(a)
            for f in schema:
                cols[f.name].append(row.get(f.name))
        tbl = pa.Table.from_arrays([pa.array(cols[f.name], type=f.type) for f in schema], schema=schema)

        path.parent.mkdir(parents=True, exist_ok=True)
        pq.write_table(
            tbl,
            path,
            compression="zstd",
            compression_level=int(zstd_level),
            use_dictionary=True,
            write_statistics=True,
        )
        written = pq.read_table(path)
        if written.num_rows != tbl.num_rows:
            raise RuntimeError(f"Row count mismatch: expected {tbl.num_rows}, got {written.num_rows}")
        return tbl.num_rows
    except Exception as e:
        try:
            if path.is_file():
                path.unlink()
        except OSError:
            pass
        raise RuntimeError(f"Parquet write verification failed for {path}: {e}") from e


def read_anomalies(path: Path) -> List[Dict]:
    """Load a persisted anomaly file back as a list of row dicts."""
    if _PA_IMPORT_ERROR is not None:
        raise RuntimeError(f"pyarrow is required: {_PA_IMPORT_ERROR}")
    return pq.read_table(Path(path)).to_pylist()


# ============================== schema & mapping ==============================

def _anomaly_schema() -> "pa.Schema":
    schema = pa.schema(
        [
            pa.field("table", pa.string()),
            pa.field("ref", pa.string()),
            pa.field("kind", pa.string()),
            pa.field("severity", pa.string()),
            pa.field("detail", pa.string()),
            pa.field("ts_ms", pa.int64()),
            pa.field("schema_version", pa.string()),
        ]
    )
    return schema.with_metadata({"version": SCHEMA_VERSION})


def _anomaly_to_arrow_row(a: Anomaly) -> Dict:
    ts_ms = getattr(a, "ts_ms", None)
    if ts_ms is None:
        ts_ms = int(time.time() * 1000)
    row = a.to_dict()
    row["ts_ms"] = int(ts_ms)
    row["schema_version"] = SCHEMA_VERSION
    return row
