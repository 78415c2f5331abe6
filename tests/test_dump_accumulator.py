import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from hgtools.dump.accumulator import GraphAccumulator
from hgtools.dump.anomalies import AnomalyKind, AnomalySink
from hgtools.dump.source import RawEdge, RawVertex


def _knows(edge_id="e1", source=1, target=2, *, source_label="person", target_label="person", props=None):
    return RawEdge(
        id=edge_id,
        label="knows",
        source=source,
        source_label=source_label,
        target=target,
        target_label=target_label,
        properties=props or {},
    )


def test_ingested_vertex_is_found_by_label_and_id():
    graph = GraphAccumulator()
    graph.ingest_vertex(RawVertex(id=7, label="software", properties={"name": "lop"}))

    record = graph.table_for("software")[7]
    assert record.id == 7
    assert record.label == "software"
    assert record.properties_dict() == {"name": "lop"}
    assert graph.tables() == {"software"}


def test_table_for_returns_same_map_and_creates_lazily():
    graph = GraphAccumulator()
    first = graph.table_for("person")
    assert first == {}
    assert graph.table_for("person") is first
    graph.ingest_vertex(RawVertex(id=1, label="person"))
    assert graph.table_for("person") is first
    assert 1 in first


def test_edge_before_vertices_is_dropped_and_reported_once():
    sink = AnomalySink()
    graph = GraphAccumulator(sink)

    assert graph.ingest_edge(_knows()) is False

    graph.ingest_vertex(RawVertex(id=1, label="person"))
    graph.ingest_vertex(RawVertex(id=2, label="person"))
    assert graph.table_for("person")[1].edges == []
    assert graph.table_for("person")[2].edges == []
    # source is resolved first; an unresolved source short-circuits the target lookup
    assert sink.count(AnomalyKind.MISSING_SOURCE_VERTEX) == 1
    assert sink.count(AnomalyKind.MISSING_TARGET_VERTEX) == 0
    assert graph.edges_dropped == 1
    assert graph.edges_attached == 0


def test_edge_with_missing_target_is_dropped():
    sink = AnomalySink()
    graph = GraphAccumulator(sink)
    graph.ingest_vertex(RawVertex(id=1, label="person"))

    assert graph.ingest_edge(_knows(target=99)) is False

    assert graph.table_for("person")[1].edges == []
    assert sink.count(AnomalyKind.MISSING_TARGET_VERTEX) == 1
    assert sink.count(AnomalyKind.MISSING_SOURCE_VERTEX) == 0
    (anomaly,) = sink.items()
    assert anomaly.ref == "e1"
    assert "99" in anomaly.detail


def test_edge_is_shared_by_both_endpoints():
    graph = GraphAccumulator()
    graph.ingest_vertex(RawVertex(id=1, label="person"))
    graph.ingest_vertex(RawVertex(id="lop", label="software"))

    assert graph.ingest_edge(
        _knows(edge_id="e9", source=1, target="lop", target_label="software", props={"weight": 0.4})
    )

    src_edges = graph.table_for("person")[1].edges
    dst_edges = graph.table_for("software")["lop"].edges
    assert len(src_edges) == 1 and len(dst_edges) == 1
    assert src_edges[0] is dst_edges[0]
    edge = src_edges[0]
    assert (edge.id, edge.label, edge.source, edge.target) == ("e9", "knows", 1, "lop")
    assert edge.properties_dict() == {"weight": 0.4}
    assert graph.edges_attached == 1


def test_edges_keep_discovery_order():
    graph = GraphAccumulator()
    for vid in (1, 2, 3):
        graph.ingest_vertex(RawVertex(id=vid, label="person"))
    graph.ingest_edge(_knows("a", 1, 2))
    graph.ingest_edge(_knows("b", 3, 1))
    graph.ingest_edge(_knows("c", 1, 3))

    assert [e.id for e in graph.table_for("person")[1].edges] == ["a", "b", "c"]


def test_self_loop_is_listed_twice_on_its_vertex():
    graph = GraphAccumulator()
    graph.ingest_vertex(RawVertex(id=1, label="person"))
    graph.ingest_edge(_knows("loop", 1, 1))

    edges = graph.table_for("person")[1].edges
    assert [e.id for e in edges] == ["loop", "loop"]


def test_reingesting_same_vertex_keeps_one_record():
    graph = GraphAccumulator()
    raw = RawVertex(id=1, label="person", properties={"age": 29})
    graph.ingest_vertex(raw)
    graph.ingest_vertex(raw)

    table = graph.table_for("person")
    assert len(table) == 1
    assert table[1].edges == []
    assert graph.vertex_count() == 1


def test_concurrent_ingestion_loses_no_vertices():
    graph = GraphAccumulator()
    labels = [f"label{i}" for i in range(7)]
    vertices = [RawVertex(id=i, label=labels[i % len(labels)]) for i in range(5000)]

    def ingest(chunk):
        for v in chunk:
            graph.ingest_vertex(v)

    chunks = [vertices[w::8] for w in range(8)]
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(ingest, chunks))

    assert graph.tables() == set(labels)
    assert graph.vertex_count() == 5000
    assert sum(len(graph.table_for(label)) for label in labels) == 5000


def test_concurrent_edge_attachment_loses_no_edges():
    graph = GraphAccumulator()
    graph.ingest_vertex(RawVertex(id="hub", label="person"))
    for i in range(400):
        graph.ingest_vertex(RawVertex(id=i, label="person"))
    edges = [_knows(f"e{i}", i, "hub") for i in range(400)]

    def ingest(chunk):
        for e in chunk:
            graph.ingest_edge(e)

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(ingest, [edges[w::6] for w in range(6)]))

    assert len(graph.table_for("person")["hub"].edges) == 400
    assert graph.edges_attached == 400
