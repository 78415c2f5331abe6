import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from hgtools.dump.formatter import CallableFormatter, FormatError, JsonFormatter
from hgtools.dump.records import EdgeRecord, VertexRecord


def _vertex_with_edges():
    vertex = VertexRecord(id=1, label="person", properties='{"name":"marko"}')
    vertex.add_edge(EdgeRecord(id="e1", label="knows", source=1, target=2, properties='{"weight":0.5}'))
    vertex.add_edge(EdgeRecord(id="e2", label="created", source=1, target="lop"))
    return vertex


def test_json_formatter_output_parses_back():
    doc = json.loads(JsonFormatter().format(_vertex_with_edges()))

    assert doc["id"] == 1
    assert doc["label"] == "person"
    assert doc["properties"] == {"name": "marko"}
    assert [(e["id"], e["label"], e["source"], e["target"]) for e in doc["edges"]] == [
        ("e1", "knows", 1, 2),
        ("e2", "created", 1, "lop"),
    ]
    assert doc["edges"][0]["properties"] == {"weight": 0.5}
    assert doc["edges"][1]["properties"] == {}


def test_json_formatter_splices_blob_verbatim():
    blob = '{"name" : "m\\u00e4rko",   "tags":[ 1,2 ]}'
    out = JsonFormatter().format(VertexRecord(id="v", label="person", properties=blob))

    assert blob.encode("utf-8") in out
    assert b"\n" not in out
    assert out.startswith(b'{"id":"v","label":"person","properties":')


def test_json_formatter_wraps_encoding_failures():
    with pytest.raises(FormatError) as info:
        JsonFormatter().format(VertexRecord(id=object(), label="person"))
    assert info.value.code == "encode-failed"
    assert "TypeError" in info.value.detail


def test_json_formatter_rejects_unencodable_label():
    with pytest.raises(FormatError):
        JsonFormatter(encoding="ascii").format(VertexRecord(id=1, label="persön"))


def test_callable_formatter_accepts_str_and_bytes():
    vertex = _vertex_with_edges()
    as_text = CallableFormatter(lambda v: f"{v.label}|{v.id}|{len(v.edges)}")
    as_bytes = CallableFormatter(lambda v: b"raw")

    assert as_text.format(vertex) == b"person|1|2"
    assert as_bytes.format(vertex) == b"raw"
    with pytest.raises(FormatError) as info:
        CallableFormatter(lambda v: 42).format(vertex)
    assert info.value.code == "bad-return-type"


def test_json_formatter_rejects_non_finite_numbers():
    vertex = VertexRecord(id=1, label="person")
    vertex.add_edge(EdgeRecord(id="e1", label="knows", source=1, target=float("nan")))
    with pytest.raises(FormatError) as info:
        JsonFormatter().format(vertex)
    assert info.value.code == "encode-failed"
