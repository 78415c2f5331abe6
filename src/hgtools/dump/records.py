# src/hgtools/dump/records.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Mapping, Optional, Union

# ==============================================================================
# Property blobs
# ==============================================================================

PropertyBlob = str
"""Pre-serialized JSON property payload. Carried through unmodified on dump."""

_EMPTY_BLOB = "{}"


def serialize_properties(properties: Optional[Union[Mapping[str, Any], str]]) -> PropertyBlob:
    """
    Turn a property mapping into the opaque blob stored on records.

    A string is taken to be an already-serialized blob and returned as-is, so
    whatever encoding the source used survives byte-for-byte.
    """
    if properties is None:
        return _EMPTY_BLOB
    if isinstance(properties, str):
        return properties or _EMPTY_BLOB
    return json.dumps(dict(properties), separators=(",", ":"), ensure_ascii=False, default=str)


def _parse_blob(blob: PropertyBlob) -> Dict[str, Any]:
    value = json.loads(blob or _EMPTY_BLOB)
    if not isinstance(value, dict):
        raise ValueError(f"property blob is not a JSON object: {blob[:64]!r}")
    return value


# ==============================================================================
# Dump unit
# ==============================================================================

@dataclass(frozen=True)
class EdgeRecord:
    """
    Immutable edge as it appears inside a vertex's dump entry.

    One instance is shared by the edge lists of both endpoints.
    """
    id: str
    label: str
    source: Hashable
    target: Hashable
    properties: PropertyBlob = _EMPTY_BLOB

    def properties_dict(self) -> Dict[str, Any]:
        return _parse_blob(self.properties)

    @classmethod
    def from_raw(cls, raw: object) -> "EdgeRecord":
        return cls(
            id=getattr(raw, "id"),
            label=getattr(raw, "label"),
            source=getattr(raw, "source"),
            target=getattr(raw, "target"),
            properties=serialize_properties(getattr(raw, "properties", None)),
        )


@dataclass
class VertexRecord:
    """
    A vertex plus the edges incident to it, in discovery order.

    Records live for one dump run: created on first ingestion of their
    (label, id), grown by edge attachment, discarded after serialization.
    """
    id: Hashable
    label: str
    properties: PropertyBlob = _EMPTY_BLOB
    edges: List[EdgeRecord] = field(default_factory=list)

    def add_edge(self, edge: EdgeRecord) -> None:
        self.edges.append(edge)

    def properties_dict(self) -> Dict[str, Any]:
        """Parse the raw property blob. Only done on explicit request."""
        return _parse_blob(self.properties)

    @classmethod
    def from_raw(cls, raw: object) -> "VertexRecord":
        return cls(
            id=getattr(raw, "id"),
            label=getattr(raw, "label"),
            properties=serialize_properties(getattr(raw, "properties", None)),
        )
