# src/hgtools/dump/source.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Iterator, List, Mapping, Sequence

# ==============================================================================
# Raw elements (as produced by the graph client)
# ==============================================================================


@dataclass(frozen=True)
class RawVertex:
    id: Hashable
    label: str
    properties: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawEdge:
    id: str
    label: str
    source: Hashable
    source_label: str
    target: Hashable
    target_label: str
    properties: Mapping[str, Any] = field(default_factory=dict)


# ==============================================================================
# Fetch contract
# ==============================================================================


class GraphSource:
    """
    Paginated access to a remote graph.

    The dump pipeline fetches every shard on its own worker, so implementations
    MUST be thread-safe across shards. Within one shard, pages are pulled
    sequentially. Authentication, paging cursors and retries are the
    implementation's business; an exception escaping a shard iterator marks
    that shard as failed.
    """

    def vertex_shards(self) -> Iterable[Hashable]:
        raise NotImplementedError

    def edge_shards(self) -> Iterable[Hashable]:
        raise NotImplementedError

    def iter_vertex_pages(self, shard: Hashable) -> Iterator[Sequence[object]]:
        raise NotImplementedError

    def iter_edge_pages(self, shard: Hashable) -> Iterator[Sequence[object]]:
        raise NotImplementedError


class InMemoryGraphSource(GraphSource):
    """
    GraphSource over in-memory element lists, split round-robin into `shards`
    and served in pages of `page_size`.
    """

    def __init__(
        self,
        vertices: Iterable[object] = (),
        edges: Iterable[object] = (),
        *,
        page_size: int = 500,
        shards: int = 4,
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        if shards < 1:
            raise ValueError(f"shards must be positive, got {shards}")
        self._vertices: List[object] = list(vertices)
        self._edges: List[object] = list(edges)
        self.page_size = page_size
        self.shards = shards

    def vertex_shards(self) -> Iterable[int]:
        return range(self.shards)

    def edge_shards(self) -> Iterable[int]:
        return range(self.shards)

    def iter_vertex_pages(self, shard: Hashable) -> Iterator[Sequence[object]]:
        return self._paginate("vertex", self._vertices, shard)

    def iter_edge_pages(self, shard: Hashable) -> Iterator[Sequence[object]]:
        return self._paginate("edge", self._edges, shard)

    def _paginate(self, kind: str, items: List[object], shard: Hashable) -> Iterator[Sequence[object]]:
        if not isinstance(shard, int) or not 0 <= shard < self.shards:
            raise KeyError(f"unknown {kind} shard: {shard!r}")
        mine = items[shard::self.shards]
        for start in range(0, len(mine), self.page_size):
            yield mine[start:start + self.page_size]
