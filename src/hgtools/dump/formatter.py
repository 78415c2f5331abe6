# src/hgtools/dump/formatter.py
from __future__ import annotations

import json
from typing import Callable, List, Optional, Union

from .records import EdgeRecord, VertexRecord

# ==============================================================================
# Formatter contract and typed error
# ==============================================================================


class FormatError(Exception):
    """
    Raised when one vertex cannot be serialized. The write task skips that
    record and keeps going with the rest of the table.
    """
    def __init__(self, code: str, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.detail = detail or ""


class DumpFormatter:
    """
    Turns one fully populated VertexRecord (edges included) into the bytes of
    one output line, without the line terminator.

    Implementations MUST be safe to call from several write tasks at once and
    should raise FormatError for per-record failures.
    """

    name = "abstract"

    def format(self, vertex: VertexRecord) -> bytes:
        raise NotImplementedError


# ==============================================================================
# Default JSON formatter
# ==============================================================================


class JsonFormatter(DumpFormatter):
    """
    One JSON object per vertex:

        {"id":1,"label":"person","properties":{...},"edges":[{...}]}

    Property blobs are spliced in verbatim, never decoded and re-encoded.
    """

    name = "json"

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def format(self, vertex: VertexRecord) -> bytes:
        try:
            parts: List[str] = [
                '{"id":', _scalar(vertex.id),
                ',"label":', _scalar(vertex.label),
                ',"properties":', vertex.properties or "{}",
                ',"edges":[',
                ",".join(_edge_json(e) for e in vertex.edges),
                "]}",
            ]
            return "".join(parts).encode(self.encoding)
        except (TypeError, ValueError) as e:
            # UnicodeEncodeError and non-finite floats surface as ValueError
            raise FormatError(
                "encode-failed",
                f"cannot serialize vertex {vertex.label}:{vertex.id!r}",
                detail=f"{type(e).__name__}: {e}",
            ) from e


def _scalar(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, allow_nan=False)


def _edge_json(edge: EdgeRecord) -> str:
    return "".join(
        [
            '{"id":', _scalar(edge.id),
            ',"label":', _scalar(edge.label),
            ',"source":', _scalar(edge.source),
            ',"target":', _scalar(edge.target),
            ',"properties":', edge.properties or "{}",
            "}",
        ]
    )


# ==============================================================================
# Adapter for plain callables
# ==============================================================================


class CallableFormatter(DumpFormatter):
    """Wrap `fn(vertex) -> str | bytes`; strings are encoded as UTF-8."""

    name = "callable"

    def __init__(self, fn: Callable[[VertexRecord], Union[str, bytes]], *, encoding: str = "utf-8") -> None:
        self._fn = fn
        self.encoding = encoding

    def format(self, vertex: VertexRecord) -> bytes:
        out = self._fn(vertex)
        if isinstance(out, bytes):
            return out
        if isinstance(out, str):
            try:
                return out.encode(self.encoding)
            except UnicodeEncodeError as e:
                raise FormatError("encode-failed", f"cannot encode vertex {vertex.label}:{vertex.id!r}", detail=str(e)) from e
        raise FormatError(
            "bad-return-type",
            f"formatter returned {type(out).__name__} for vertex {vertex.label}:{vertex.id!r}",
        )
