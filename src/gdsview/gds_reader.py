"""
GDSII decoding via gdstk.

Converts a gdstk Library into the record contracts consumed by the graph
builder. Any failure to decode is a DecodeError and aborts the load.
"""

from __future__ import annotations

import logging
import math
import os
import tempfile
from pathlib import Path as FilePath
from typing import List, Optional, Sequence, Union

import gdstk
import numpy as np

from gdsview.contracts import (
    ArrayRef,
    Boundary,
    DecodeError,
    Element,
    Path,
    PathType,
    StructRef,
    Structure,
    Text,
    Vec2,
)

logger = logging.getLogger(__name__)

# HEADER record: 2-byte length, record type 0x00, data type 0x02 (int16).
_HEADER_TAG = b"\x00\x02"

_END_TYPES = {
    "flush": PathType.FLUSH,
    "round": PathType.ROUND,
    "extended": PathType.EXTENDED,
}


def read_gds(source: Union[str, "os.PathLike[str]", bytes, bytearray]) -> List[Structure]:
    """Decode a GDSII file path or raw GDSII bytes into structures."""
    if isinstance(source, (bytes, bytearray)):
        _check_header(bytes(source[:4]), "<bytes>")
        with tempfile.TemporaryDirectory(prefix="gdsview_") as tmp:
            path = FilePath(tmp) / "layout.gds"
            path.write_bytes(bytes(source))
            return _read_file(path)

    path = FilePath(source)
    if not path.is_file():
        raise DecodeError(f"GDS file not found: {path}")
    with path.open("rb") as handle:
        _check_header(handle.read(4), str(path))
    return _read_file(path)


def library_to_structures(library) -> List[Structure]:
    """Convert every cell of a gdstk Library into a Structure."""
    structures = []
    for cell in library.cells:
        elements: List[Element] = []
        for polygon in cell.polygons:
            elements.append(
                Boundary(
                    layer=int(polygon.layer),
                    points=_points(polygon.points),
                    datatype=int(polygon.datatype),
                )
            )
        for path in cell.paths:
            elements.extend(_convert_path(path))
        for ref in cell.references:
            elements.append(_convert_reference(ref))
        for label in cell.labels:
            elements.append(
                Text(
                    layer=int(label.layer),
                    text=str(label.text),
                    origin=(float(label.origin[0]), float(label.origin[1])),
                )
            )
        structures.append(Structure(name=cell.name, elements=elements))
    return structures


# ─── Internal helpers ────────────────────────────────────────────────────────

def _check_header(head: bytes, label: str) -> None:
    if len(head) < 4 or head[2:4] != _HEADER_TAG:
        raise DecodeError(f"Not a GDSII stream (missing HEADER record): {label}")


def _read_file(path: FilePath) -> List[Structure]:
    try:
        library = gdstk.read_gds(str(path))
    except (OSError, RuntimeError, ValueError) as exc:
        raise DecodeError(f"Failed to decode GDS file {path}: {exc}") from exc
    structures = library_to_structures(library)
    logger.info("Decoded %s: %d structures", path.name, len(structures))
    return structures


def _points(values) -> List[Vec2]:
    arr = np.asarray(values, dtype=float).reshape(-1, 2)
    return [(float(x), float(y)) for x, y in arr]


def _path_type(end) -> PathType:
    if isinstance(end, str):
        return _END_TYPES.get(end, PathType.FLUSH)
    # Custom (pathtype 4) extensions are outlined as flush.
    return PathType.FLUSH


def _convert_path(path) -> List[Path]:
    spine = _points(path.spine())
    widths = np.asarray(path.widths(), dtype=float)
    widths = widths.reshape(len(spine), -1) if widths.size else np.zeros((1, len(path.layers)))
    ends: Sequence = path.ends
    out = []
    for i, layer in enumerate(path.layers):
        out.append(
            Path(
                layer=int(layer),
                spine=spine,
                width=float(widths[0, i]),
                path_type=_path_type(ends[i]),
                datatype=int(path.datatypes[i]),
            )
        )
    return out


def _convert_reference(ref) -> Element:
    target = ref.cell if isinstance(ref.cell, str) else ref.cell.name
    origin = (float(ref.origin[0]), float(ref.origin[1]))
    repetition = ref.repetition
    if repetition is not None and repetition.size > 1:
        if repetition.spacing is not None:
            column_step = (float(repetition.spacing[0]), 0.0)
            row_step = (0.0, float(repetition.spacing[1]))
        else:
            column_step = _vector(repetition.v1)
            row_step = _vector(repetition.v2)
        return ArrayRef(
            target_name=target,
            origin=origin,
            columns=int(repetition.columns or 1),
            rows=int(repetition.rows or 1),
            column_step=column_step,
            row_step=row_step,
        )
    angle: Optional[float] = None
    if ref.rotation:
        angle = math.degrees(ref.rotation)
    return StructRef(
        target_name=target,
        origin=origin,
        angle=angle,
        reflected=bool(ref.x_reflection),
        magnification=float(ref.magnification),
    )


def _vector(value) -> Vec2:
    if value is None:
        return (0.0, 0.0)
    return (float(value[0]), float(value[1]))
