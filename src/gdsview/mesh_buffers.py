"""Triangulated shape meshes and the per-layer geometry buffers they fill."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

import numpy as np
import trimesh
from shapely.geometry import Polygon

from gdsview.geometry_primitives import AffineTransform


@dataclass
class Triangulation:
    """Triangle mesh of a single polygon.

    ``vertices`` is (N, 2) float64, ``indices`` is (M, 3) uint32 into it.
    """
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    indices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.uint32))

    @classmethod
    def empty(cls) -> "Triangulation":
        return cls()

    @classmethod
    def from_polygon(cls, polygon: Polygon, engine: str = "earcut") -> "Triangulation":
        """Earcut-triangulate *polygon*, holes included.

        Empty or zero-area polygons give an empty triangulation.
        """
        if polygon.is_empty or polygon.area <= 0.0:
            return cls.empty()
        vertices, faces = trimesh.creation.triangulate_polygon(polygon, engine=engine)
        vertices = np.asarray(vertices, dtype=float).reshape(-1, 2)
        faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        if len(faces) == 0:
            return cls.empty()
        # Keep only vertices some triangle uses (drops the ring's closing point).
        used, remapped = np.unique(faces, return_inverse=True)
        return cls(
            vertices=vertices[used],
            indices=remapped.astype(np.uint32).reshape(-1, 3),
        )

    @property
    def triangle_count(self) -> int:
        return int(len(self.indices))

    @property
    def area(self) -> float:
        if self.triangle_count == 0:
            return 0.0
        tri = self.vertices[self.indices]
        ab = tri[:, 1] - tri[:, 0]
        ac = tri[:, 2] - tri[:, 0]
        return float(np.abs(ab[:, 0] * ac[:, 1] - ab[:, 1] * ac[:, 0]).sum() / 2.0)

    def affine_transform(self, transform: AffineTransform) -> "Triangulation":
        if len(self.vertices) == 0:
            return Triangulation.empty()
        return Triangulation(
            vertices=transform.apply_to_points(self.vertices),
            indices=self.indices.copy(),
        )

    def append_to(self, buffer: "GeometryBuffer") -> None:
        buffer.append(self.vertices, self.indices)


class GeometryBuffer:
    """Append-only vertex/index buffer shared by all shapes on one layer.

    Positions are stored as (x, y, 0) float32 triples. Appended indices are
    rebased onto the vertices already in the buffer.
    """

    def __init__(self):
        self._position_chunks: List[np.ndarray] = []
        self._index_chunks: List[np.ndarray] = []
        self._vertex_count = 0
        self._triangle_count = 0

    @property
    def vertex_count(self) -> int:
        return self._vertex_count

    @property
    def triangle_count(self) -> int:
        return self._triangle_count

    def append(self, vertices: np.ndarray, indices: np.ndarray) -> None:
        vertices = np.asarray(vertices, dtype=float).reshape(-1, 2)
        indices = np.asarray(indices, dtype=np.uint32).reshape(-1, 3)
        if len(vertices) == 0:
            return
        positions = np.zeros((len(vertices), 3), dtype=np.float32)
        positions[:, :2] = vertices
        self._position_chunks.append(positions)
        self._index_chunks.append(indices + np.uint32(self._vertex_count))
        self._vertex_count += len(vertices)
        self._triangle_count += len(indices)

    @property
    def positions(self) -> np.ndarray:
        if not self._position_chunks:
            return np.zeros((0, 3), dtype=np.float32)
        return np.concatenate(self._position_chunks)

    @property
    def indices(self) -> np.ndarray:
        if not self._index_chunks:
            return np.zeros((0, 3), dtype=np.uint32)
        return np.concatenate(self._index_chunks)
