"""
Core 2D geometry types for layout flattening.

Built on Shapely for polygon operations. Provides AffineTransform (composable
GDS placement transforms), BoundingBox (growable AABB), and the path-outline
stroker used to turn GDS paths into polygons.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely import affinity
from shapely.geometry import LineString, MultiPolygon, Point, Polygon

from gdsview.contracts import PathType, Vec2

_CAP_STYLES = {
    PathType.FLUSH: "flat",
    PathType.ROUND: "round",
    PathType.EXTENDED: "square",
}


class AffineTransform:
    """2D affine transform stored as a 3x3 homogeneous matrix.

    ``a.compose(b)`` is the transform that applies ``a`` first and then ``b``,
    so a GDS placement reads ``reflect.compose(rotate).compose(translate)``.
    """

    __slots__ = ("matrix",)

    def __init__(self, matrix: Optional[np.ndarray] = None):
        if matrix is None:
            matrix = np.eye(3)
        self.matrix = np.asarray(matrix, dtype=float)

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls()

    @classmethod
    def translate(cls, dx: float, dy: float) -> "AffineTransform":
        m = np.eye(3)
        m[0, 2] = dx
        m[1, 2] = dy
        return cls(m)

    @classmethod
    def rotate(cls, degrees: float) -> "AffineTransform":
        """Counter-clockwise rotation about the origin."""
        rad = math.radians(degrees)
        c, s = math.cos(rad), math.sin(rad)
        return cls(np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]]))

    @classmethod
    def scale(cls, sx: float, sy: float) -> "AffineTransform":
        return cls(np.diag([sx, sy, 1.0]))

    def compose(self, other: "AffineTransform") -> "AffineTransform":
        return AffineTransform(other.matrix @ self.matrix)

    def inverse(self) -> "AffineTransform":
        return AffineTransform(np.linalg.inv(self.matrix))

    def is_identity(self, tol: float = 1e-12) -> bool:
        return bool(np.allclose(self.matrix, np.eye(3), atol=tol))

    def shapely_params(self) -> Tuple[float, float, float, float, float, float]:
        """Coefficients in the order ``shapely.affinity.affine_transform`` expects."""
        m = self.matrix
        return (m[0, 0], m[0, 1], m[1, 0], m[1, 1], m[0, 2], m[1, 2])

    def apply_to_points(self, points) -> np.ndarray:
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        return pts @ self.matrix[:2, :2].T + self.matrix[:2, 2]

    def apply_to_polygon(self, polygon: Polygon) -> Polygon:
        if polygon.is_empty:
            return Polygon()
        return affinity.affine_transform(polygon, self.shapely_params())

    def __eq__(self, other) -> bool:
        if not isinstance(other, AffineTransform):
            return NotImplemented
        return bool(np.allclose(self.matrix, other.matrix))

    def __repr__(self) -> str:
        a, b, d, e, xoff, yoff = self.shapely_params()
        return f"AffineTransform(a={a:g}, b={b:g}, d={d:g}, e={e:g}, xoff={xoff:g}, yoff={yoff:g})"


@dataclass
class BoundingBox:
    """Axis-aligned bounding box; starts empty and grows by encompassing."""
    min_x: float = math.inf
    min_y: float = math.inf
    max_x: float = -math.inf
    max_y: float = -math.inf

    @classmethod
    def from_geometry(cls, geom) -> "BoundingBox":
        if geom is None or geom.is_empty:
            return cls()
        min_x, min_y, max_x, max_y = geom.bounds
        return cls(min_x, min_y, max_x, max_y)

    @property
    def is_empty(self) -> bool:
        return self.min_x > self.max_x or self.min_y > self.max_y

    @property
    def width(self) -> float:
        return 0.0 if self.is_empty else self.max_x - self.min_x

    @property
    def height(self) -> float:
        return 0.0 if self.is_empty else self.max_y - self.min_y

    def encompass(self, other: "BoundingBox") -> None:
        if other.is_empty:
            return
        self.min_x = min(self.min_x, other.min_x)
        self.min_y = min(self.min_y, other.min_y)
        self.max_x = max(self.max_x, other.max_x)
        self.max_y = max(self.max_y, other.max_y)

    def contains_point(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def as_tuple(self) -> Optional[Tuple[float, float, float, float]]:
        if self.is_empty:
            return None
        return (self.min_x, self.min_y, self.max_x, self.max_y)


# ─── Conversion functions ────────────────────────────────────────────────────

def polygon_from_points(points: Sequence[Vec2]) -> Polygon:
    """Build a polygon from a GDS point list (closing point optional)."""
    if len(points) < 3:
        return Polygon()
    return Polygon([(float(x), float(y)) for x, y in points])


def largest_polygon(geom) -> Polygon:
    """Return the largest Polygon in *geom*, or an empty Polygon."""
    if geom is None or geom.is_empty:
        return Polygon()
    if isinstance(geom, Polygon):
        return geom
    if isinstance(geom, MultiPolygon):
        return max(geom.geoms, key=lambda g: g.area)
    polys = [g for g in getattr(geom, "geoms", []) if isinstance(g, Polygon) and not g.is_empty]
    if not polys:
        return Polygon()
    return max(polys, key=lambda g: g.area)


def stroke_path_outline(
    spine: Sequence[Vec2],
    half_width: float,
    path_type: PathType = PathType.FLUSH,
    mitre_limit: float = 5.0,
    quad_segs: int = 8,
) -> Polygon:
    """Outline polygon of a GDS path.

    Flush paths end at the spine endpoints, extended paths are squared off
    half a width past them and round paths get semicircular caps. Joins are
    mitred. A zero half-width or a spine without two distinct points gives an
    empty polygon.
    """
    coords = _dedupe_consecutive(spine)
    if half_width <= 0 or len(coords) < 2:
        return Polygon()
    outline = LineString(coords).buffer(
        half_width,
        quad_segs=quad_segs,
        cap_style=_CAP_STYLES[path_type],
        join_style="mitre",
        mitre_limit=mitre_limit,
    )
    return largest_polygon(outline)


def polygon_contains(polygon: Polygon, x: float, y: float) -> bool:
    if polygon.is_empty:
        return False
    return bool(shapely.contains_xy(polygon, x, y))


def as_point(point) -> Point:
    if isinstance(point, Point):
        return point
    x, y = point
    return Point(float(x), float(y))


# ─── Internal helpers ────────────────────────────────────────────────────────

def _dedupe_consecutive(points: Iterable[Vec2]) -> list:
    out = []
    for x, y in points:
        p = (float(x), float(y))
        if not out or out[-1] != p:
            out.append(p)
    return out
