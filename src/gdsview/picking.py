"""
Point picking over flattened shape instances.

The index is a Shapely STRtree, bulk-loaded once after instantiation from the
envelopes of every world polygon. It is never updated; a reload builds a new
one.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from shapely import STRtree

from gdsview.geometry_primitives import as_point, polygon_contains
from gdsview.store import GraphStore, ShapeInstanceHandle

logger = logging.getLogger(__name__)


class SpatialIndex:
    """Static spatial index answering "which shape is under this point"."""

    def __init__(self, store: GraphStore):
        self._store = store
        self._handles: List[ShapeInstanceHandle] = []
        polygons = []
        for handle, instance in store.shape_instances():
            self._handles.append(handle)
            polygons.append(instance.world_polygon)
        # Empty polygons (degenerate paths) are not indexed by STRtree.
        self._tree = STRtree(polygons)
        logger.info("Built spatial index over %d shape instances", len(self._handles))

    @classmethod
    def build(cls, store: GraphStore) -> "SpatialIndex":
        return cls(store)

    def __len__(self) -> int:
        return len(self._handles)

    def candidates(self, point) -> List[ShapeInstanceHandle]:
        """Shape instances whose envelope contains *point*, in creation order."""
        hits = self._tree.query(as_point(point))
        return [self._handles[i] for i in sorted(int(i) for i in hits)]

    def pick(self, point) -> Optional[ShapeInstanceHandle]:
        """Topmost visible shape instance containing *point*, or None.

        Higher layer indices paint on top, so they win. Within one layer the
        most recently created instance wins, matching buffer draw order.
        """
        pt = as_point(point)
        best: Optional[ShapeInstanceHandle] = None
        best_key: Optional[Tuple[int, int]] = None
        for handle in self.candidates(pt):
            shape = self._store.shape_instance(handle)
            if not self._store.layer(shape.layer).visible:
                continue
            if not polygon_contains(shape.world_polygon, pt.x, pt.y):
                continue
            key = (shape.layer_index_snapshot, int(handle))
            if best_key is None or key > best_key:
                best, best_key = handle, key
        return best
