"""
Viewer session: one loaded layout, its flattened instances and picking state.

This is the platform-independent part of a layout viewer. It drives the
incremental loader, lets the host pick a root, owns the spatial index, keeps
track of the single hovered shape and exposes per-layer state for a sidebar.
Rendering and camera handling live with the host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

from gdsview.builder import LayoutSource, stream_layout
from gdsview.contracts import LoaderConfig, NoRootsError, Progress, UnknownStructureError
from gdsview.geometry_primitives import BoundingBox
from gdsview.instancer import Instancer
from gdsview.picking import SpatialIndex
from gdsview.roots import find_roots
from gdsview.store import (
    CellDefinitionHandle,
    CellInstanceHandle,
    GraphStore,
    LayerHandle,
    ShapeInstanceHandle,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoverChange:
    """Result of a hover update; ``changed`` tells the host to repaint."""
    changed: bool
    previous: Optional[ShapeInstanceHandle]
    current: Optional[ShapeInstanceHandle]


@dataclass(frozen=True)
class LayerSummary:
    """Sidebar view of one layer."""
    handle: LayerHandle
    index: int
    render_order: int
    visible: bool
    color: str            # "#rrggbb"
    opacity: float
    is_empty: bool
    shape_count: int
    bounds: Optional[Tuple[float, float, float, float]]


def rgb_to_hex(r: float, g: float, b: float) -> str:
    return "#" + "".join(f"{round(max(0.0, min(1.0, c)) * 255):02x}" for c in (r, g, b))


def hex_to_rgb(value: str) -> Tuple[float, float, float]:
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        raise ValueError(f"Invalid hex colour: {value!r}")
    try:
        channels = [int(text[i:i + 2], 16) for i in (0, 2, 4)]
    except ValueError as exc:
        raise ValueError(f"Invalid hex colour: {value!r}") from exc
    return (channels[0] / 255.0, channels[1] / 255.0, channels[2] / 255.0)


class ViewerSession:
    """Owns the GraphStore and spatial index for the currently loaded layout."""

    def __init__(self, config: Optional[LoaderConfig] = None):
        self.config = config or LoaderConfig()
        self.store: Optional[GraphStore] = None
        self.index: Optional[SpatialIndex] = None
        self.root: Optional[CellInstanceHandle] = None
        self.hovered: Optional[ShapeInstanceHandle] = None
        self.world_bounds = BoundingBox()

    # ─── Loading ─────────────────────────────────────────────────────────────

    def load(self, source: LayoutSource) -> Iterator[Progress]:
        """Discard the current layout and stream in a new one.

        The store is adopted from the terminal Progress event.
        """
        self.close()
        for progress in stream_layout(source, self.config):
            if progress.store is not None:
                self.store = progress.store
            yield progress

    def load_all(self, source: LayoutSource) -> GraphStore:
        for _ in self.load(source):
            pass
        return self._require_store()

    def close(self) -> None:
        self.store = None
        self.index = None
        self.root = None
        self.hovered = None
        self.world_bounds = BoundingBox()

    # ─── Roots ───────────────────────────────────────────────────────────────

    def roots(self) -> List[CellDefinitionHandle]:
        store = self._require_store()
        roots = find_roots(store)
        if not roots:
            raise NoRootsError("No root cell: every structure is referenced by another")
        return roots

    def select_root(
        self, definition: Union[CellDefinitionHandle, str, None] = None
    ) -> CellInstanceHandle:
        """Flatten *definition* (handle or name; default: first root) and index it."""
        store = self._require_store()
        if definition is None:
            definition = self.roots()[0]
        elif isinstance(definition, str):
            handle = store.definition_by_name(definition)
            if handle is None:
                raise UnknownStructureError(f"No structure named '{definition}'")
            definition = handle

        self.root = Instancer(store).select_root(definition)

        self.world_bounds = BoundingBox()
        for _, layer in store.layers():
            self.world_bounds.encompass(layer.world_bounds)
        logger.info("World bounds: %s", self.world_bounds.as_tuple())

        self.index = SpatialIndex.build(store)
        return self.root

    # ─── Picking ─────────────────────────────────────────────────────────────

    def pick(self, x: float, y: float) -> Optional[ShapeInstanceHandle]:
        if self.index is None:
            raise RuntimeError("No root selected; nothing to pick")
        return self.index.pick((x, y))

    def hover(self, x: float, y: float) -> HoverChange:
        hit = self.pick(x, y)
        previous = self.hovered
        self.hovered = hit
        return HoverChange(changed=hit != previous, previous=previous, current=hit)

    # ─── Layers ──────────────────────────────────────────────────────────────

    def layer_summaries(self) -> List[LayerSummary]:
        store = self._require_store()
        summaries = []
        for handle, layer in store.layers():
            r, g, b, a = layer.color
            summaries.append(
                LayerSummary(
                    handle=handle,
                    index=layer.numeric_index,
                    render_order=layer.render_order,
                    visible=layer.visible,
                    color=rgb_to_hex(r, g, b),
                    opacity=a,
                    is_empty=not layer.shape_instances,
                    shape_count=len(layer.shape_instances),
                    bounds=layer.world_bounds.as_tuple(),
                )
            )
        return sorted(summaries, key=lambda s: (s.render_order, s.index))

    def set_layer_visible(self, layer: LayerHandle, visible: bool) -> None:
        store = self._require_store()
        store.layer(layer).visible = visible
        if not visible and self.hovered is not None:
            if store.shape_instance(self.hovered).layer == layer:
                self.hovered = None

    def set_layer_color(self, layer: LayerHandle, color: str, opacity: Optional[float] = None) -> None:
        store = self._require_store()
        target = store.layer(layer)
        r, g, b = hex_to_rgb(color)
        a = target.color[3] if opacity is None else max(0.0, min(1.0, float(opacity)))
        target.color = (r, g, b, a)

    # ─── Reporting ───────────────────────────────────────────────────────────

    def report(self) -> Dict[str, object]:
        """JSON-serialisable summary of the loaded layout."""
        store = self._require_store()
        root_name = None
        if self.root is not None:
            root_name = store.definition(store.cell_instance(self.root).definition).name
        layers = []
        for summary in self.layer_summaries():
            geometry = store.geometry(store.layer(summary.handle).geometry_buffer)
            layers.append(
                {
                    "index": summary.index,
                    "render_order": summary.render_order,
                    "visible": summary.visible,
                    "color": summary.color,
                    "shape_instances": summary.shape_count,
                    "triangles": geometry.triangle_count,
                    "bounds": list(summary.bounds) if summary.bounds else None,
                }
            )
        return {
            "counts": store.counts(),
            "shape_kinds": store.shape_kind_counts(),
            "roots": [store.definition(h).name for h in find_roots(store)],
            "selected_root": root_name,
            "world_bounds": list(self.world_bounds.as_tuple() or []) or None,
            "layers": layers,
        }

    def _require_store(self) -> GraphStore:
        if self.store is None:
            raise RuntimeError("No layout loaded")
        return self.store
