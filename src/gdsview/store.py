"""
Handle-addressed object graph for a loaded layout.

Every relationship between definitions, layers and instances is an integer
handle into one of the GraphStore arenas, so shared sub-hierarchies are stored
once and nothing owns its children directly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, NewType, Optional, Tuple

from shapely.geometry import Polygon

from gdsview.contracts import RGBA, DecodeError, RootAlreadySelectedError
from gdsview.geometry_primitives import AffineTransform, BoundingBox
from gdsview.mesh_buffers import GeometryBuffer, Triangulation

logger = logging.getLogger(__name__)

CellDefinitionHandle = NewType("CellDefinitionHandle", int)
ShapeDefinitionHandle = NewType("ShapeDefinitionHandle", int)
LayerHandle = NewType("LayerHandle", int)
GeometryHandle = NewType("GeometryHandle", int)
CellInstanceHandle = NewType("CellInstanceHandle", int)
ShapeInstanceHandle = NewType("ShapeInstanceHandle", int)

# GDSII layer numbers are int16.
LAYER_INDEX_MIN = -32768
LAYER_INDEX_MAX = 32767


class ShapeKind(Enum):
    POLYGON = "polygon"
    PATH = "path"


@dataclass(frozen=True)
class CellReference:
    """Placement of ``target`` inside its owning definition."""
    target: CellDefinitionHandle
    local_transform: AffineTransform


@dataclass
class CellDefinition:
    name: str
    shape_defs: List[ShapeDefinitionHandle] = field(default_factory=list)
    cell_refs: List[CellReference] = field(default_factory=list)


@dataclass
class ShapeDefinition:
    """A shape in its definition's local frame."""
    layer: LayerHandle
    local_polygon: Polygon
    local_triangulation: Triangulation
    kind: ShapeKind = ShapeKind.POLYGON


@dataclass
class LayerMaterial:
    """Render material shared by every layer mesh."""
    blend_mode: str = "source_over"


@dataclass
class Layer:
    numeric_index: int
    geometry_buffer: GeometryHandle
    color: RGBA = (0.0, 0.0, 0.0, 1.0)
    visible: bool = True
    world_bounds: BoundingBox = field(default_factory=BoundingBox)
    shape_instances: List[ShapeInstanceHandle] = field(default_factory=list)
    render_order: int = 0


@dataclass
class CellInstance:
    definition: CellDefinitionHandle
    # Same length as the definition's shape_defs / cell_refs.
    shape_instances: List[ShapeInstanceHandle] = field(default_factory=list)
    child_instances: List[CellInstanceHandle] = field(default_factory=list)
    # Maps this instance's coordinates to root coordinates.
    world_transform: AffineTransform = field(default_factory=AffineTransform.identity)


@dataclass
class ShapeInstance:
    owning_instance: CellInstanceHandle
    world_polygon: Polygon
    layer: LayerHandle
    # Copy of the layer's numeric index so picking never dereferences the layer.
    layer_index_snapshot: int


class GraphStore:
    """Arena of cell definitions, layers and flattened instances."""

    def __init__(self, default_layer_color: RGBA = (0.0, 0.0, 0.0, 1.0)):
        self.default_layer_color = default_layer_color
        self._definitions: List[CellDefinition] = []
        self._shape_definitions: List[ShapeDefinition] = []
        self._layers: List[Layer] = []
        self._geometries: List[GeometryBuffer] = []
        self._cell_instances: List[Optional[CellInstance]] = []
        self._shape_instances: List[ShapeInstance] = []
        self.layer_material: Optional[LayerMaterial] = None
        self._root_instance: Optional[CellInstanceHandle] = None

    # ─── Definitions ─────────────────────────────────────────────────────────

    def create_definition(self, name: str) -> CellDefinitionHandle:
        self._definitions.append(CellDefinition(name=name))
        return CellDefinitionHandle(len(self._definitions) - 1)

    def add_shape_definition(self, shape_def: ShapeDefinition) -> ShapeDefinitionHandle:
        self._shape_definitions.append(shape_def)
        return ShapeDefinitionHandle(len(self._shape_definitions) - 1)

    def append_shape_def(
        self, definition: CellDefinitionHandle, shape_def: ShapeDefinitionHandle
    ) -> None:
        self.definition(definition).shape_defs.append(shape_def)

    def append_cell_ref(
        self,
        definition: CellDefinitionHandle,
        target: CellDefinitionHandle,
        transform: AffineTransform,
    ) -> None:
        self.definition(target)
        self.definition(definition).cell_refs.append(
            CellReference(target=target, local_transform=transform)
        )

    def get_or_create_layer(self, numeric_index: int) -> LayerHandle:
        """Return the layer for ``numeric_index``, creating it on first sight.

        Linear scan over the existing layers.
        """
        if not LAYER_INDEX_MIN <= numeric_index <= LAYER_INDEX_MAX:
            raise DecodeError(f"Layer number out of int16 range: {numeric_index}")
        for handle, layer in enumerate(self._layers):
            if layer.numeric_index == numeric_index:
                return LayerHandle(handle)

        if self.layer_material is None:
            self.layer_material = LayerMaterial()

        self._geometries.append(GeometryBuffer())
        geometry = GeometryHandle(len(self._geometries) - 1)
        self._layers.append(
            Layer(
                numeric_index=numeric_index,
                geometry_buffer=geometry,
                color=self.default_layer_color,
                render_order=numeric_index,
            )
        )
        logger.debug("Created layer %d", numeric_index)
        return LayerHandle(len(self._layers) - 1)

    # ─── Instances ───────────────────────────────────────────────────────────

    def reserve_cell_instance(self) -> CellInstanceHandle:
        """Allocate a handle whose CellInstance is filled in later."""
        self._cell_instances.append(None)
        return CellInstanceHandle(len(self._cell_instances) - 1)

    def set_cell_instance(self, handle: CellInstanceHandle, instance: CellInstance) -> None:
        if self._cell_instances[handle] is not None:
            raise ValueError(f"Cell instance {handle} is already populated")
        self._cell_instances[handle] = instance

    def add_shape_instance(self, instance: ShapeInstance) -> ShapeInstanceHandle:
        self._shape_instances.append(instance)
        return ShapeInstanceHandle(len(self._shape_instances) - 1)

    def mark_root(self, handle: CellInstanceHandle) -> None:
        if self._root_instance is not None:
            raise RootAlreadySelectedError("Root cell instance already exists")
        self._root_instance = handle

    @property
    def root_instance(self) -> Optional[CellInstanceHandle]:
        return self._root_instance

    # ─── Accessors ───────────────────────────────────────────────────────────

    def definition(self, handle: CellDefinitionHandle) -> CellDefinition:
        return _lookup(self._definitions, handle, "cell definition")

    def shape_definition(self, handle: ShapeDefinitionHandle) -> ShapeDefinition:
        return _lookup(self._shape_definitions, handle, "shape definition")

    def layer(self, handle: LayerHandle) -> Layer:
        return _lookup(self._layers, handle, "layer")

    def geometry(self, handle: GeometryHandle) -> GeometryBuffer:
        return _lookup(self._geometries, handle, "geometry buffer")

    def cell_instance(self, handle: CellInstanceHandle) -> CellInstance:
        instance = _lookup(self._cell_instances, handle, "cell instance")
        if instance is None:
            raise KeyError(f"Cell instance {handle} is still being built")
        return instance

    def shape_instance(self, handle: ShapeInstanceHandle) -> ShapeInstance:
        return _lookup(self._shape_instances, handle, "shape instance")

    def definition_by_name(self, name: str) -> Optional[CellDefinitionHandle]:
        for handle, definition in enumerate(self._definitions):
            if definition.name == name:
                return CellDefinitionHandle(handle)
        return None

    def definitions(self) -> Iterator[Tuple[CellDefinitionHandle, CellDefinition]]:
        for handle, definition in enumerate(self._definitions):
            yield CellDefinitionHandle(handle), definition

    def layers(self) -> Iterator[Tuple[LayerHandle, Layer]]:
        for handle, layer in enumerate(self._layers):
            yield LayerHandle(handle), layer

    def shape_instances(self) -> Iterator[Tuple[ShapeInstanceHandle, ShapeInstance]]:
        for handle, instance in enumerate(self._shape_instances):
            yield ShapeInstanceHandle(handle), instance

    def shape_kind_counts(self) -> Dict[str, int]:
        """Number of shape definitions per ShapeKind value."""
        counts = {kind.value: 0 for kind in ShapeKind}
        for shape_def in self._shape_definitions:
            counts[shape_def.kind.value] += 1
        return counts

    def counts(self) -> Dict[str, int]:
        return {
            "cell_definitions": len(self._definitions),
            "shape_definitions": len(self._shape_definitions),
            "layers": len(self._layers),
            "cell_instances": len(self._cell_instances),
            "shape_instances": len(self._shape_instances),
        }


def _lookup(items: list, handle: int, kind: str):
    if not 0 <= handle < len(items):
        raise KeyError(f"Unknown {kind} handle: {handle}")
    return items[handle]
