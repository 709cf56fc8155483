"""
Flattening of the definition graph into world-space instances.

Selecting a root definition instantiates the whole tree below it: every
(shape, path through the hierarchy) pair becomes one ShapeInstance, layer
bounds grow to cover it, and its triangles are appended to the layer's
geometry buffer. A definition referenced from N places is flattened N times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List

from shapely.geometry import Polygon

from gdsview.contracts import CyclicReferenceError, RootAlreadySelectedError
from gdsview.geometry_primitives import AffineTransform, BoundingBox
from gdsview.mesh_buffers import Triangulation
from gdsview.store import (
    CellDefinitionHandle,
    CellInstance,
    CellInstanceHandle,
    CellReference,
    GraphStore,
    LayerHandle,
    ShapeInstance,
    ShapeInstanceHandle,
)

logger = logging.getLogger(__name__)

_ON_PATH = 1
_FINISHED = 2


@dataclass
class _ShapePrototype:
    layer: LayerHandle
    world_polygon: Polygon
    world_triangles: Triangulation


@dataclass
class _Frame:
    """A cell instance whose children are still being expanded."""
    handle: CellInstanceHandle
    definition: CellDefinitionHandle
    transform: AffineTransform
    cell_refs: List[CellReference]
    next_ref: int = 0
    shape_instances: List[ShapeInstanceHandle] = field(default_factory=list)
    child_instances: List[CellInstanceHandle] = field(default_factory=list)


class Instancer:
    """Creates the instance tree for one chosen root definition."""

    def __init__(self, store: GraphStore):
        self.store = store

    def select_root(self, definition: CellDefinitionHandle) -> CellInstanceHandle:
        """Instantiate *definition* with the identity transform and mark it root.

        Raises:
            RootAlreadySelectedError: if this store already has a root instance.
            CyclicReferenceError: if a reference cycle is reachable from
                *definition*. Checked before anything is created.
        """
        cell_definition = self.store.definition(definition)
        if self.store.root_instance is not None or self.store.counts()["cell_instances"]:
            raise RootAlreadySelectedError("Root cell instance already exists")
        check_acyclic(self.store, definition)

        logger.info("Selecting %s as root.", cell_definition.name)
        root = self._instantiate(definition, AffineTransform.identity())
        self.store.mark_root(root)

        counts = self.store.counts()
        logger.info(
            "Instantiated %d cells, %d shapes",
            counts["cell_instances"], counts["shape_instances"],
        )
        return root

    def _instantiate(
        self, definition_handle: CellDefinitionHandle, transform: AffineTransform
    ) -> CellInstanceHandle:
        """Expand the tree below *definition_handle* depth-first.

        Handles are allocated in pre-order; each CellInstance is recorded
        once all of its children are. An explicit stack keeps arbitrarily
        deep hierarchies off the interpreter's call stack.
        """
        root = self._open_instance(definition_handle, transform)
        stack = [root]
        while stack:
            frame = stack[-1]
            if frame.next_ref < len(frame.cell_refs):
                cell_ref = frame.cell_refs[frame.next_ref]
                frame.next_ref += 1
                child = self._open_instance(
                    cell_ref.target, cell_ref.local_transform.compose(frame.transform)
                )
                frame.child_instances.append(child.handle)
                stack.append(child)
                continue
            stack.pop()
            self.store.set_cell_instance(
                frame.handle,
                CellInstance(
                    definition=frame.definition,
                    shape_instances=frame.shape_instances,
                    child_instances=frame.child_instances,
                    world_transform=frame.transform,
                ),
            )
        return root.handle

    def _open_instance(
        self, definition_handle: CellDefinitionHandle, transform: AffineTransform
    ) -> _Frame:
        store = self.store
        definition = store.definition(definition_handle)

        # Read: world-space shapes, no store mutation.
        prototypes = []
        for shape_def_handle in definition.shape_defs:
            shape_def = store.shape_definition(shape_def_handle)
            prototypes.append(
                _ShapePrototype(
                    layer=shape_def.layer,
                    world_polygon=transform.apply_to_polygon(shape_def.local_polygon),
                    world_triangles=shape_def.local_triangulation.affine_transform(transform),
                )
            )

        # Write: instances, layer bookkeeping, geometry.
        frame = _Frame(
            handle=store.reserve_cell_instance(),
            definition=definition_handle,
            transform=transform,
            cell_refs=definition.cell_refs,
        )
        for prototype in prototypes:
            layer = store.layer(prototype.layer)
            shape_handle = store.add_shape_instance(
                ShapeInstance(
                    owning_instance=frame.handle,
                    world_polygon=prototype.world_polygon,
                    layer=prototype.layer,
                    layer_index_snapshot=layer.numeric_index,
                )
            )
            frame.shape_instances.append(shape_handle)
            layer.shape_instances.append(shape_handle)
            layer.world_bounds.encompass(BoundingBox.from_geometry(prototype.world_polygon))
            prototype.world_triangles.append_to(store.geometry(layer.geometry_buffer))
        return frame


def check_acyclic(store: GraphStore, root: CellDefinitionHandle) -> None:
    """Raise CyclicReferenceError if a cycle is reachable from *root*.

    Depth-first with an explicit stack; definitions already fully explored
    are not walked again, so shared sub-hierarchies cost one visit.
    """
    state: Dict[CellDefinitionHandle, int] = {root: _ON_PATH}
    path: List[CellDefinitionHandle] = [root]
    stack = [_targets(store, root)]
    while stack:
        child = next(stack[-1], None)
        if child is None:
            stack.pop()
            state[path.pop()] = _FINISHED
            continue
        seen = state.get(child)
        if seen == _ON_PATH:
            cycle = path[path.index(child):] + [child]
            raise CyclicReferenceError([store.definition(h).name for h in cycle])
        if seen is None:
            state[child] = _ON_PATH
            path.append(child)
            stack.append(_targets(store, child))


def _targets(store: GraphStore, handle: CellDefinitionHandle) -> Iterator[CellDefinitionHandle]:
    return (ref.target for ref in store.definition(handle).cell_refs)
