"""
Incremental construction of the cell-definition graph.

The builder is a pull-based state machine: every ``step()`` does a bounded
amount of work and returns a Progress snapshot, so a host event loop can
repaint between steps. It is also an iterator over those snapshots, and the
last one carries the finished GraphStore.

Phases:
  1. Parsing records      decode the GDS source (skipped for pre-decoded input)
  2. Gathering names      one CellDefinition per structure, so references
                          can point forward
  3. Creating definitions ``chunk_size`` elements per step
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from gdsview.contracts import (
    ArrayRef,
    Boundary,
    Box,
    DanglingReferenceError,
    DecodeError,
    Element,
    LoaderConfig,
    LoadPhase,
    Node,
    Path,
    Progress,
    StructRef,
    Structure,
    Text,
)
from gdsview.gds_reader import read_gds
from gdsview.geometry_primitives import (
    AffineTransform,
    polygon_from_points,
    stroke_path_outline,
)
from gdsview.mesh_buffers import Triangulation
from gdsview.store import (
    CellDefinitionHandle,
    GraphStore,
    ShapeDefinition,
    ShapeKind,
)

logger = logging.getLogger(__name__)

LayoutSource = Union[str, "os.PathLike[str]", bytes, bytearray, Sequence[Structure]]


def reference_transform(ref: StructRef) -> AffineTransform:
    """Local transform of a structure reference: reflect, then rotate, then translate.

    Magnification and the absolute angle/magnification flags are reported
    and otherwise ignored.
    """
    rotate = AffineTransform.identity()
    reflect = AffineTransform.identity()
    if ref.angle:
        rotate = AffineTransform.rotate(ref.angle)
    if ref.reflected:
        reflect = AffineTransform.scale(1.0, -1.0)
    if ref.magnification is not None and ref.magnification != 1.0:
        logger.warning(
            "Magnification not supported (reference to '%s', mag=%g)",
            ref.target_name, ref.magnification,
        )
    if ref.abs_angle or ref.abs_magnification:
        logger.warning("Absolute transform not supported (reference to '%s')", ref.target_name)
    translate = AffineTransform.translate(float(ref.origin[0]), float(ref.origin[1]))
    return reflect.compose(rotate).compose(translate)


class IncrementalGraphBuilder:
    """Turns decoded GDS structures into GraphStore definitions, chunk by chunk."""

    def __init__(
        self,
        structures: Optional[Sequence[Structure]] = None,
        config: Optional[LoaderConfig] = None,
        store: Optional[GraphStore] = None,
        source: Optional[LayoutSource] = None,
    ):
        if (structures is None) == (source is None):
            raise ValueError("Pass exactly one of structures or source")
        self.config = config or LoaderConfig()
        self._source = source
        self._structures: List[Structure] = list(structures) if structures is not None else []
        self._store: Optional[GraphStore] = (
            store if store is not None else GraphStore(self.config.default_layer_color)
        )
        self.state = LoadPhase.PARSING_RECORDS if source is not None else LoadPhase.GATHERING_NAMES

        self._names: Dict[str, CellDefinitionHandle] = {}
        self._struct_index = 0
        self._elem_index = 0
        self.processed_element_count = 0
        self.total_element_count = 0
        self.current_structure = ""

    @classmethod
    def from_source(
        cls, source: LayoutSource, config: Optional[LoaderConfig] = None
    ) -> "IncrementalGraphBuilder":
        """Builder over a GDS path, raw GDS bytes, or already-decoded structures."""
        if isinstance(source, (str, bytes, bytearray, os.PathLike)):
            return cls(source=source, config=config)
        return cls(structures=source, config=config)

    def __iter__(self) -> Iterator[Progress]:
        return self

    def __next__(self) -> Progress:
        return self.step()

    def step(self) -> Progress:
        """Advance by one unit of work and report progress.

        Raises StopIteration once the terminal snapshot has been returned.
        """
        if self.state is LoadPhase.PARSING_RECORDS:
            self._parse_records()
            self.state = LoadPhase.GATHERING_NAMES
            return Progress(phase="Gathering definitions", percent=0.0)

        if self.state is LoadPhase.GATHERING_NAMES:
            self._gather_names()
            if self.total_element_count == 0:
                return self._finish("Creating definitions")
            self.state = LoadPhase.GENERATING_DEFINITIONS
            return Progress(phase="Creating definitions", percent=0.0)

        if self.state is LoadPhase.GENERATING_DEFINITIONS:
            for _ in range(self.config.chunk_size):
                self._process_element()
                if self.processed_element_count >= self.total_element_count:
                    break
            phase = f"Creating definitions for '{self.current_structure}'"
            if self.processed_element_count >= self.total_element_count:
                return self._finish(phase)
            percent = 100.0 * self.processed_element_count / self.total_element_count
            logger.debug("%s: %.1f%%", phase, percent)
            return Progress(phase=phase, percent=percent)

        raise StopIteration

    # ─── Phases ──────────────────────────────────────────────────────────────

    def _parse_records(self) -> None:
        self._structures = read_gds(self._source)
        self._source = None

    def _gather_names(self) -> None:
        store = self._store
        self.total_element_count = 0
        for structure in self._structures:
            if structure.name in self._names:
                raise DecodeError(f"Duplicate structure name: '{structure.name}'")
            self._names[structure.name] = store.create_definition(structure.name)
            self.total_element_count += len(structure.elements)
        logger.info(
            "Gathered %d structures, %d elements",
            len(self._structures), self.total_element_count,
        )

    def _finish(self, phase: str) -> Progress:
        store, self._store = self._store, None
        self.state = LoadPhase.DONE
        counts = store.counts()
        logger.info(
            "Loaded %d cell definitions, %d shapes on %d layers",
            counts["cell_definitions"], counts["shape_definitions"], counts["layers"],
        )
        return Progress(phase=phase, percent=100.0, store=store)

    # ─── Element dispatch ────────────────────────────────────────────────────

    def _next_element(self) -> Tuple[Structure, Element]:
        while self._elem_index >= len(self._structures[self._struct_index].elements):
            self._struct_index += 1
            self._elem_index = 0
        structure = self._structures[self._struct_index]
        element = structure.elements[self._elem_index]
        self._elem_index += 1
        return structure, element

    def _process_element(self) -> None:
        structure, element = self._next_element()
        owner = self._names[structure.name]

        if isinstance(element, StructRef):
            target = self._names.get(element.target_name)
            if target is None:
                raise DanglingReferenceError(
                    f"Structure '{structure.name}' references unknown structure "
                    f"'{element.target_name}'"
                )
            self._store.append_cell_ref(owner, target, reference_transform(element))
        elif isinstance(element, Boundary):
            self._add_boundary(owner, element)
        elif isinstance(element, Path):
            self._add_path(owner, structure.name, element)
        elif isinstance(element, ArrayRef):
            logger.warning(
                "Array references are not supported (in '%s', to '%s')",
                structure.name, element.target_name,
            )
        elif isinstance(element, Node):
            logger.warning("Node elements are not supported (in '%s')", structure.name)
        elif isinstance(element, Box):
            logger.warning("Box elements are not supported (in '%s')", structure.name)
        elif isinstance(element, Text):
            # Text is not rendered.
            pass
        else:
            raise DecodeError(f"Unknown element type: {type(element).__name__}")

        self.processed_element_count += 1
        self.current_structure = structure.name

    def _add_boundary(self, owner: CellDefinitionHandle, boundary: Boundary) -> None:
        polygon = polygon_from_points(boundary.points)
        self._append_shape(
            owner,
            ShapeDefinition(
                layer=self._store.get_or_create_layer(boundary.layer),
                local_polygon=polygon,
                local_triangulation=Triangulation.from_polygon(
                    polygon, self.config.triangulation_engine
                ),
                kind=ShapeKind.POLYGON,
            ),
        )

    def _add_path(self, owner: CellDefinitionHandle, structure_name: str, path: Path) -> None:
        width = abs(float(path.width))
        if width == 0.0:
            logger.debug("Zero-width path in '%s'", structure_name)
        polygon = stroke_path_outline(
            path.spine,
            width / 2.0,
            path.path_type,
            mitre_limit=self.config.mitre_limit,
            quad_segs=self.config.round_cap_segments,
        )
        self._append_shape(
            owner,
            ShapeDefinition(
                layer=self._store.get_or_create_layer(path.layer),
                local_polygon=polygon,
                local_triangulation=Triangulation.from_polygon(
                    polygon, self.config.triangulation_engine
                ),
                kind=ShapeKind.PATH,
            ),
        )

    def _append_shape(self, owner: CellDefinitionHandle, shape_def: ShapeDefinition) -> None:
        handle = self._store.add_shape_definition(shape_def)
        self._store.append_shape_def(owner, handle)


def stream_layout(
    source: LayoutSource, config: Optional[LoaderConfig] = None
) -> Iterator[Progress]:
    """Lazily load *source*, yielding Progress until the store is ready."""
    return IncrementalGraphBuilder.from_source(source, config)
