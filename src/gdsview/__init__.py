"""Public API for GDS layout loading, flattening and picking."""

from gdsview.builder import IncrementalGraphBuilder, stream_layout
from gdsview.contracts import (
    CyclicReferenceError,
    DanglingReferenceError,
    DecodeError,
    LayoutError,
    LoaderConfig,
    NoRootsError,
    Progress,
    RootAlreadySelectedError,
    UnknownStructureError,
)
from gdsview.gds_reader import read_gds
from gdsview.instancer import Instancer
from gdsview.picking import SpatialIndex
from gdsview.roots import find_roots
from gdsview.session import ViewerSession
from gdsview.store import GraphStore

__all__ = [
    "CyclicReferenceError",
    "DanglingReferenceError",
    "DecodeError",
    "GraphStore",
    "IncrementalGraphBuilder",
    "Instancer",
    "LayoutError",
    "LoaderConfig",
    "NoRootsError",
    "Progress",
    "RootAlreadySelectedError",
    "SpatialIndex",
    "UnknownStructureError",
    "ViewerSession",
    "find_roots",
    "read_gds",
    "stream_layout",
]
