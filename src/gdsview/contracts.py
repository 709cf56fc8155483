"""Contracts for GDS layout ingestion: decoded records, config, progress, errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple, Union

if TYPE_CHECKING:
    from gdsview.store import GraphStore

Vec2 = Tuple[float, float]
RGBA = Tuple[float, float, float, float]


# ─── Errors ──────────────────────────────────────────────────────────────────

class LayoutError(Exception):
    """Base exception for layout loading and flattening errors."""
    pass


class DecodeError(LayoutError):
    """The layout file could not be decoded into structures."""
    pass


class DanglingReferenceError(LayoutError):
    """A structure reference names a structure that does not exist."""
    pass


class UnknownStructureError(LayoutError):
    """No structure with the requested name exists in the loaded layout."""
    pass


class RootAlreadySelectedError(LayoutError):
    """A root instance already exists in this store."""
    pass


class CyclicReferenceError(LayoutError):
    """The reference graph below the chosen root contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic structure reference: " + " -> ".join(self.cycle))


class NoRootsError(LayoutError):
    """Every cell definition is referenced by another one."""
    pass


# ─── Decoded records ─────────────────────────────────────────────────────────

class PathType(Enum):
    """GDSII PATHTYPE values, mapped onto outline cap styles."""
    FLUSH = 0
    ROUND = 1
    EXTENDED = 2

    @classmethod
    def from_gds(cls, value: Optional[int]) -> "PathType":
        if value == 1:
            return cls.ROUND
        if value == 2:
            return cls.EXTENDED
        return cls.FLUSH


@dataclass(frozen=True)
class Boundary:
    layer: int
    points: List[Vec2]
    datatype: int = 0


@dataclass(frozen=True)
class Path:
    layer: int
    spine: List[Vec2]
    width: float = 0.0
    path_type: PathType = PathType.FLUSH
    datatype: int = 0


@dataclass(frozen=True)
class StructRef:
    """Single placement of another structure (SREF)."""
    target_name: str
    origin: Vec2 = (0.0, 0.0)
    angle: Optional[float] = None          # degrees, counter-clockwise
    reflected: bool = False                # reflection about x before rotation
    magnification: Optional[float] = None
    abs_angle: bool = False
    abs_magnification: bool = False


@dataclass(frozen=True)
class ArrayRef:
    """Repeated placement of another structure (AREF)."""
    target_name: str
    origin: Vec2 = (0.0, 0.0)
    columns: int = 1
    rows: int = 1
    column_step: Vec2 = (0.0, 0.0)
    row_step: Vec2 = (0.0, 0.0)


@dataclass(frozen=True)
class Text:
    layer: int
    text: str
    origin: Vec2 = (0.0, 0.0)


@dataclass(frozen=True)
class Node:
    layer: int
    points: List[Vec2] = field(default_factory=list)


@dataclass(frozen=True)
class Box:
    layer: int
    points: List[Vec2] = field(default_factory=list)


Element = Union[Boundary, Path, StructRef, ArrayRef, Text, Node, Box]


@dataclass
class Structure:
    """A named GDS structure with its ordered element list."""
    name: str
    elements: List[Element] = field(default_factory=list)


# ─── Loading ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LoaderConfig:
    """Configuration for layout ingestion."""

    # Elements processed per builder resumption. Higher values load faster
    # but report progress less often.
    chunk_size: int = 100
    mitre_limit: float = 5.0
    round_cap_segments: int = 8
    triangulation_engine: str = "earcut"
    default_layer_color: RGBA = (0.0, 0.0, 0.0, 1.0)

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")


class LoadPhase(Enum):
    PARSING_RECORDS = "parsing_records"
    GATHERING_NAMES = "gathering_names"
    GENERATING_DEFINITIONS = "generating_definitions"
    DONE = "done"


@dataclass
class Progress:
    """Snapshot emitted after each unit of loading work.

    ``store`` is only set on the terminal event.
    """
    phase: str
    percent: float
    store: Optional["GraphStore"] = None

    @property
    def done(self) -> bool:
        return self.store is not None
