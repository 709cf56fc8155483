"""
Shared test fixtures for layout loading, flattening and picking tests.
"""
import sys
from pathlib import Path

import gdstk
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gdsview.builder import IncrementalGraphBuilder
from gdsview.contracts import Boundary, LoaderConfig, StructRef, Structure


def square(x0, y0, size):
    return [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]


@pytest.fixture
def build_store():
    """Run the builder to completion over decoded structures."""
    def _build(structures, chunk_size=100):
        builder = IncrementalGraphBuilder(structures, config=LoaderConfig(chunk_size=chunk_size))
        events = list(builder)
        return events[-1].store
    return _build


@pytest.fixture
def inv_top_structures():
    """INV: one 10x10 square on layer 1. TOP: INV placed at (0,0) and (20,0)."""
    return [
        Structure("INV", [Boundary(layer=1, points=square(0, 0, 10))]),
        Structure(
            "TOP",
            [
                StructRef("INV", origin=(0.0, 0.0)),
                StructRef("INV", origin=(20.0, 0.0)),
            ],
        ),
    ]


@pytest.fixture
def gds_file(tmp_path):
    """A small GDSII file written with gdstk.

    INV: 10x10 rectangle on layer 1 and a width-2 flush path on layer 2.
    TOP: INV at (0,0) and (20,0), plus a text label on layer 3.
    """
    lib = gdstk.Library()
    inv = lib.new_cell("INV")
    inv.add(gdstk.rectangle((0, 0), (10, 10), layer=1))
    inv.add(gdstk.FlexPath([(0, 20), (10, 20)], 2, layer=2, simple_path=True))
    top = lib.new_cell("TOP")
    top.add(gdstk.Reference(inv, (0, 0)))
    top.add(gdstk.Reference(inv, (20, 0)))
    top.add(gdstk.Label("hello", (0, 0), layer=3))
    path = tmp_path / "layout.gds"
    lib.write_gds(str(path))
    return path
