"""Tests for the point-picking spatial index."""
import pytest

from gdsview.contracts import Boundary, Path, StructRef, Structure
from gdsview.instancer import Instancer
from gdsview.picking import SpatialIndex


def _square(x0, y0, size):
    return [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]


@pytest.fixture
def flatten(build_store):
    """Build, select the first structure named TOP and index it."""
    def _flatten(structures):
        store = build_store(structures)
        Instancer(store).select_root(store.definition_by_name("TOP"))
        return store, SpatialIndex.build(store)
    return _flatten


def test_inv_top_picks(flatten, inv_top_structures):
    store, index = flatten(inv_top_structures)
    assert len(index) == 2
    assert index.pick((5.0, 5.0)) == 0
    assert index.pick((25.0, 5.0)) == 1
    assert index.pick((15.0, 5.0)) is None
    assert index.pick((-1.0, -1.0)) is None


def test_higher_layer_wins_regardless_of_creation_order(flatten):
    store, index = flatten(
        [Structure("TOP", [Boundary(5, _square(0, 0, 10)), Boundary(2, _square(0, 0, 10))])]
    )
    hit = index.pick((5.0, 5.0))
    assert hit == 0
    assert store.shape_instance(hit).layer_index_snapshot == 5


def test_hidden_layers_fall_through(flatten):
    store, index = flatten(
        [Structure("TOP", [Boundary(5, _square(0, 0, 10)), Boundary(2, _square(0, 0, 10))])]
    )
    top_layer = store.shape_instance(0).layer
    bottom_layer = store.shape_instance(1).layer

    store.layer(top_layer).visible = False
    assert index.pick((5.0, 5.0)) == 1

    store.layer(bottom_layer).visible = False
    assert index.pick((5.0, 5.0)) is None

    store.layer(top_layer).visible = True
    assert index.pick((5.0, 5.0)) == 0


def test_envelope_hit_outside_polygon_misses(flatten):
    l_shape = [(0, 0), (10, 0), (10, 2), (2, 2), (2, 10), (0, 10)]
    store, index = flatten([Structure("TOP", [Boundary(1, l_shape)])])
    assert index.candidates((8.0, 8.0)) == [0]
    assert index.pick((8.0, 8.0)) is None
    assert index.pick((1.0, 8.0)) == 0


def test_same_layer_overlap_picks_later_instance(flatten):
    store, index = flatten(
        [
            Structure("LEAF", [Boundary(1, _square(0, 0, 10))]),
            Structure("TOP", [StructRef("LEAF"), StructRef("LEAF", origin=(5.0, 0.0))]),
        ]
    )
    assert index.pick((7.0, 5.0)) == 1
    assert index.pick((2.0, 5.0)) == 0


def test_zero_width_paths_are_never_picked(flatten):
    store, index = flatten(
        [Structure("TOP", [Path(3, [(0.0, 0.0), (10.0, 0.0)], width=0.0)])]
    )
    assert len(index) == 1
    assert index.candidates((5.0, 0.0)) == []
    assert index.pick((5.0, 0.0)) is None


def test_wide_path_is_picked(flatten):
    store, index = flatten(
        [Structure("TOP", [Path(3, [(0.0, 0.0), (10.0, 0.0)], width=2.0)])]
    )
    assert index.pick((5.0, 0.5)) == 0
    assert index.pick((5.0, 1.5)) is None
    assert index.pick((10.5, 0.0)) is None
