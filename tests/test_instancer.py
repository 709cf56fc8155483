"""Tests for flattening the definition graph into world-space instances."""
import pytest

from gdsview.contracts import (
    Boundary,
    CyclicReferenceError,
    RootAlreadySelectedError,
    StructRef,
    Structure,
)
from gdsview.geometry_primitives import AffineTransform
from gdsview.instancer import Instancer, check_acyclic


def _square(x0, y0, size):
    return [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]


def _select(store, name):
    return Instancer(store).select_root(store.definition_by_name(name))


class TestInvTop:
    """INV holds one square; TOP places INV at (0,0) and (20,0)."""

    def test_instance_counts(self, build_store, inv_top_structures):
        store = build_store(inv_top_structures)
        _select(store, "TOP")
        counts = store.counts()
        assert counts["cell_instances"] == 3
        assert counts["shape_instances"] == 2

    def test_world_polygons(self, build_store, inv_top_structures):
        store = build_store(inv_top_structures)
        _select(store, "TOP")
        bounds = [inst.world_polygon.bounds for _, inst in store.shape_instances()]
        assert bounds[0] == pytest.approx((0.0, 0.0, 10.0, 10.0))
        assert bounds[1] == pytest.approx((20.0, 0.0, 30.0, 10.0))

    def test_layer_bounds_and_geometry(self, build_store, inv_top_structures):
        store = build_store(inv_top_structures)
        _select(store, "TOP")
        (_, layer), = store.layers()
        assert layer.world_bounds.as_tuple() == pytest.approx((0.0, 0.0, 30.0, 10.0))
        assert layer.shape_instances == [0, 1]
        buffer = store.geometry(layer.geometry_buffer)
        assert buffer.triangle_count == 4
        assert buffer.vertex_count == 8
        assert buffer.positions[:, 0].max() == pytest.approx(30.0)

    def test_instance_tree(self, build_store, inv_top_structures):
        store = build_store(inv_top_structures)
        root = _select(store, "TOP")
        assert store.root_instance == root
        top = store.cell_instance(root)
        assert top.world_transform.is_identity()
        assert top.shape_instances == []
        assert len(top.child_instances) == 2
        second = store.cell_instance(top.child_instances[1])
        assert second.world_transform == AffineTransform.translate(20.0, 0.0)
        shape = store.shape_instance(second.shape_instances[0])
        assert shape.owning_instance == top.child_instances[1]
        assert shape.layer_index_snapshot == 1

    def test_second_root_is_rejected(self, build_store, inv_top_structures):
        store = build_store(inv_top_structures)
        _select(store, "TOP")
        with pytest.raises(RootAlreadySelectedError):
            _select(store, "INV")
        assert store.counts()["shape_instances"] == 2


class TestHierarchy:

    def test_shared_definition_flattened_per_path(self, build_store):
        store = build_store(
            [
                Structure("LEAF", [Boundary(1, _square(0, 0, 1))]),
                Structure("MID", [StructRef("LEAF"), StructRef("LEAF", origin=(2.0, 0.0))]),
                Structure("TOP", [StructRef("MID"), StructRef("MID", origin=(0.0, 5.0))]),
            ]
        )
        _select(store, "TOP")
        assert store.counts()["shape_instances"] == 4
        assert store.counts()["cell_instances"] == 7
        corners = sorted(inst.world_polygon.bounds[:2] for _, inst in store.shape_instances())
        assert corners == [(0.0, 0.0), (0.0, 5.0), (2.0, 0.0), (2.0, 5.0)]

    def test_transforms_compose_through_levels(self, build_store):
        store = build_store(
            [
                Structure("LEAF", [Boundary(1, _square(0, 0, 1))]),
                Structure("MID", [StructRef("LEAF", angle=90.0)]),
                Structure("TOP", [StructRef("MID", origin=(100.0, 10.0))]),
            ]
        )
        _select(store, "TOP")
        (_, shape), = store.shape_instances()
        assert shape.world_polygon.bounds == pytest.approx((99.0, 10.0, 100.0, 11.0))

    def test_deep_chain_is_flattened(self, build_store):
        depth = 1500
        structures = [Structure("C0", [Boundary(1, _square(0, 0, 1))])]
        for i in range(1, depth):
            structures.append(Structure(f"C{i}", [StructRef(f"C{i - 1}", origin=(1.0, 0.0))]))
        store = build_store(structures, chunk_size=500)

        root = _select(store, f"C{depth - 1}")

        assert store.root_instance == root
        assert store.counts()["cell_instances"] == depth
        (_, shape), = store.shape_instances()
        assert shape.world_polygon.bounds == pytest.approx((depth - 1, 0.0, depth, 1.0))
        leaf = store.cell_instance(shape.owning_instance)
        assert leaf.definition == store.definition_by_name("C0")
        assert leaf.child_instances == []

    def test_child_order_matches_references(self, build_store):
        store = build_store(
            [
                Structure("A", [Boundary(1, _square(0, 0, 1))]),
                Structure("B", [Boundary(2, _square(0, 0, 1))]),
                Structure("TOP", [StructRef("A"), StructRef("B", origin=(5.0, 0.0))]),
            ]
        )
        root = _select(store, "TOP")
        top = store.cell_instance(root)
        names = [
            store.definition(store.cell_instance(h).definition).name
            for h in top.child_instances
        ]
        assert names == ["A", "B"]
        assert [s.layer_index_snapshot for _, s in store.shape_instances()] == [1, 2]

    def test_diamond_is_not_a_cycle(self, build_store):
        store = build_store(
            [
                Structure("LEAF", [Boundary(1, _square(0, 0, 1))]),
                Structure("L", [StructRef("LEAF")]),
                Structure("R", [StructRef("LEAF")]),
                Structure("TOP", [StructRef("L"), StructRef("R")]),
            ]
        )
        check_acyclic(store, store.definition_by_name("TOP"))
        _select(store, "TOP")
        assert store.counts()["shape_instances"] == 2


class TestCycles:

    def test_cycle_raises_before_any_instance(self, build_store):
        store = build_store(
            [
                Structure("A", [Boundary(1, _square(0, 0, 1)), StructRef("B")]),
                Structure("B", [StructRef("A")]),
                Structure("TOP", [StructRef("A")]),
            ]
        )
        with pytest.raises(CyclicReferenceError) as excinfo:
            _select(store, "TOP")
        assert excinfo.value.cycle == ["A", "B", "A"]
        assert "A -> B -> A" in str(excinfo.value)
        assert store.counts()["cell_instances"] == 0
        assert store.counts()["shape_instances"] == 0
        assert store.root_instance is None

    def test_self_reference(self, build_store):
        store = build_store([Structure("SELF", [StructRef("SELF")])])
        with pytest.raises(CyclicReferenceError):
            _select(store, "SELF")
