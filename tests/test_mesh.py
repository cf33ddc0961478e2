"""Tests for meshes, parts and surface pairing."""

import numpy as np
import pytest

from pyeqsys.errors import ConfigurationError, PartNotFoundError, PartRankError
from pyeqsys.mesh import (
    EntityRank,
    Mesh,
    MetaData,
    build_overset_mesh,
    locate_points,
    pair_periodic_nodes,
    project_onto_edges,
)


def _make_square(n=3):
    return Mesh.structured_rectangle(Lx=1.0, Ly=1.0, nx=n, ny=n)


class TestMesh:
    def test_structured_rectangle(self):
        mesh = _make_square()
        assert mesh.n_nodes == 9
        assert mesh.n_cells == 8
        assert mesh.subdomain_map == {"block_1": 1}
        np.testing.assert_allclose(mesh.cell_areas().sum(), 1.0)

    def test_boundary_edges(self):
        mesh = _make_square()
        assert len(mesh.boundary_edges()) == 8
        assert len(mesh.boundary_nodes()) == 8

    def test_spacing_is_longest_edge(self):
        mesh = _make_square()
        assert mesh.spacing() == pytest.approx(np.sqrt(0.5))

    def test_merge_offsets_nodes(self):
        a = Mesh.structured_rectangle(1.0, 1.0, 2, 2, tag=1, name="a")
        b = Mesh.structured_rectangle(1.0, 1.0, 2, 2, origin=(1.0, 0.0), tag=2, name="b")
        merged, ranges = Mesh.merge([a, b])
        assert merged.n_nodes == 8
        np.testing.assert_array_equal(ranges[1], [4, 5, 6, 7])
        assert merged.cells.max() == 7
        assert merged.subdomain_map == {"a": 1, "b": 2}

    def test_merge_duplicate_tags(self):
        a = Mesh.structured_rectangle(1.0, 1.0, 2, 2)
        with pytest.raises(ValueError, match="Duplicate subdomain"):
            Mesh.merge([a, a])


class TestMetaData:
    def test_default_parts(self):
        meta = MetaData.from_mesh(_make_square())
        for name in ("interior", "block_1", "left", "right", "bottom", "top", "boundary"):
            assert name in meta
        assert meta.require_part("interior").rank == EntityRank.ELEMENT
        assert meta.require_part("left").rank == EntityRank.EDGE

    def test_sides(self):
        mesh = _make_square()
        meta = MetaData.from_mesh(mesh)
        left = meta.require_part("left")
        assert len(left.entities) == 2
        np.testing.assert_allclose(mesh.nodes[left.node_ids(mesh), 0], 0.0)

    def test_boundary_aliases_sides(self):
        meta = MetaData.from_mesh(_make_square())
        names = [p.name for p in meta.require_part("boundary").subsets]
        assert names == ["left", "right", "bottom", "top"]

    def test_leaf_is_own_subset(self):
        meta = MetaData.from_mesh(_make_square())
        left = meta.require_part("left")
        assert left.subsets == [left]

    def test_block_sides_with_several_blocks(self):
        a = Mesh.structured_rectangle(1.0, 1.0, 3, 3, tag=1, name="a")
        b = Mesh.structured_rectangle(1.0, 1.0, 3, 3, origin=(1.0, 0.0), tag=2, name="b")
        merged, _ = Mesh.merge([a, b])
        meta = MetaData.from_mesh(merged)
        assert "a_right" in meta and "b_left" in meta
        assert len(meta.require_part("interior").subsets) == 2

    def test_require_part_not_found(self):
        meta = MetaData.from_mesh(_make_square())
        with pytest.raises(PartNotFoundError, match="no part name found by the name inlet"):
            meta.require_part("inlet")

    def test_require_part_wrong_rank(self):
        meta = MetaData.from_mesh(_make_square())
        with pytest.raises(PartRankError):
            meta.require_part("left", EntityRank.ELEMENT)


class TestInterfaces:
    def test_periodic_pairing(self):
        mesh = _make_square()
        meta = MetaData.from_mesh(mesh)
        bottom = meta.require_part("bottom").node_ids(mesh)
        top = meta.require_part("top").node_ids(mesh)
        slaves, masters = pair_periodic_nodes(mesh.nodes, bottom, top)
        np.testing.assert_allclose(mesh.nodes[slaves, 0], mesh.nodes[masters, 0])
        np.testing.assert_allclose(mesh.nodes[masters, 1], 0.0)

    def test_periodic_mismatch(self):
        mesh = _make_square()
        with pytest.raises(ConfigurationError, match="no master"):
            pair_periodic_nodes(mesh.nodes, np.array([0, 1]), np.array([6, 8]), tol=1e-8)

    def test_project_onto_edges(self):
        coords = np.array([[0.0, 0.0], [0.0, 1.0], [0.0, 0.25]])
        nodes, donors, weights = project_onto_edges(coords, [2], np.array([[0, 1]]))
        np.testing.assert_array_equal(donors, [[0, 1]])
        np.testing.assert_allclose(weights, [[0.75, 0.25]])

    def test_project_too_far(self):
        coords = np.array([[0.0, 0.0], [0.0, 1.0], [0.5, 0.5]])
        with pytest.raises(ConfigurationError, match="away from the opposing"):
            project_onto_edges(coords, [2], np.array([[0, 1]]))


class TestOverset:
    def test_locate_points(self):
        nodes = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        cells = np.array([[0, 1, 2]])
        found, w = locate_points(nodes, cells, np.array([[0.25, 0.25], [2.0, 2.0]]))
        np.testing.assert_array_equal(found, [0, -1])
        np.testing.assert_allclose(w[0], [0.5, 0.25, 0.25])

    def test_build_overset_mesh(self):
        background = Mesh.structured_rectangle(1.0, 1.0, 11, 11, name="background")
        component = Mesh.structured_rectangle(
            0.4, 0.4, 9, 9, origin=(0.3, 0.3), tag=2, name="component_1"
        )
        merged, assembly = build_overset_mesh(background, [component], hole_margin=0.1)
        assert merged.n_nodes == background.n_nodes + component.n_nodes
        assert assembly.n_receptors > 0
        np.testing.assert_allclose(assembly.weights.sum(axis=1), 1.0)

        linear = merged.nodes[:, 0] + 2.0 * merged.nodes[:, 1]
        np.testing.assert_allclose(assembly.interpolate(linear), linear[assembly.receptors])

    def test_orphan_receptor(self):
        background = Mesh.structured_rectangle(1.0, 1.0, 5, 5, name="background")
        outside = Mesh.structured_rectangle(0.5, 0.5, 3, 3, origin=(0.8, 0.8), tag=2, name="c")
        with pytest.raises(ValueError, match="no background donor"):
            build_overset_mesh(background, [outside])
