"""Tests for geometry_primitives module."""
import numpy as np
import pytest
from shapely.geometry import Polygon

from geometry_primitives import (
    Box3,
    boundary_loops,
    make_2d_basis,
    polygon_parts,
    project_faces_to_2d_with_basis,
    region_from_loops,
)

from conftest import box_between


class TestBox3:

    def test_from_bounds_and_extents(self):
        box = Box3.from_bounds([[0, 1, 2], [3, 5, 7]])
        assert box.min_pt == (0.0, 1.0, 2.0)
        assert np.allclose(box.extents, [3, 4, 5])
        assert np.allclose(box.center, [1.5, 3.0, 4.5])

    def test_expanded_grows_every_side(self):
        box = Box3((0, 0, 0), (1, 1, 1)).expanded(0.5)
        assert box.min_pt == (-0.5, -0.5, -0.5)
        assert box.max_pt == (1.5, 1.5, 1.5)

    def test_touching_boxes_overlap(self):
        a = Box3((0, 0, 0), (1, 1, 1))
        b = Box3((1, 0, 0), (2, 1, 1))
        c = Box3((1.01, 0, 0), (2, 1, 1))
        assert a.overlaps(b)
        assert not a.overlaps(c)

    def test_union_of(self):
        box = Box3.union_of([Box3((0, 0, 0), (1, 1, 1)), Box3((-1, 2, 0), (0, 3, 4))])
        assert box.min_pt == (-1.0, 0.0, 0.0)
        assert box.max_pt == (1.0, 3.0, 4.0)

    def test_union_of_empty_raises(self):
        with pytest.raises(ValueError):
            Box3.union_of([])


class TestBasis:

    @pytest.mark.parametrize(
        "normal",
        [(0, 0, 1), (0, 0, -1), (1, 0, 0), (0, -1, 0), (1, 1, 1)],
    )
    def test_basis_is_right_handed_orthonormal(self, normal):
        n = np.asarray(normal, dtype=float)
        n /= np.linalg.norm(n)
        u, v = make_2d_basis(n)
        assert np.dot(u, v) == pytest.approx(0.0, abs=1e-12)
        assert np.dot(u, n) == pytest.approx(0.0, abs=1e-12)
        assert np.linalg.norm(u) == pytest.approx(1.0)
        assert np.allclose(np.cross(u, v), n)


class TestProjection:

    def test_box_side_projects_to_rectangle(self):
        mesh = box_between((0, 0, 0), (2, 1, 3))
        normal = np.array([1.0, 0.0, 0.0])
        group = [i for i, fn in enumerate(mesh.face_normals) if np.allclose(fn, normal)]
        region, u, v, origin = project_faces_to_2d_with_basis(mesh, group, normal, 2.0)
        assert region.area == pytest.approx(3.0)
        assert np.allclose(origin, [2.0, 0.0, 0.0])

    def test_empty_group_gives_empty_region(self):
        mesh = box_between((0, 0, 0), (1, 1, 1))
        region, _, _, _ = project_faces_to_2d_with_basis(mesh, [], np.array([0, 0, 1.0]), 1.0)
        assert region.is_empty


class TestLoops:

    def test_polygon_with_hole_has_two_loops(self):
        outer = [(0, 0), (4, 0), (4, 4), (0, 4)]
        hole = [(1, 1), (2, 1), (2, 2), (1, 2)]
        loops = boundary_loops(Polygon(outer, [hole]))
        assert len(loops) == 2
        assert len(loops[0]) == 4
        assert len(loops[1]) == 4

    def test_region_rebuilt_from_loops(self):
        outer = [(0, 0), (4, 0), (4, 4), (0, 4)]
        hole = [(1, 1), (2, 1), (2, 2), (1, 2)]
        region = region_from_loops(boundary_loops(Polygon(outer, [hole])))
        assert region.area == pytest.approx(15.0)
        assert region_from_loops([[(0, 0), (1, 0)]]).is_empty

    def test_polygon_parts_of_empty(self):
        assert polygon_parts(Polygon()) == []
        assert polygon_parts(None) == []
