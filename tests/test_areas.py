"""Tests for gross/net area measurement."""
import numpy as np
import pytest

from formwork.areas import gross_and_net_m2, measure_area, solid_surface_area
from formwork.contracts import AreaMode
from formwork.extraction import extract_planar_faces
from formwork.extrusion import build_formwork_solid
from materials import ft2_to_m2

from conftest import box_between


@pytest.fixture
def side_face(column_mesh):
    return next(f for f in extract_planar_faces(column_mesh) if np.allclose(f.normal, [1, 0, 0]))


def test_all_faces_is_surface_area(side_face):
    solid = build_formwork_solid(side_face, 0.1).value
    expected = 2 * 10.0 + 2 * (10.0 * 0.1) + 2 * (1.0 * 0.1)
    assert measure_area(solid, side_face) == pytest.approx(expected)


def test_contact_face_is_host_face_area(side_face):
    solid = build_formwork_solid(side_face, 0.1).value
    assert measure_area(solid, side_face, AreaMode.CONTACT_FACE) == pytest.approx(10.0)


def test_area_is_not_volume_over_thickness(side_face):
    solid = build_formwork_solid(side_face, 0.1).value
    assert measure_area(solid, side_face) != pytest.approx(solid.volume / 0.1)


def test_gross_and_net_in_square_meters(side_face):
    candidate = build_formwork_solid(side_face, 0.1).value
    final = box_between((1.0, 0.0, 0.0), (1.1, 1.0, 5.0))
    gross, net = gross_and_net_m2(candidate, final, side_face)
    assert gross == pytest.approx(ft2_to_m2(solid_surface_area(candidate)))
    assert net == pytest.approx(ft2_to_m2(solid_surface_area(final)))
    assert 0 <= net <= gross


def test_net_clamped_to_gross(side_face):
    candidate = build_formwork_solid(side_face, 0.1).value
    bigger = box_between((0, 0, 0), (10, 10, 10))
    gross, net = gross_and_net_m2(candidate, bigger, side_face)
    assert net == gross


def test_missing_final_solid_is_zero(side_face):
    candidate = build_formwork_solid(side_face, 0.1).value
    gross, net = gross_and_net_m2(candidate, None, side_face)
    assert gross > 0
    assert net == 0.0
