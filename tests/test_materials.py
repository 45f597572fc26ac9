"""Tests for unit conversion and the panel catalog."""
import pytest

from materials import (
    DEFAULT_MATERIAL_KEY,
    DEFAULT_THICKNESS_MM,
    FT2_TO_M2,
    MATERIALS,
    ft2_to_m2,
    ft3_to_m3,
    ft_to_mm,
    m2_to_ft2,
    mm_to_ft,
)


class TestUnits:

    @pytest.mark.parametrize("ft2", [0.0, 1.0, 10.764, 1234.5])
    def test_area_round_trip(self, ft2):
        assert m2_to_ft2(ft2_to_m2(ft2)) == pytest.approx(ft2, rel=1e-12, abs=1e-12)

    def test_area_factor(self):
        assert ft2_to_m2(1.0) == FT2_TO_M2
        assert ft2_to_m2(100.0) == pytest.approx(9.2903)

    def test_length_round_trip(self):
        assert mm_to_ft(304.8) == pytest.approx(1.0)
        assert ft_to_mm(mm_to_ft(18.0)) == pytest.approx(18.0)

    def test_volume(self):
        assert ft3_to_m3(1.0) == pytest.approx(0.0283168)


class TestCatalog:

    def test_default_material_stocks_default_thickness(self):
        material = MATERIALS[DEFAULT_MATERIAL_KEY]
        assert DEFAULT_THICKNESS_MM in material.thicknesses_mm

    def test_nearest_thickness(self):
        material = MATERIALS["plywood_film_faced"]
        assert material.nearest_thickness_mm(17.0) == 18.0
        assert material.nearest_thickness_mm(None) == max(material.thicknesses_mm)
