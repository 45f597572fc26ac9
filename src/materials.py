"""
Formwork panel catalog and unit constants.

Native model lengths are feet; reports are metric. Panel thicknesses are the
common sheet sizes carried by formwork suppliers.
"""

from dataclasses import dataclass
from typing import List, Optional

MM_PER_FT = 304.8
FT2_TO_M2 = 0.092903
FT3_TO_M3 = 0.0283168

def mm_to_ft(value_mm: float) -> float:
    return float(value_mm) / MM_PER_FT

def ft_to_mm(value_ft: float) -> float:
    return float(value_ft) * MM_PER_FT

def ft2_to_m2(value_ft2: float) -> float:
    return float(value_ft2) * FT2_TO_M2

def m2_to_ft2(value_m2: float) -> float:
    return float(value_m2) / FT2_TO_M2

def ft3_to_m3(value_ft3: float) -> float:
    return float(value_ft3) * FT3_TO_M3

@dataclass
class Material:
    """A formwork facing material."""

    name: str
    thicknesses_mm: List[float]  # Stocked sheet thicknesses

    def nearest_thickness_mm(self, preferred_mm: Optional[float]) -> float:
        """Closest stocked thickness; the thickest sheet when nothing is preferred."""
        if preferred_mm is None:
            return max(self.thicknesses_mm)
        return min(self.thicknesses_mm, key=lambda t: abs(t - preferred_mm))

MATERIALS = {
    # Wood-based
    "plywood_film_faced": Material("Film-Faced Plywood", [12.0, 15.0, 18.0, 21.0]),
    "plywood_plain": Material("Plain Plywood", [12.0, 15.0, 18.0]),
    # Systems
    "aluminum_panel": Material("Aluminum Panel", [4.0, 6.0]),
    "steel_panel": Material("Steel Panel", [3.0, 4.0, 5.0]),
    "plastic_panel": Material("Plastic Panel", [10.0, 18.0]),
}

DEFAULT_MATERIAL_KEY = "plywood_film_faced"
DEFAULT_THICKNESS_MM = 18.0
