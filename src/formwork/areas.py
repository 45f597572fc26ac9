"""Formwork area measurement.

Areas are always summed from the faces of the measured solid, never
derived from volume / thickness.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import trimesh

from formwork.contracts import AreaMode
from geometry_primitives import PlanarFace
from materials import ft2_to_m2

PLANE_TOL_FT = 1e-4
NORMAL_DOT_MIN = 0.999


def solid_surface_area(solid: Optional[trimesh.Trimesh]) -> float:
    """Sum of all face areas, native units."""
    if solid is None or solid.is_empty:
        return 0.0
    return float(solid.area)


def contact_face_area(solid: Optional[trimesh.Trimesh], face: PlanarFace) -> float:
    """Area of the solid's faces lying on ``face``'s plane and facing the host."""
    if solid is None or solid.is_empty:
        return 0.0
    normals = solid.face_normals
    facing = normals @ (-face.normal) >= NORMAL_DOT_MIN
    offsets = solid.triangles_center @ face.normal
    on_plane = np.abs(offsets - face.plane_offset) <= PLANE_TOL_FT
    return float(solid.area_faces[facing & on_plane].sum())


def measure_area(
    solid: Optional[trimesh.Trimesh],
    face: PlanarFace,
    mode: AreaMode = AreaMode.ALL_FACES,
) -> float:
    """Formwork area of ``solid`` in native units (ft²)."""
    if mode == AreaMode.CONTACT_FACE:
        return contact_face_area(solid, face)
    return solid_surface_area(solid)


def gross_and_net_m2(
    candidate: trimesh.Trimesh,
    final: Optional[trimesh.Trimesh],
    face: PlanarFace,
    mode: AreaMode = AreaMode.ALL_FACES,
) -> Tuple[float, float]:
    """(gross, net) in m², with net clamped to ``[0, gross]``."""
    gross = ft2_to_m2(measure_area(candidate, face, mode))
    net = ft2_to_m2(measure_area(final, face, mode)) if final is not None else 0.0
    return gross, min(max(net, 0.0), gross)
