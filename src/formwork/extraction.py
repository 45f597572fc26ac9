"""Solid and planar-face extraction from host elements."""

from __future__ import annotations

import logging
from typing import List, Sequence

import numpy as np
import trimesh

from formwork.errors import GeometryExtractionError
from formwork.model import GeometryInstance, HostModel
from formwork.result import Err, Ok, Result, capture, unwrap_or
from geometry_primitives import PlanarFace, project_faces_to_2d_with_basis

logger = logging.getLogger(__name__)

DEFAULT_VOLUME_EPSILON = 1e-6


def try_extract_solids(
    model: HostModel,
    element_id: int,
    volume_epsilon: float = DEFAULT_VOLUME_EPSILON,
) -> Result:
    """Read an element's solids, flattening instanced geometry one level.

    Returns ``Ok(list[Trimesh])`` holding copies with volume above
    ``volume_epsilon``, or ``Err(GeometryExtractionError)``.
    """
    raw = capture(
        model.get_solids,
        element_id,
        error_cls=GeometryExtractionError,
        message=f"get_solids({element_id})",
    )
    if isinstance(raw, Err):
        return raw

    candidates: List[trimesh.Trimesh] = []
    for item in raw.value:
        if isinstance(item, GeometryInstance):
            for child in item.children:
                if not isinstance(child, trimesh.Trimesh):
                    logger.debug(
                        "Element %d: skipping geometry nested deeper than one level",
                        element_id,
                    )
                    continue
                placed = child.copy()
                placed.apply_transform(item.transform)
                candidates.append(placed)
        elif isinstance(item, trimesh.Trimesh):
            candidates.append(item.copy())

    solids = [s for s in (_orient(m, volume_epsilon) for m in candidates) if s is not None]
    if not solids:
        return Err(
            GeometryExtractionError(
                f"Element {element_id}: no solids with volume > {volume_epsilon:g}",
                element_id=element_id,
            )
        )
    return Ok(solids)


def extract_solids(
    model: HostModel,
    element_id: int,
    volume_epsilon: float = DEFAULT_VOLUME_EPSILON,
) -> List[trimesh.Trimesh]:
    """Like ``try_extract_solids`` but returns an empty list on error."""
    result = try_extract_solids(model, element_id, volume_epsilon)
    if isinstance(result, Err):
        logger.warning("%s", result.error)
    return unwrap_or(result, [])


def total_volume(solids: Sequence[trimesh.Trimesh]) -> float:
    return float(sum(s.volume for s in solids))


def extract_planar_faces(
    solid: trimesh.Trimesh,
    solid_index: int = 0,
    first_face_id: int = 0,
) -> List[PlanarFace]:
    """Group coplanar adjacent triangles of a solid into planar faces.

    Face ids are assigned in order of each group's lowest triangle index,
    so the same solid always yields the same ids.
    """
    groups = [sorted(int(i) for i in facet) for facet in solid.facets]
    in_facet = np.zeros(len(solid.faces), dtype=bool)
    for group in groups:
        in_facet[group] = True
    groups.extend([[int(i)] for i in np.nonzero(~in_facet)[0]])
    groups.sort(key=lambda g: g[0])

    faces = []
    for offset, group in enumerate(groups):
        areas = solid.area_faces[group]
        area = float(areas.sum())
        if area <= 0:
            continue
        normals = solid.face_normals[group]
        normal = np.average(normals, axis=0, weights=areas)
        normal = normal / np.linalg.norm(normal)
        centroids = solid.triangles_center[group]
        centroid = np.average(centroids, axis=0, weights=areas)
        plane_offset = float(normal @ centroid)

        outline, u_axis, v_axis, _ = project_faces_to_2d_with_basis(
            solid, group, normal, plane_offset
        )
        faces.append(
            PlanarFace(
                face_id=first_face_id + offset,
                normal=normal,
                plane_offset=plane_offset,
                outline_2d=outline,
                area=area,
                centroid_3d=centroid,
                basis_u=u_axis,
                basis_v=v_axis,
                solid_index=solid_index,
                triangle_indices=group,
            )
        )
    return faces


def extract_element_faces(solids: Sequence[trimesh.Trimesh]) -> List[PlanarFace]:
    """Planar faces of every solid of one element, with element-unique ids."""
    faces: List[PlanarFace] = []
    next_id = 0
    for index, solid in enumerate(solids):
        solid_faces = extract_planar_faces(solid, solid_index=index, first_face_id=next_id)
        faces.extend(solid_faces)
        next_id += len(solid.faces)
    return faces


# ─── Internal helpers ────────────────────────────────────────────────────────

def _orient(mesh: trimesh.Trimesh, volume_epsilon: float):
    """Return the mesh with outward normals, or None if it has no usable volume."""
    if mesh.is_empty:
        return None
    volume = float(mesh.volume)
    if mesh.is_watertight and volume < -volume_epsilon:
        mesh.invert()
        volume = -volume
    if volume <= volume_epsilon:
        return None
    return mesh
