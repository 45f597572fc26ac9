"""Extrusion of selected faces into candidate formwork solids."""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import trimesh

from formwork.errors import GeometryExtractionError
from formwork.result import Err, Ok, Result
from geometry_primitives import PlanarFace, face_frame, polygon_parts, region_from_loops

logger = logging.getLogger(__name__)


def build_formwork_solid(
    face: PlanarFace,
    thickness: float,
    volume_epsilon: float = 1e-6,
    loops: Optional[Sequence[Sequence[Tuple[float, float]]]] = None,
) -> Result:
    """Extrude a face outline by ``thickness`` along its outward normal.

    The solid starts on the face plane and grows away from the host. Holes in
    the outline are kept; a multi-part outline is extruded part by part.
    ``loops`` are boundary loops in the face's (u, v) frame as reported by the
    host; without them the face's own outline is used.
    """
    if not thickness > 0:
        return Err(GeometryExtractionError(f"Non-positive thickness {thickness}"))
    region = face.outline_2d if loops is None else region_from_loops(loops)
    parts = polygon_parts(region)
    if not parts:
        return Err(GeometryExtractionError(f"Face {face.face_id} has no boundary loops"))

    frame = face_frame(face)
    pieces = []
    for polygon in parts:
        if polygon.area <= 0:
            continue
        try:
            prism = trimesh.creation.extrude_polygon(polygon, height=thickness)
        except Exception as exc:
            logger.debug("Face %d: extrusion failed: %s", face.face_id, exc)
            return Err(
                GeometryExtractionError(
                    f"Face {face.face_id}: extrusion failed: {type(exc).__name__}: {exc}"
                )
            )
        prism.apply_transform(frame)
        pieces.append(prism)

    if not pieces:
        return Err(GeometryExtractionError(f"Face {face.face_id}: degenerate outline"))
    solid = pieces[0] if len(pieces) == 1 else trimesh.util.concatenate(pieces)
    if float(solid.volume) <= volume_epsilon:
        return Err(
            GeometryExtractionError(
                f"Face {face.face_id}: extruded volume {float(solid.volume):.3g} too small"
            )
        )
    return Ok(solid)
