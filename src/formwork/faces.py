"""Category rule table deciding which element faces receive formwork.

Every category-dependent policy (face orientations, minimum face size,
deduction threshold, flag handling) lives in ``FACE_RULES``; the selector
and the deduction engine look rules up here and nowhere else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Sequence

import numpy as np

from formwork.contracts import Category, ExclusionFlag, FaceOrientation, StructuralElement
from geometry_primitives import Box3, PlanarFace
from materials import ft2_to_m2

logger = logging.getLogger(__name__)

LATERAL_MAX_ABS_NZ = 0.3
HORIZONTAL_MIN_ABS_NZ = 0.7
SLAB_CONTACT_TOL_FT = 0.01

_HORIZONTAL = frozenset({FaceOrientation.TOP, FaceOrientation.BOTTOM})
_DOWNWARD = frozenset({FaceOrientation.BOTTOM, FaceOrientation.INCLINED_DOWN})


@dataclass(frozen=True)
class FaceRule:
    category: Category
    include: FrozenSet[FaceOrientation]
    min_face_area_m2: float
    deduction_threshold: float
    on_grade_excludes: FrozenSet[FaceOrientation] = frozenset()
    against_soil_excludes: FrozenSet[FaceOrientation] = frozenset()
    drop_slab_coincident: bool = False


FACE_RULES: Dict[Category, FaceRule] = {
    Category.COLUMN: FaceRule(
        category=Category.COLUMN,
        include=frozenset({FaceOrientation.LATERAL}),
        min_face_area_m2=0.01,
        # Columns pass through slabs; deduct on small contact.
        deduction_threshold=0.01,
    ),
    Category.BEAM: FaceRule(
        category=Category.BEAM,
        include=frozenset({FaceOrientation.LATERAL}) | _DOWNWARD,
        min_face_area_m2=0.01,
        deduction_threshold=0.05,
        on_grade_excludes=_DOWNWARD,
    ),
    Category.SLAB: FaceRule(
        category=Category.SLAB,
        include=frozenset({FaceOrientation.LATERAL}) | _DOWNWARD,
        min_face_area_m2=0.1,
        deduction_threshold=0.05,
        on_grade_excludes=_DOWNWARD,
    ),
    Category.WALL: FaceRule(
        category=Category.WALL,
        include=frozenset({FaceOrientation.LATERAL, FaceOrientation.TOP}),
        min_face_area_m2=0.1,
        deduction_threshold=0.05,
        drop_slab_coincident=True,
    ),
    Category.FOUNDATION: FaceRule(
        category=Category.FOUNDATION,
        include=frozenset({FaceOrientation.LATERAL}),
        min_face_area_m2=0.1,
        deduction_threshold=0.05,
        against_soil_excludes=frozenset({FaceOrientation.LATERAL}),
    ),
    Category.STAIR: FaceRule(
        category=Category.STAIR,
        include=frozenset({FaceOrientation.LATERAL}) | _DOWNWARD,
        min_face_area_m2=0.01,
        deduction_threshold=0.05,
        on_grade_excludes=_DOWNWARD,
    ),
    Category.OTHER: FaceRule(
        category=Category.OTHER,
        include=frozenset(),
        min_face_area_m2=0.1,
        deduction_threshold=0.05,
    ),
}


def rule_for(category: Category) -> FaceRule:
    return FACE_RULES.get(category, FACE_RULES[Category.OTHER])


def deduction_threshold(category: Category) -> float:
    return rule_for(category).deduction_threshold


def classify_orientation(normal: np.ndarray) -> FaceOrientation:
    nz = float(normal[2])
    if abs(nz) < LATERAL_MAX_ABS_NZ:
        return FaceOrientation.LATERAL
    if nz < -HORIZONTAL_MIN_ABS_NZ:
        return FaceOrientation.BOTTOM
    if nz > HORIZONTAL_MIN_ABS_NZ:
        return FaceOrientation.TOP
    return FaceOrientation.INCLINED_DOWN if nz < 0 else FaceOrientation.INCLINED_UP


def excluded_orientations(element: StructuralElement, rule: FaceRule) -> FrozenSet[FaceOrientation]:
    excluded = frozenset()
    if element.has_flag(ExclusionFlag.ON_GRADE):
        excluded |= rule.on_grade_excludes
    if element.has_flag(ExclusionFlag.AGAINST_SOIL):
        excluded |= rule.against_soil_excludes
    return excluded


def touches_slab(face: PlanarFace, slab_boxes: Sequence[Box3], tol: float = SLAB_CONTACT_TOL_FT) -> bool:
    """True if a horizontal face lies on the top or underside of a slab box."""
    if not slab_boxes:
        return False
    face_box = face.world_bounds()
    z = float(face.centroid_3d[2])
    for box in slab_boxes:
        on_plane = abs(z - box.max_pt[2]) <= tol or abs(z - box.min_pt[2]) <= tol
        if not on_plane:
            continue
        if (
            face_box.min_pt[0] < box.max_pt[0] - tol
            and face_box.max_pt[0] > box.min_pt[0] + tol
            and face_box.min_pt[1] < box.max_pt[1] - tol
            and face_box.max_pt[1] > box.min_pt[1] + tol
        ):
            return True
    return False


def select_formwork_faces(
    element: StructuralElement,
    faces: Sequence[PlanarFace],
    slab_boxes: Sequence[Box3] = (),
) -> List[PlanarFace]:
    """Faces of ``element`` that need formwork, in face-id order.

    ``slab_boxes`` are the boxes of neighboring slabs, used to drop wall
    faces cast against a floor or ceiling.
    """
    if element.has_flag(ExclusionFlag.OVERRIDE):
        return []
    rule = rule_for(element.category)
    excluded = excluded_orientations(element, rule)

    selected = []
    for face in faces:
        orientation = classify_orientation(face.normal)
        if orientation not in rule.include or orientation in excluded:
            continue
        if ft2_to_m2(face.area) < rule.min_face_area_m2:
            logger.debug(
                "Element %d face %d below minimum area (%.4f m²)",
                element.element_id,
                face.face_id,
                ft2_to_m2(face.area),
            )
            continue
        if (
            rule.drop_slab_coincident
            and orientation in _HORIZONTAL
            and touches_slab(face, slab_boxes)
        ):
            continue
        selected.append(face)
    return selected
