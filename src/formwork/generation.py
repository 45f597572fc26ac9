"""Face-level generation core shared by batch runs and face picking.

One selected face in, at most one formwork piece out:
Build -> Deduct -> Measure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import trimesh

from formwork.areas import gross_and_net_m2
from formwork.contracts import FaceOrientation, FormworkPiece, StructuralElement
from formwork.deduction import ContactDeductionEngine, DeductionOutcome
from formwork.errors import GeometryExtractionError
from formwork.extrusion import build_formwork_solid
from formwork.faces import classify_orientation, rule_for
from formwork.result import Err, capture
from formwork.session import AnalysisSession
from formwork.union import UnionReport, UnionSolidBuilder
from geometry_primitives import PlanarFace

logger = logging.getLogger(__name__)


@dataclass
class FaceResult:
    face: PlanarFace
    orientation: FaceOrientation
    gross_area_m2: float = 0.0
    net_area_m2: float = 0.0
    outcome: Optional[DeductionOutcome] = None
    piece: Optional[FormworkPiece] = None


def face_key(element_id: int, face: PlanarFace) -> Tuple:
    """Identity of a picked face: element, position, direction and size."""
    return (
        int(element_id),
        tuple(np.round(face.centroid_3d, 3).tolist()),
        tuple(np.round(face.normal, 3).tolist()),
        round(float(face.area), 4),
    )


def build_aggregate(
    session: AnalysisSession,
    host_id: int,
    neighbor_ids: Sequence[int],
    builder: UnionSolidBuilder,
) -> UnionReport:
    """Union every solid of the given neighbors into one aggregate."""
    solids: List[trimesh.Trimesh] = []
    for neighbor_id in neighbor_ids:
        solids.extend(session.solids_for(neighbor_id))
    report = builder.build(solids)
    for error in report.errors:
        session.record_error(host_id, "union", error)
    session.count("unions_skipped", len(report.skipped_indices))
    return report


def generate_face_piece(
    session: AnalysisSession,
    element: StructuralElement,
    face: PlanarFace,
    aggregate: Optional[trimesh.Trimesh],
    engine: ContactDeductionEngine,
) -> FaceResult:
    config = session.config
    orientation = classify_orientation(face.normal)
    result = FaceResult(face=face, orientation=orientation)

    loops = capture(
        session.model.get_boundary_curve_loops,
        face,
        error_cls=GeometryExtractionError,
        message=f"face {face.face_id} boundary loops",
    )
    if isinstance(loops, Err):
        session.record_error(element.element_id, "extrude", loops.error)
        return result
    built = build_formwork_solid(
        face, config.thickness_ft, config.volume_epsilon, loops=loops.value
    )
    if isinstance(built, Err):
        session.record_error(element.element_id, "extrude", built.error)
        return result
    candidate = built.value

    threshold = rule_for(element.category).deduction_threshold
    outcome = engine.deduct(candidate, aggregate, threshold)
    for error in outcome.errors:
        session.record_error(element.element_id, "deduct", error)
    session.count(f"deduction.{outcome.decision.value}")

    gross, net = gross_and_net_m2(candidate, outcome.solid, face, config.area_mode)
    result.outcome = outcome
    result.gross_area_m2 = gross
    result.net_area_m2 = net

    session.decide(
        phase="per_element",
        decision_type="contact_deduction",
        element_ids=[element.element_id],
        selected=outcome.decision.value,
        reason_codes=[element.category.value, orientation.value],
        numeric_evidence={
            "ratio": outcome.ratio,
            "threshold": threshold,
            "gross_area_m2": gross,
            "net_area_m2": net,
        },
        metadata={"face_id": face.face_id},
    )
    logger.debug(
        "Element %d face %d: %s ratio=%.4f gross=%.3f net=%.3f",
        element.element_id,
        face.face_id,
        outcome.decision.value,
        outcome.ratio,
        gross,
        net,
    )

    if outcome.solid is None or net <= 0.0:
        return result
    result.piece = FormworkPiece(
        host_id=element.element_id,
        face_id=face.face_id,
        category=element.category,
        orientation=orientation,
        thickness_ft=config.thickness_ft,
        material_key=config.material_key,
        gross_area_m2=gross,
        net_area_m2=net,
        deduction_ratio=outcome.ratio,
        deduction_applied=outcome.applied,
        solid=outcome.solid,
        face_key=face_key(element.element_id, face),
    )
    return result
