"""Face-pick generation: the user picks faces one at a time.

``generate_piece_for_face`` is the pure core (one face in, at most one piece
out). ``run_face_pick_loop`` drives it from a picker, which stands in for
the host's selection prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set, Tuple

from formwork.booleans import BooleanEngine
from formwork.collector import collect_structural_elements
from formwork.contracts import FormworkConfig, FormworkPiece, StructuralElement
from formwork.deduction import ContactDeductionEngine
from formwork.errors import (
    FormworkError,
    GeometryExtractionError,
    ModelUnavailableError,
    UserCancellationError,
)
from formwork.generation import build_aggregate, face_key, generate_face_piece
from formwork.model import HostModel
from formwork.proximity import ProximityIndex, face_probe_expansion_ft
from formwork.session import AnalysisSession
from formwork.union import UnionSolidBuilder
from formwork.writeback import PARAM_TOTAL, format_timestamp, write_piece
from geometry_primitives import PlanarFace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FacePick:
    element_id: int
    face_id: int


class FacePicker(Protocol):
    def next_pick(self) -> Optional[FacePick]:
        """Next picked face, or None when the user is done.

        May raise ``UserCancellationError``.
        """


@dataclass
class FacePickResult:
    committed: List[FormworkPiece] = field(default_factory=list)
    duplicates: int = 0
    failed: int = 0
    no_formwork: int = 0
    cancelled: bool = False

    @property
    def net_area_m2(self) -> float:
        return float(sum(p.net_area_m2 for p in self.committed))


def generate_piece_for_face(
    session: AnalysisSession,
    element: StructuralElement,
    face: PlanarFace,
    index: ProximityIndex,
    union_builder: Optional[UnionSolidBuilder] = None,
    engine: Optional[ContactDeductionEngine] = None,
) -> Optional[FormworkPiece]:
    """Build, deduct and measure formwork for one picked face.

    Neighbors are searched around the face itself, within thickness plus
    the face-probe buffer.
    """
    config = session.config
    union_builder = union_builder or UnionSolidBuilder(volume_epsilon=config.volume_epsilon)
    engine = engine or ContactDeductionEngine(
        volume_epsilon=config.volume_epsilon,
        full_coverage_ratio=config.full_coverage_ratio,
    )
    probe = face.world_bounds().expanded(face_probe_expansion_ft(config))
    neighbor_ids = index.query_box(probe, exclude_id=element.element_id)

    aggregate = None
    if neighbor_ids:
        aggregate = build_aggregate(session, element.element_id, neighbor_ids, union_builder).solid
    return generate_face_piece(session, element, face, aggregate, engine).piece


class FacePickGenerator:
    """Holds the run snapshot used while the user picks faces."""

    def __init__(
        self,
        model: HostModel,
        config: Optional[FormworkConfig] = None,
        booleans: Optional[BooleanEngine] = None,
        session: Optional[AnalysisSession] = None,
    ):
        model.ensure_available()
        self.model = model
        self.config = config or FormworkConfig()
        self.session = session or AnalysisSession(model, self.config, run_id="face_pick")
        booleans = booleans or BooleanEngine()
        self.union_builder = UnionSolidBuilder(booleans, volume_epsilon=self.config.volume_epsilon)
        self.engine = ContactDeductionEngine(
            booleans,
            volume_epsilon=self.config.volume_epsilon,
            full_coverage_ratio=self.config.full_coverage_ratio,
        )
        elements = collect_structural_elements(
            model, categories=self.config.categories, session=self.session
        )
        self.index = ProximityIndex(elements)
        self._seen: Set[Tuple] = set()
        self._host_totals: Dict[int, float] = {}
        self._host_pieces: Dict[int, List[int]] = {}

    def resolve(self, pick: FacePick) -> Tuple[StructuralElement, PlanarFace]:
        element = self.index.get(pick.element_id)
        if element is None:
            raise GeometryExtractionError(
                f"Element {pick.element_id} is not a structural element",
                element_id=pick.element_id,
            )
        for face in self.session.faces_for(pick.element_id):
            if face.face_id == pick.face_id:
                return element, face
        raise GeometryExtractionError(
            f"Element {pick.element_id} has no face {pick.face_id}",
            element_id=pick.element_id,
        )

    def is_duplicate(self, element: StructuralElement, face: PlanarFace) -> bool:
        return face_key(element.element_id, face) in self._seen

    def mark_done(self, element: StructuralElement, face: PlanarFace) -> None:
        self._seen.add(face_key(element.element_id, face))

    def generate(self, element: StructuralElement, face: PlanarFace) -> Optional[FormworkPiece]:
        return generate_piece_for_face(
            self.session, element, face, self.index, self.union_builder, self.engine
        )

    def host_total_m2(self, host_id: int) -> float:
        return self._host_totals.get(host_id, 0.0)

    def commit(self, piece: FormworkPiece) -> int:
        """Write one piece in its own transaction.

        ``Total`` on every piece of the host is raised to the running net
        area of all faces committed on that host so far.
        """
        total = self.host_total_m2(piece.host_id) + piece.net_area_m2
        earlier = self._host_pieces.get(piece.host_id, [])
        with self.model.transaction("Pick face formwork"):
            element_id, _ = write_piece(
                self.model,
                piece,
                total,
                format_timestamp(datetime.now()),
                session=self.session,
            )
            for ref in earlier:
                self.model.set_parameter(ref, PARAM_TOTAL, round(float(total), 6))
        self._host_totals[piece.host_id] = total
        self._host_pieces.setdefault(piece.host_id, []).append(element_id)
        return element_id


def run_face_pick_loop(
    model: HostModel,
    picker: FacePicker,
    config: Optional[FormworkConfig] = None,
    booleans: Optional[BooleanEngine] = None,
    generator: Optional[FacePickGenerator] = None,
) -> FacePickResult:
    """Prompt for faces until the picker finishes or cancels.

    Every face is generated and written on its own, so cancelling never
    leaves a partial piece behind; pieces already committed are returned.
    Calling ``generator.session.request_cancel()`` stops the loop once the
    current face is done.
    """
    generator = generator or FacePickGenerator(model, config, booleans)
    session = generator.session
    result = FacePickResult()

    while not session.cancel_requested:
        try:
            pick = picker.next_pick()
        except UserCancellationError:
            logger.info("Face pick cancelled after %d pieces", len(result.committed))
            result.cancelled = True
            break
        if pick is None:
            break

        try:
            element, face = generator.resolve(pick)
            if generator.is_duplicate(element, face):
                logger.info("Face %d of element %d already processed", pick.face_id, pick.element_id)
                result.duplicates += 1
                continue
            piece = generator.generate(element, face)
            if piece is None:
                generator.mark_done(element, face)
                result.no_formwork += 1
                continue
            generator.commit(piece)
            generator.mark_done(element, face)
        except ModelUnavailableError:
            raise
        except FormworkError as exc:
            session.record_error(pick.element_id, "face_pick", exc)
            result.failed += 1
            continue
        result.committed.append(piece)

    if session.cancel_requested:
        result.cancelled = True
    return result
