"""Writing generated formwork pieces back to the host model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from formwork.contracts import FORMWORK_CATEGORY_LABEL, FormworkPiece
from formwork.errors import ModelUnavailableError, ParameterWriteError
from formwork.model import HostModel, ParameterSlot
from formwork.session import AnalysisSession
from materials import m2_to_ft2

logger = logging.getLogger(__name__)

PARAM_EFFECTIVE_AREA = "EffectiveArea"
PARAM_AREA = "Area"
PARAM_TOTAL = "Total"
PARAM_HOST_ID = "HostId"
PARAM_CATEGORY = "Category"
PARAM_THICKNESS = "Thickness"
PARAM_MATERIAL = "MaterialName"
PARAM_ANALYSIS_TIME = "AnalysisTime"

FORMWORK_PARAMETERS = (
    ParameterSlot(PARAM_EFFECTIVE_AREA, "float"),
    ParameterSlot(PARAM_AREA, "float"),
    ParameterSlot(PARAM_TOTAL, "float"),
    ParameterSlot(PARAM_HOST_ID, "int"),
    ParameterSlot(PARAM_CATEGORY, "str"),
    ParameterSlot(PARAM_THICKNESS, "float"),
    ParameterSlot(PARAM_MATERIAL, "str"),
    ParameterSlot(PARAM_ANALYSIS_TIME, "str"),
)

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"


@dataclass
class WritebackReport:
    created_ids: List[int] = field(default_factory=list)
    deleted_count: int = 0
    skipped_pieces: List[FormworkPiece] = field(default_factory=list)
    parameter_failures: List[ParameterWriteError] = field(default_factory=list)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


def piece_parameters(
    piece: FormworkPiece,
    host_total_m2: float,
    analysis_time: str,
) -> Dict[str, object]:
    return {
        PARAM_EFFECTIVE_AREA: float(m2_to_ft2(piece.net_area_m2)),
        PARAM_AREA: round(float(piece.net_area_m2), 6),
        PARAM_TOTAL: round(float(host_total_m2), 6),
        PARAM_HOST_ID: int(piece.host_id),
        PARAM_CATEGORY: piece.category.value,
        PARAM_THICKNESS: float(piece.thickness_ft),
        PARAM_MATERIAL: piece.material_key,
        PARAM_ANALYSIS_TIME: analysis_time,
    }


def generated_piece_ids(model: HostModel) -> List[int]:
    return model.find_elements([FORMWORK_CATEGORY_LABEL])


def delete_generated_pieces(model: HostModel) -> int:
    """Remove every previously generated formwork piece."""
    ids = generated_piece_ids(model)
    if not ids:
        return 0
    with model.transaction("Delete formwork"):
        deleted = model.delete_elements(ids)
    logger.info("Deleted %d existing formwork pieces", deleted)
    return deleted


def write_piece(
    model: HostModel,
    piece: FormworkPiece,
    host_total_m2: float,
    analysis_time: str,
    session: Optional[AnalysisSession] = None,
) -> Tuple[int, List[ParameterWriteError]]:
    """Create one piece element and set its parameters.

    A parameter that cannot be written is skipped; the piece is kept.
    Returns the new element id and the skipped-parameter errors.
    """
    failures: List[ParameterWriteError] = []
    model.bind_parameters(FORMWORK_CATEGORY_LABEL, FORMWORK_PARAMETERS)
    element_id = model.create_geometry_element([piece.solid], FORMWORK_CATEGORY_LABEL)
    piece.element_ref = element_id
    for name, value in piece_parameters(piece, host_total_m2, analysis_time).items():
        try:
            model.set_parameter(element_id, name, value)
        except ParameterWriteError as exc:
            failures.append(exc)
            if session is not None:
                session.record_error(piece.host_id, "writeback", exc)
            else:
                logger.warning("Skipping parameter %s on %d: %s", name, element_id, exc)
    return element_id, failures


def _write_batch(
    model: HostModel,
    pieces: Sequence[FormworkPiece],
    host_totals_m2: Dict[int, float],
    analysis_time: str,
    report: WritebackReport,
    session: Optional[AnalysisSession],
) -> None:
    for piece in pieces:
        piece.element_ref = None
        try:
            element_id, failures = write_piece(
                model,
                piece,
                host_totals_m2.get(piece.host_id, piece.net_area_m2),
                analysis_time,
                session=session,
            )
        except ModelUnavailableError:
            raise
        except Exception as exc:
            if piece.element_ref is not None:
                model.delete_elements([piece.element_ref])
                piece.element_ref = None
            report.skipped_pieces.append(piece)
            if session is not None:
                session.record_error(piece.host_id, "writeback", exc)
            else:
                logger.warning("Skipping piece of element %d: %s", piece.host_id, exc)
            continue
        report.created_ids.append(element_id)
        report.parameter_failures.extend(failures)


def write_pieces(
    model: HostModel,
    pieces: Sequence[FormworkPiece],
    host_totals_m2: Dict[int, float],
    analysis_time: str,
    session: Optional[AnalysisSession] = None,
) -> WritebackReport:
    """Write all pieces of a run in one transaction.

    A piece the host refuses to create is skipped and recorded; the rest of
    the batch still commits.
    """
    report = WritebackReport()
    with model.transaction("Generate formwork"):
        _write_batch(model, pieces, host_totals_m2, analysis_time, report, session)
    _log_report(report)
    return report


def replace_generated_pieces(
    model: HostModel,
    pieces: Sequence[FormworkPiece],
    host_totals_m2: Dict[int, float],
    analysis_time: str,
    session: Optional[AnalysisSession] = None,
) -> WritebackReport:
    """Swap the previous run's pieces for ``pieces`` in a single transaction.

    If the transaction fails the prior pieces stay in the model and none of
    ``pieces`` are linked to an element.
    """
    report = WritebackReport()
    try:
        with model.transaction("Generate formwork"):
            prior = generated_piece_ids(model)
            if prior:
                report.deleted_count = model.delete_elements(prior)
            _write_batch(model, pieces, host_totals_m2, analysis_time, report, session)
    except BaseException:
        for piece in pieces:
            piece.element_ref = None
        raise
    logger.info("Replaced %d existing formwork pieces", report.deleted_count)
    _log_report(report)
    return report


def _log_report(report: WritebackReport) -> None:
    logger.info(
        "Wrote %d formwork pieces (%d skipped, %d parameter failures)",
        len(report.created_ids),
        len(report.skipped_pieces),
        len(report.parameter_failures),
    )
