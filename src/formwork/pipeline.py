"""Batch formwork generation: model -> pieces, records and totals.

Run states: Idle -> Collect -> Index -> PerElement -> Aggregate -> Report
-> Idle. A failure inside one element is recorded and counted; the loop
always moves on to the next element.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from formwork.audit import AuditTrail
from formwork.booleans import BooleanEngine
from formwork.collector import collect_structural_elements
from formwork.contracts import (
    Category,
    ElementRecord,
    ElementStatus,
    ExclusionFlag,
    FormworkConfig,
    FormworkPiece,
    FormworkRunResult,
    RunState,
    StructuralElement,
)
from formwork.aggregate import ResultAggregator
from formwork.deduction import ContactDeductionEngine
from formwork.errors import ModelUnavailableError
from formwork.extraction import total_volume
from formwork.faces import select_formwork_faces
from formwork.generation import build_aggregate, generate_face_piece
from formwork.model import HostModel
from formwork.proximity import ProximityIndex, search_expansion_ft
from formwork.result import Err
from formwork.session import AnalysisSession
from formwork.union import UnionSolidBuilder
from formwork.writeback import format_timestamp, replace_generated_pieces
from formwork.zones import PourZoneGrouper
from materials import MATERIALS, ft3_to_m3

logger = logging.getLogger(__name__)

REPORT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def process_element(
    session: AnalysisSession,
    element: StructuralElement,
    index: ProximityIndex,
    grouper: PourZoneGrouper,
    union_builder: UnionSolidBuilder,
    engine: ContactDeductionEngine,
) -> Tuple[ElementRecord, List[FormworkPiece]]:
    """Extract -> Select -> Build -> Deduct -> Measure for one element."""
    record = ElementRecord(
        element_id=element.element_id,
        name=element.name,
        level=element.level,
        category=element.category,
        status=ElementStatus.OK,
        zone_key=grouper.key_of(element.element_id),
    )
    if element.has_flag(ExclusionFlag.OVERRIDE):
        record.status = ElementStatus.EXCLUDED
        return record, []
    if element.bounding_box is None:
        record.status = ElementStatus.NO_GEOMETRY
        return record, []

    solids = session.try_solids(element.element_id)
    if isinstance(solids, Err):
        record.status = ElementStatus.NO_GEOMETRY
        return record, []
    record.concrete_volume_m3 = ft3_to_m3(total_volume(solids.value))

    expansion = search_expansion_ft(element.category, session.config)
    neighbors = index.neighbors(
        element, expansion, restrict_to=grouper.search_scope(element.element_id)
    )
    record.neighbor_count = len(neighbors)
    slab_boxes = []
    for neighbor_id in neighbors.neighbor_ids:
        neighbor = index.get(neighbor_id)
        if neighbor is not None and neighbor.category == Category.SLAB:
            slab_boxes.append(neighbor.bounding_box)

    faces = select_formwork_faces(element, session.faces_for(element.element_id), slab_boxes)
    if not faces:
        return record, []

    aggregate = None
    if neighbors.neighbor_ids:
        aggregate = build_aggregate(
            session, element.element_id, neighbors.neighbor_ids, union_builder
        ).solid

    pieces: List[FormworkPiece] = []
    for face in faces:
        face_result = generate_face_piece(session, element, face, aggregate, engine)
        record.gross_area_m2 += face_result.gross_area_m2
        record.net_area_m2 += face_result.net_area_m2
        if face_result.piece is not None:
            pieces.append(face_result.piece)
            record.piece_areas_m2.append(face_result.piece.net_area_m2)
    return record, pieces


def run_formwork_pipeline(
    model: HostModel,
    config: Optional[FormworkConfig] = None,
    *,
    run_id: Optional[str] = None,
    artifacts_dir: Optional[Path] = None,
    audit: Optional[AuditTrail] = None,
    booleans: Optional[BooleanEngine] = None,
    write_back: bool = True,
) -> FormworkRunResult:
    """Generate formwork for every structural element of ``model``.

    The previous run's pieces are replaced in the same transaction that
    writes the new ones, so re-running never double counts. Raises
    ``ModelUnavailableError`` if the model cannot be used.
    """
    config = config or FormworkConfig()
    stocked = MATERIALS[config.material_key].nearest_thickness_mm(config.thickness_mm)
    if abs(stocked - config.thickness_mm) > 1e-6:
        logger.warning(
            "%s is not stocked at %.1f mm (nearest %.1f mm)",
            config.material_key,
            config.thickness_mm,
            stocked,
        )
    model.ensure_available()

    started = datetime.now()
    run_id = run_id or started.strftime("%Y%m%d_%H%M%S")
    if audit is None and artifacts_dir is not None:
        audit = AuditTrail(run_id=run_id, artifacts_dir=artifacts_dir)
    session = AnalysisSession(model, config, run_id=run_id, audit=audit)
    booleans = booleans or BooleanEngine()
    union_builder = UnionSolidBuilder(booleans, volume_epsilon=config.volume_epsilon)
    engine = ContactDeductionEngine(
        booleans,
        volume_epsilon=config.volume_epsilon,
        full_coverage_ratio=config.full_coverage_ratio,
    )

    # Phase 0: Collect
    session.enter(RunState.COLLECT)
    elements = collect_structural_elements(
        model,
        categories=config.categories,
        exclude_foundation=config.exclude_foundation,
        session=session,
    )
    _checkpoint(
        session,
        0,
        "collect",
        counts={"elements": len(elements)},
        metrics={},
        outputs={"element_ids": [e.element_id for e in elements]},
    )

    # Phase 1: Index
    session.enter(RunState.INDEX)
    index = ProximityIndex(elements)
    grouper = PourZoneGrouper(elements, precision_mode=config.precision_mode)
    _checkpoint(
        session,
        1,
        "index",
        counts={"indexed": len(index), "zones": len(grouper.groups)},
        metrics={"thickness_mm": config.thickness_mm},
        outputs={"zones": [g.zone_key for g in grouper.groups]},
    )

    # Phase 2: PerElement
    session.enter(RunState.PER_ELEMENT)
    aggregator = ResultAggregator(grouper)
    for element in elements:
        try:
            record, pieces = process_element(
                session, element, index, grouper, union_builder, engine
            )
        except ModelUnavailableError:
            raise
        except Exception as exc:
            logger.exception("Element %d failed", element.element_id)
            session.record_error(element.element_id, "per_element", exc)
            record = ElementRecord(
                element_id=element.element_id,
                name=element.name,
                level=element.level,
                category=element.category,
                status=ElementStatus.FAILED,
                zone_key=grouper.key_of(element.element_id),
            )
            pieces = []
        aggregator.add(record, pieces)
    _checkpoint(
        session,
        2,
        "per_element",
        counts={
            "records": len(aggregator.records),
            "pieces": len(aggregator.pieces),
            "failed": aggregator.failure_count,
        },
        metrics={"net_area_m2": sum(r.net_area_m2 for r in aggregator.records)},
    )

    # Phase 3: Aggregate
    session.enter(RunState.AGGREGATE)
    category_totals = aggregator.category_totals()
    zones = aggregator.zone_totals()
    host_totals: Dict[int, float] = {r.element_id: r.net_area_m2 for r in aggregator.records}
    _checkpoint(
        session,
        3,
        "aggregate",
        counts={"categories": len(category_totals), "zones": len(zones)},
        metrics={
            "gross_area_m2": sum(r.gross_area_m2 for r in aggregator.records),
            "net_area_m2": sum(r.net_area_m2 for r in aggregator.records),
            "concrete_volume_m3": sum(r.concrete_volume_m3 for r in aggregator.records),
        },
    )

    # Phase 4: Report
    session.enter(RunState.REPORT)
    deleted = 0
    if write_back:
        try:
            deleted = replace_generated_pieces(
                model,
                aggregator.pieces,
                host_totals,
                format_timestamp(started),
                session=session,
            ).deleted_count
        except ModelUnavailableError:
            raise
        except Exception as exc:
            logger.exception("Writeback rolled back")
            session.record_error(None, "writeback", exc)
    _checkpoint(
        session,
        4,
        "report",
        counts={
            "succeeded": aggregator.success_count,
            "failed": aggregator.failure_count,
            "skipped": aggregator.skipped_count,
            "diagnostics": len(session.diagnostics),
            "deleted_prior_pieces": deleted,
        },
        metrics={},
    )
    if audit is not None:
        audit.finalize()
    session.enter(RunState.IDLE)

    logger.info(
        "Run %s: %d elements, %d pieces, net %.3f m² (%d ok, %d failed, %d skipped)",
        run_id,
        len(aggregator.records),
        len(aggregator.pieces),
        sum(r.net_area_m2 for r in aggregator.records),
        aggregator.success_count,
        aggregator.failure_count,
        aggregator.skipped_count,
    )
    return FormworkRunResult(
        run_id=run_id,
        analysis_time=started.strftime(REPORT_TIME_FORMAT),
        config=config,
        records=aggregator.records,
        pieces=aggregator.pieces,
        category_totals=category_totals,
        zones=zones,
        success_count=aggregator.success_count,
        failure_count=aggregator.failure_count,
        skipped_count=aggregator.skipped_count,
        deleted_prior_count=deleted,
        diagnostics=list(session.diagnostics),
        checkpoints=[c.path for c in audit.checkpoints] if audit is not None else [],
        counters=dict(session.counters),
    )


def _checkpoint(
    session: AnalysisSession,
    phase_index: int,
    phase_name: str,
    counts: Dict[str, int],
    metrics: Dict[str, float],
    outputs: Optional[Dict[str, object]] = None,
) -> None:
    if session.audit is None:
        return
    session.audit.write_checkpoint(
        phase_index=phase_index,
        phase_name=phase_name,
        counts=counts,
        metrics=metrics,
        outputs=outputs,
    )
