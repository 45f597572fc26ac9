"""CSV report export: header, summary and detail blocks."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import List

from formwork.aggregate import record_formula, sorted_detail_records
from formwork.contracts import FormworkRunResult

logger = logging.getLogger(__name__)

REPORT_TITLE = "Formwork Area Report"

DETAIL_COLUMNS = [
    "Element Name",
    "Level",
    "Category",
    "Element ID",
    "Formwork Pieces",
    "Area Formula",
    "Net Area (m²)",
    "Concrete Volume (m³)",
]


def build_report_rows(result: FormworkRunResult) -> List[List[str]]:
    """All report rows; blank rows separate the three blocks."""
    rows: List[List[str]] = []

    # Header block
    rows.append([REPORT_TITLE])
    rows.append(["Analysis Time", result.analysis_time])
    rows.append(["System", result.config.system_name])
    rows.append(["Run ID", result.run_id])
    rows.append([])

    # Summary block
    rows.append(["Summary"])
    rows.append(["Total Elements", str(result.element_count)])
    rows.append(["Total Formwork Pieces", str(result.piece_count)])
    rows.append(["Total Net Area (m²)", f"{result.net_area_m2:.3f}"])
    rows.append(["Total Gross Area (m²)", f"{result.gross_area_m2:.3f}"])
    rows.append(["Total Concrete Volume (m³)", f"{result.concrete_volume_m3:.3f}"])
    rows.append(["Succeeded", str(result.success_count)])
    rows.append(["Failed", str(result.failure_count)])
    rows.append(["Skipped", str(result.skipped_count)])
    rows.append([])
    rows.append(
        [
            "Category",
            "Elements",
            "Formwork Pieces",
            "Net Area (m²)",
            "Concrete Volume (m³)",
            "Average Area (m²)",
        ]
    )
    for totals in result.category_totals.values():
        rows.append(
            [
                totals.category.value,
                str(totals.element_count),
                str(totals.piece_count),
                f"{totals.net_area_m2:.3f}",
                f"{totals.concrete_volume_m3:.3f}",
                f"{totals.average_area_m2:.3f}",
            ]
        )
    rows.append([])

    # Detail block
    rows.append(list(DETAIL_COLUMNS))
    for record in sorted_detail_records(result.records):
        rows.append(
            [
                record.name,
                record.level,
                record.category.value,
                str(record.element_id),
                str(record.piece_count),
                record_formula(record),
                f"{record.net_area_m2:.3f}",
                f"{record.concrete_volume_m3:.3f}",
            ]
        )
    return rows


def write_csv_report(path: Path, result: FormworkRunResult) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = build_report_rows(result)
    # BOM so spreadsheet tools detect UTF-8 (m², m³).
    with path.open("w", encoding="utf-8-sig", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerows(rows)
    logger.info("Exported formwork report: %s", path)
    return path


def result_payload(result: FormworkRunResult) -> dict:
    """JSON-friendly summary of a run (no geometry)."""
    return {
        "schema_version": "formwork.result.v1",
        "run_id": result.run_id,
        "analysis_time": result.analysis_time,
        "config": {
            "thickness_mm": result.config.thickness_mm,
            "material_key": result.config.material_key,
            "categories": [c.value for c in result.config.categories],
            "exclude_foundation": result.config.exclude_foundation,
            "precision_mode": result.config.precision_mode,
            "area_mode": result.config.area_mode.value,
        },
        "totals": {
            "elements": result.element_count,
            "pieces": result.piece_count,
            "written_pieces": result.written_piece_count,
            "net_area_m2": round(result.net_area_m2, 6),
            "gross_area_m2": round(result.gross_area_m2, 6),
            "concrete_volume_m3": round(result.concrete_volume_m3, 6),
            "succeeded": result.success_count,
            "failed": result.failure_count,
            "skipped": result.skipped_count,
            "deleted_prior_pieces": result.deleted_prior_count,
        },
        "categories": [
            {
                "category": t.category.value,
                "elements": t.element_count,
                "pieces": t.piece_count,
                "net_area_m2": round(t.net_area_m2, 6),
                "concrete_volume_m3": round(t.concrete_volume_m3, 6),
            }
            for t in result.category_totals.values()
        ],
        "zones": [
            {
                "zone_key": z.zone_key,
                "elements": z.element_count,
                "pieces": z.piece_count,
                "net_area_m2": round(z.net_area_m2, 6),
                "concrete_volume_m3": round(z.concrete_volume_m3, 6),
            }
            for z in result.zones
        ],
        "elements": [
            {
                "element_id": r.element_id,
                "name": r.name,
                "level": r.level,
                "category": r.category.value,
                "status": r.status.value,
                "pieces": r.piece_count,
                "formula": record_formula(r),
                "gross_area_m2": round(r.gross_area_m2, 6),
                "net_area_m2": round(r.net_area_m2, 6),
                "concrete_volume_m3": round(r.concrete_volume_m3, 6),
            }
            for r in sorted_detail_records(result.records)
        ],
        "diagnostics": [
            {
                "element_id": d.element_id,
                "stage": d.stage,
                "error_type": d.error_type,
                "message": d.message,
            }
            for d in result.diagnostics
        ],
    }
