#!/usr/bin/env python3
"""Run a batch formwork analysis over a JSON model file."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

import trimesh

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from formwork import FormworkConfig, run_formwork_pipeline
from formwork.audit import AuditTrail
from formwork.contracts import AreaMode, config_from_dict
from formwork.errors import ModelUnavailableError
from formwork.export import result_payload, write_csv_report
from formwork.model import load_model_json
from materials import MATERIALS
from run_protocol import (
    build_manifest,
    copy_input_model,
    prepare_run_dir,
    update_latest_pointer,
    write_json,
    write_text,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate formwork pieces with contact deduction and report net areas"
    )
    parser.add_argument("--model", required=True, help="Path to JSON model file")
    parser.add_argument("--config", default=None, help="Optional JSON config file")
    parser.add_argument("--name", default="formwork", help="Project/run name")
    parser.add_argument("--runs-dir", default="runs", help="Runs output root")
    parser.add_argument(
        "--thickness-mm",
        type=float,
        default=None,
        help="Formwork panel thickness in mm (default 18)",
    )
    parser.add_argument(
        "--material-key",
        default=None,
        choices=sorted(MATERIALS),
        help="Material key from materials.MATERIALS",
    )
    parser.add_argument(
        "--exclude-foundation",
        action="store_true",
        help="Skip foundation elements",
    )
    parser.add_argument(
        "--precision-mode",
        action="store_true",
        help="Only deduct contact with elements of the same pour zone",
    )
    parser.add_argument(
        "--area-mode",
        default=None,
        choices=[mode.value for mode in AreaMode],
        help="How piece area is measured",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def _load_config(args: argparse.Namespace) -> FormworkConfig:
    payload = {}
    if args.config:
        payload = json.loads(Path(args.config).read_text(encoding="utf-8"))
    if args.thickness_mm is not None:
        payload["thickness_mm"] = float(args.thickness_mm)
    if args.material_key is not None:
        payload["material_key"] = args.material_key
    if args.exclude_foundation:
        payload["exclude_foundation"] = True
    if args.precision_mode:
        payload["precision_mode"] = True
    if args.area_mode is not None:
        payload["area_mode"] = args.area_mode
    return config_from_dict(payload)


def _build_summary(*, run_id: str, elapsed_s: float, result) -> str:
    lines = [
        f"# Run {run_id}",
        "",
        f"- Duration: {elapsed_s:.2f}s",
        f"- Elements: {result.element_count} "
        f"({result.success_count} ok, {result.failure_count} failed, {result.skipped_count} skipped)",
        f"- Formwork pieces: {result.piece_count}",
        f"- Net area: {result.net_area_m2:.3f} m²",
        f"- Gross area: {result.gross_area_m2:.3f} m²",
        f"- Concrete volume: {result.concrete_volume_m3:.3f} m³",
        "",
        "## By category",
    ]
    for totals in result.category_totals.values():
        lines.append(
            f"- {totals.category.value}: {totals.element_count} elements, "
            f"{totals.piece_count} pieces, {totals.net_area_m2:.3f} m²"
        )
    if result.diagnostics:
        lines += ["", f"## Diagnostics ({len(result.diagnostics)})"]
        for diag in result.diagnostics[:20]:
            lines.append(f"- [{diag.stage}] element {diag.element_id}: {diag.message}")
    lines.append("")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _load_config(args)
    except (ValueError, TypeError, OSError) as exc:
        parser.error(str(exc))
    try:
        load_model_json(args.model)
    except (ValueError, KeyError, TypeError, OSError) as exc:
        parser.error(f"cannot read model {args.model}: {exc}")

    started = time.perf_counter()
    run_paths = prepare_run_dir(args.runs_dir, args.name)
    copied_model = copy_input_model(args.model, run_paths.input_dir)
    model = load_model_json(copied_model)

    audit = AuditTrail(run_id=run_paths.run_id, artifacts_dir=run_paths.artifacts_dir)
    try:
        result = run_formwork_pipeline(
            model,
            config,
            run_id=run_paths.run_id,
            artifacts_dir=run_paths.artifacts_dir,
            audit=audit,
        )
    except ModelUnavailableError as exc:
        logger.error("Model unavailable: %s", exc)
        return 2
    elapsed = time.perf_counter() - started

    write_csv_report(run_paths.report_csv_path, result)
    write_json(run_paths.result_json_path, result_payload(result))
    solids = [p.solid for p in result.pieces if p.solid is not None]
    if solids:
        trimesh.util.concatenate(solids).export(str(run_paths.pieces_stl_path))

    metrics_payload = {
        "run_id": result.run_id,
        "elapsed_s": round(elapsed, 3),
        "material_key": config.material_key,
        "thickness_mm": config.thickness_mm,
        "area_mode": config.area_mode.value,
        "precision_mode": config.precision_mode,
        "counts": {
            "elements": result.element_count,
            "pieces": result.piece_count,
            "written_pieces": result.written_piece_count,
            "succeeded": result.success_count,
            "failed": result.failure_count,
            "skipped": result.skipped_count,
            "deleted_prior_pieces": result.deleted_prior_count,
            "diagnostics": len(result.diagnostics),
        },
        "areas_m2": {
            "net": round(result.net_area_m2, 6),
            "gross": round(result.gross_area_m2, 6),
        },
        "concrete_volume_m3": round(result.concrete_volume_m3, 6),
        "counters": result.counters,
    }
    write_json(run_paths.metrics_path, metrics_payload)
    write_text(
        run_paths.summary_path,
        _build_summary(run_id=result.run_id, elapsed_s=elapsed, result=result),
    )
    write_json(
        run_paths.manifest_path,
        build_manifest(
            run_paths,
            project_name=args.name,
            input_model=copied_model,
            analysis_time=result.analysis_time,
            checkpoints=result.checkpoints,
            wrote_pieces=bool(solids),
        ),
    )
    update_latest_pointer(args.runs_dir, run_paths.run_dir)

    print(f"Run ID: {result.run_id}")
    print(f"Run folder: {run_paths.run_dir}")
    print(
        f"Pieces: {result.piece_count}  Net area: {result.net_area_m2:.3f} m²  "
        f"Failed: {result.failure_count}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
