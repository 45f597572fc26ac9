"""Run-folder layout for formwork analysis runs.

    runs/<run_id>/
        input/                      copied model (+ referenced meshes)
        artifacts/
            formwork_report.csv
            formwork_result.json
            formwork_pieces.stl
            decision_log.jsonl
            decision_hash_chain.json
            checkpoints/phase_NN_<name>.json
        manifest.json
        metrics.json
        summary.md
    runs/latest -> <run_id>
"""

from __future__ import annotations

import json
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

REPORT_CSV_NAME = "formwork_report.csv"
RESULT_JSON_NAME = "formwork_result.json"
PIECES_STL_NAME = "formwork_pieces.stl"
DECISION_LOG_NAME = "decision_log.jsonl"
HASH_CHAIN_NAME = "decision_hash_chain.json"
CHECKPOINTS_DIR_NAME = "checkpoints"


@dataclass
class RunPaths:
    run_id: str
    run_dir: Path
    input_dir: Path
    artifacts_dir: Path

    @property
    def manifest_path(self) -> Path:
        return self.run_dir / "manifest.json"

    @property
    def metrics_path(self) -> Path:
        return self.run_dir / "metrics.json"

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.md"

    @property
    def report_csv_path(self) -> Path:
        return self.artifacts_dir / REPORT_CSV_NAME

    @property
    def result_json_path(self) -> Path:
        return self.artifacts_dir / RESULT_JSON_NAME

    @property
    def pieces_stl_path(self) -> Path:
        return self.artifacts_dir / PIECES_STL_NAME

    @property
    def decision_log_path(self) -> Path:
        return self.artifacts_dir / DECISION_LOG_NAME

    @property
    def hash_chain_path(self) -> Path:
        return self.artifacts_dir / HASH_CHAIN_NAME

    @property
    def checkpoints_dir(self) -> Path:
        return self.artifacts_dir / CHECKPOINTS_DIR_NAME


def slugify(value: str) -> str:
    value = re.sub(r"[^a-z0-9]+", "-", value.strip().lower())
    return value.strip("-") or "formwork"


def create_run_id(project_name: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{slugify(project_name)}"


def prepare_run_dir(runs_root: str, project_name: str) -> RunPaths:
    run_id = create_run_id(project_name)
    run_dir = Path(runs_root) / run_id
    paths = RunPaths(
        run_id=run_id,
        run_dir=run_dir,
        input_dir=run_dir / "input",
        artifacts_dir=run_dir / "artifacts",
    )
    paths.input_dir.mkdir(parents=True, exist_ok=True)
    paths.checkpoints_dir.mkdir(parents=True, exist_ok=True)
    return paths


def copy_input_model(model_path: str, input_dir: Path) -> Path:
    """Copy the model file into the run folder, with any mesh files it references."""
    src = Path(model_path)
    dst = input_dir / src.name
    if src.resolve() != dst.resolve():
        shutil.copy2(src, dst)

    try:
        payload = json.loads(src.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return dst
    for item in payload.get("elements", []) if isinstance(payload, dict) else []:
        mesh_ref = item.get("mesh") if isinstance(item, dict) else None
        if not mesh_ref or Path(mesh_ref).is_absolute():
            continue
        mesh_src = src.parent / mesh_ref
        mesh_dst = input_dir / mesh_ref
        if mesh_src.exists() and mesh_src.resolve() != mesh_dst.resolve():
            mesh_dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(mesh_src, mesh_dst)
    return dst


def build_manifest(
    paths: RunPaths,
    *,
    project_name: str,
    input_model: Path,
    analysis_time: str,
    checkpoints: Iterable[Path] = (),
    wrote_pieces: bool = False,
) -> Dict[str, Any]:
    """Manifest listing every artifact of a finished run."""
    return {
        "run_id": paths.run_id,
        "project_name": project_name,
        "created_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "input_model": str(input_model),
        "analysis_time": analysis_time,
        "artifacts": {
            "report_csv": str(paths.report_csv_path),
            "result_json": str(paths.result_json_path),
            "pieces_stl": str(paths.pieces_stl_path) if wrote_pieces else None,
            "decision_log": str(paths.decision_log_path),
            "hash_chain": str(paths.hash_chain_path),
            "checkpoints": [str(p) for p in checkpoints],
        },
    }


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def update_latest_pointer(runs_root: str, run_dir: Path) -> None:
    """Point ``runs/latest`` at ``run_dir``; a marker folder where symlinks are unavailable."""
    latest = Path(runs_root) / "latest"
    if latest.is_symlink() or latest.is_file():
        latest.unlink()
    elif latest.exists():
        shutil.rmtree(latest)

    try:
        latest.symlink_to(os.path.relpath(run_dir, latest.parent))
    except OSError:
        latest.mkdir(parents=True, exist_ok=True)
        (latest / "latest_run.txt").write_text(run_dir.name, encoding="utf-8")
