"""Audit/checkpoint utilities for formwork analysis runs."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from run_protocol import CHECKPOINTS_DIR_NAME, DECISION_LOG_NAME, HASH_CHAIN_NAME


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _canonical_json(payload: Dict[str, object]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class CheckpointHandle:
    phase_index: int
    phase_name: str
    path: Path
    payload_sha256: str


class AuditTrail:
    """Append-only decision log with per-decision hash chaining.

    Each deduction decision (applied, skipped, fallback, fully covered) is
    one line of ``decision_log.jsonl``; every run phase writes a checkpoint
    whose hash links to the previous one.
    """

    def __init__(self, run_id: str, artifacts_dir: Path):
        self.run_id = run_id
        self.artifacts_dir = Path(artifacts_dir)
        self.checkpoints_dir = self.artifacts_dir / CHECKPOINTS_DIR_NAME
        self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
        self.decision_log_path = self.artifacts_dir / DECISION_LOG_NAME
        self.hash_chain_path = self.artifacts_dir / HASH_CHAIN_NAME
        self._sequence = 0
        self._prev_hash = "0" * 64
        self._chain: List[Dict[str, object]] = []
        self._checkpoint_handles: List[CheckpointHandle] = []

    @property
    def checkpoints(self) -> List[CheckpointHandle]:
        return list(self._checkpoint_handles)

    @property
    def decision_count(self) -> int:
        return self._sequence

    @property
    def last_checkpoint_sha256(self) -> str:
        if not self._checkpoint_handles:
            return ""
        return self._checkpoint_handles[-1].payload_sha256

    def append_decision(
        self,
        *,
        phase: str,
        decision_type: str,
        element_ids: Iterable[int],
        selected: str,
        reason_codes: Iterable[str],
        numeric_evidence: Optional[Dict[str, float]] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> Dict[str, object]:
        self._sequence += 1
        payload: Dict[str, object] = {
            "schema_version": "formwork.decision.v1",
            "run_id": self.run_id,
            "seq": self._sequence,
            "timestamp_utc": _utc_now_iso(),
            "phase": phase,
            "decision_type": decision_type,
            "element_ids": [int(e) for e in element_ids],
            "selected": selected,
            "reason_codes": list(reason_codes),
            "numeric_evidence": {
                k: float(v) for k, v in (numeric_evidence or {}).items()
            },
            "metadata": metadata or {},
            "previous_hash": self._prev_hash,
        }
        digest = sha256_text(_canonical_json(payload))
        payload["hash"] = digest

        with self.decision_log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, sort_keys=True) + "\n")

        self._chain.append(
            {
                "seq": self._sequence,
                "hash": digest,
                "previous_hash": self._prev_hash,
            }
        )
        self._prev_hash = digest
        return payload

    def write_checkpoint(
        self,
        *,
        phase_index: int,
        phase_name: str,
        counts: Dict[str, int],
        metrics: Dict[str, float],
        outputs: Optional[Dict[str, object]] = None,
        notes: Optional[List[str]] = None,
    ) -> CheckpointHandle:
        path = self.checkpoints_dir / f"phase_{phase_index:02d}_{phase_name}.json"
        payload: Dict[str, object] = {
            "schema_version": "formwork.checkpoint.v1",
            "run_id": self.run_id,
            "phase_index": int(phase_index),
            "phase_name": phase_name,
            "timestamp_utc": _utc_now_iso(),
            "prev_checkpoint_sha256": self.last_checkpoint_sha256,
            "counts": {k: int(v) for k, v in counts.items()},
            "metrics": {k: float(v) for k, v in metrics.items()},
            "outputs": outputs or {},
            "notes": notes or [],
        }
        payload_sha = sha256_text(_canonical_json(payload))
        payload["payload_sha256"] = payload_sha
        path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        handle = CheckpointHandle(
            phase_index=phase_index,
            phase_name=phase_name,
            path=path,
            payload_sha256=payload_sha,
        )
        self._checkpoint_handles.append(handle)
        return handle

    def finalize(self) -> None:
        payload = {
            "schema_version": "formwork.hash_chain.v1",
            "run_id": self.run_id,
            "final_hash": self._prev_hash,
            "decision_count": self._sequence,
            "entries": self._chain,
            "checkpoint_hashes": [
                {
                    "phase_index": c.phase_index,
                    "phase_name": c.phase_name,
                    "path": str(c.path),
                    "payload_sha256": c.payload_sha256,
                }
                for c in self._checkpoint_handles
            ],
        }
        self.hash_chain_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
        )
