"""Run-scoped state passed explicitly through every formwork call."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

import trimesh

from formwork.audit import AuditTrail
from formwork.contracts import Diagnostic, FormworkConfig, RunState
from formwork.extraction import extract_element_faces, try_extract_solids
from formwork.model import HostModel
from formwork.result import Err, Result
from geometry_primitives import PlanarFace

logger = logging.getLogger(__name__)


class AnalysisSession:
    """Counters, diagnostics and caches for one analysis run.

    Element solids and faces are read from the model at most once per
    session. Aggregate solids are never cached here.
    """

    def __init__(
        self,
        model: HostModel,
        config: FormworkConfig,
        run_id: str = "session",
        audit: Optional[AuditTrail] = None,
    ):
        self.model = model
        self.config = config
        self.run_id = run_id
        self.audit = audit
        self.started_at = datetime.now()
        self.state = RunState.IDLE
        self.counters: Counter = Counter()
        self.diagnostics: List[Diagnostic] = []
        self._solids: Dict[int, Result] = {}
        self._faces: Dict[int, List[PlanarFace]] = {}
        self._cancel_requested = False

    # ─── State ───────────────────────────────────────────────────────────

    def enter(self, state: RunState) -> None:
        logger.info("Run %s: %s -> %s", self.run_id, self.state.value, state.value)
        self.state = state

    def request_cancel(self) -> None:
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    # ─── Bookkeeping ─────────────────────────────────────────────────────

    def count(self, key: str, amount: int = 1) -> None:
        self.counters[key] += amount

    def record_error(
        self,
        element_id: Optional[int],
        stage: str,
        error: BaseException,
    ) -> Diagnostic:
        """Log a recovered error and keep it in the diagnostics list."""
        diagnostic = Diagnostic(
            element_id=element_id,
            stage=stage,
            error_type=type(error).__name__,
            message=str(error),
        )
        self.diagnostics.append(diagnostic)
        self.counters[f"error.{diagnostic.error_type}"] += 1
        logger.warning(
            "Element %s [%s] %s: %s",
            element_id,
            stage,
            diagnostic.error_type,
            diagnostic.message,
        )
        return diagnostic

    def errors_of(self, error_type: type) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.error_type == error_type.__name__]

    # ─── Cached geometry ─────────────────────────────────────────────────

    def try_solids(self, element_id: int) -> Result:
        if element_id not in self._solids:
            result = try_extract_solids(
                self.model, element_id, self.config.volume_epsilon
            )
            if isinstance(result, Err):
                self.record_error(element_id, "extract", result.error)
            self._solids[element_id] = result
        return self._solids[element_id]

    def solids_for(self, element_id: int) -> List[trimesh.Trimesh]:
        result = self.try_solids(element_id)
        if isinstance(result, Err):
            return []
        return result.value

    def faces_for(self, element_id: int) -> List[PlanarFace]:
        if element_id not in self._faces:
            self._faces[element_id] = extract_element_faces(self.solids_for(element_id))
        return self._faces[element_id]

    # ─── Audit ───────────────────────────────────────────────────────────

    def decide(self, **kwargs) -> None:
        """Forward a decision to the audit trail, when one is attached."""
        if self.audit is not None:
            self.audit.append_decision(**kwargs)
