"""Contact deduction: subtract neighbor overlap from a formwork candidate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import trimesh

from formwork.booleans import BooleanEngine, solid_volume
from formwork.errors import BooleanOperationError, FormworkError
from formwork.result import Err

logger = logging.getLogger(__name__)


class DeductionDecision(str, Enum):
    NO_NEIGHBORS = "no_neighbors"
    BELOW_THRESHOLD = "below_threshold"
    APPLIED = "applied"
    FULLY_COVERED = "fully_covered"
    FALLBACK = "fallback"


@dataclass
class DeductionOutcome:
    candidate: trimesh.Trimesh
    solid: Optional[trimesh.Trimesh]  # None when the face is fully in contact
    decision: DeductionDecision
    ratio: float
    threshold: float
    errors: List[FormworkError] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.decision in (DeductionDecision.APPLIED, DeductionDecision.FULLY_COVERED)


class ContactDeductionEngine:
    """Intersect a candidate with the neighbor aggregate and subtract on contact.

    The overlap is subtracted only when
    ``intersection.volume / candidate.volume > threshold``. A failed or
    degenerate boolean keeps the last valid solid.
    """

    def __init__(
        self,
        booleans: Optional[BooleanEngine] = None,
        volume_epsilon: float = 1e-6,
        full_coverage_ratio: float = 0.999,
    ):
        self.booleans = booleans or BooleanEngine()
        self.volume_epsilon = volume_epsilon
        self.full_coverage_ratio = full_coverage_ratio

    def contact_ratio(self, candidate: trimesh.Trimesh, aggregate: trimesh.Trimesh):
        """Return ``(ratio, error)``; the ratio is 0.0 when the intersection fails."""
        candidate_volume = solid_volume(candidate)
        if candidate_volume <= self.volume_epsilon:
            return 0.0, BooleanOperationError(
                "candidate has no volume", operation="intersection"
            )
        result = self.booleans.intersection(candidate, aggregate)
        if isinstance(result, Err):
            return 0.0, result.error
        ratio = solid_volume(result.value) / candidate_volume
        return min(max(ratio, 0.0), 1.0), None

    def deduct(
        self,
        candidate: trimesh.Trimesh,
        aggregate: Optional[trimesh.Trimesh],
        threshold: float,
    ) -> DeductionOutcome:
        if aggregate is None:
            return DeductionOutcome(
                candidate=candidate,
                solid=candidate,
                decision=DeductionDecision.NO_NEIGHBORS,
                ratio=0.0,
                threshold=threshold,
            )

        ratio, error = self.contact_ratio(candidate, aggregate)
        if error is not None:
            return self._fallback(candidate, threshold, 0.0, error)

        if not ratio > threshold:
            return DeductionOutcome(
                candidate=candidate,
                solid=candidate,
                decision=DeductionDecision.BELOW_THRESHOLD,
                ratio=ratio,
                threshold=threshold,
            )

        if ratio >= self.full_coverage_ratio:
            return DeductionOutcome(
                candidate=candidate,
                solid=None,
                decision=DeductionDecision.FULLY_COVERED,
                ratio=ratio,
                threshold=threshold,
            )

        result = self.booleans.difference(candidate, aggregate)
        if isinstance(result, Err):
            return self._fallback(candidate, threshold, ratio, result.error)
        remaining = result.value
        if solid_volume(remaining) <= self.volume_epsilon:
            return self._fallback(
                candidate,
                threshold,
                ratio,
                BooleanOperationError(
                    f"difference left no volume at contact ratio {ratio:.4f}",
                    operation="difference",
                ),
            )
        return DeductionOutcome(
            candidate=candidate,
            solid=remaining,
            decision=DeductionDecision.APPLIED,
            ratio=ratio,
            threshold=threshold,
        )

    def _fallback(
        self,
        candidate: trimesh.Trimesh,
        threshold: float,
        ratio: float,
        error: FormworkError,
    ) -> DeductionOutcome:
        logger.warning("Deduction fell back to the undeducted candidate: %s", error)
        return DeductionOutcome(
            candidate=candidate,
            solid=candidate,
            decision=DeductionDecision.FALLBACK,
            ratio=ratio,
            threshold=threshold,
            errors=[error],
        )
