"""Incremental union of neighbor solids into one aggregate solid."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import trimesh

from formwork.booleans import BooleanEngine, solid_volume
from formwork.errors import BooleanOperationError
from formwork.result import Err

logger = logging.getLogger(__name__)


@dataclass
class UnionReport:
    """Outcome of one aggregate build."""

    solid: Optional[trimesh.Trimesh]
    used_indices: List[int] = field(default_factory=list)
    skipped_indices: List[int] = field(default_factory=list)
    volume_history: List[float] = field(default_factory=list)
    errors: List[BooleanOperationError] = field(default_factory=list)

    @property
    def volume(self) -> float:
        return solid_volume(self.solid)


class UnionSolidBuilder:
    """Union solids one at a time, skipping any that fail to merge.

    A pairwise union that raises, comes out empty, or shrinks the aggregate
    is treated as a failure of that input only: the previous aggregate is
    kept and the builder moves on.
    """

    def __init__(
        self,
        booleans: Optional[BooleanEngine] = None,
        volume_epsilon: float = 1e-6,
    ):
        self.booleans = booleans or BooleanEngine()
        self.volume_epsilon = volume_epsilon

    def build(self, solids: Sequence[trimesh.Trimesh]) -> UnionReport:
        report = UnionReport(solid=None)
        seed_index = None
        for index, solid in enumerate(solids):
            if solid_volume(solid) > self.volume_epsilon:
                seed_index = index
                break
            report.skipped_indices.append(index)
        if seed_index is None:
            return report

        aggregate = solids[seed_index]
        volume = solid_volume(aggregate)
        report.used_indices.append(seed_index)
        report.volume_history.append(volume)
        attempted = 0

        for index in range(seed_index + 1, len(solids)):
            attempted += 1
            result = self.booleans.union(aggregate, solids[index])
            if isinstance(result, Err):
                self._skip(report, index, result.error)
                continue
            merged = result.value
            merged_volume = solid_volume(merged)
            if merged_volume <= self.volume_epsilon:
                self._skip(
                    report,
                    index,
                    BooleanOperationError(
                        f"union with input {index} has no volume", operation="union"
                    ),
                )
                continue
            # Allow boolean round-off, reject real shrinkage.
            tolerance = max(self.volume_epsilon, 1e-9 * volume)
            if merged_volume + tolerance < max(volume, solid_volume(solids[index])):
                self._skip(
                    report,
                    index,
                    BooleanOperationError(
                        f"union with input {index} shrank the aggregate "
                        f"({volume:.6g} -> {merged_volume:.6g})",
                        operation="union",
                    ),
                )
                continue
            aggregate = merged
            volume = max(volume, merged_volume)
            report.used_indices.append(index)
            report.volume_history.append(volume)

        if attempted > 0 and len(report.used_indices) == 1:
            logger.warning("All %d unions failed; no aggregate solid", attempted)
            report.solid = None
            return report

        report.solid = aggregate
        return report

    def _skip(self, report: UnionReport, index: int, error: BooleanOperationError) -> None:
        logger.warning("Skipping neighbor solid %d: %s", index, error)
        report.skipped_indices.append(index)
        report.errors.append(error)
