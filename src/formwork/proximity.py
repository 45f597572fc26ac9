"""Broad-phase neighbor search over element bounding boxes."""

from __future__ import annotations

import logging
from typing import Collection, Dict, List, Optional, Sequence

import numpy as np
from scipy.spatial import KDTree

from formwork.contracts import (
    STRUCTURAL_CATEGORIES,
    Category,
    FormworkConfig,
    NeighborSet,
    StructuralElement,
)
from geometry_primitives import Box3
from materials import mm_to_ft

logger = logging.getLogger(__name__)

# Host categories searched with the slab/column buffer; all others use the
# general buffer.
SLAB_COLUMN_HOSTS = frozenset({Category.COLUMN, Category.SLAB})


def search_buffer_ft(category: Category, config: FormworkConfig) -> float:
    if category in SLAB_COLUMN_HOSTS:
        return mm_to_ft(config.slab_column_buffer_mm)
    return float(config.general_buffer_ft)


def search_expansion_ft(category: Category, config: FormworkConfig) -> float:
    """Distance the host box is grown by: thickness plus the category buffer."""
    return config.thickness_ft + search_buffer_ft(category, config)


def face_probe_expansion_ft(config: FormworkConfig) -> float:
    return config.thickness_ft + mm_to_ft(config.face_probe_buffer_mm)


class ProximityIndex:
    """Bounding-box index over the structural elements of one run.

    A KD-tree over box centers gives a coarse radius query; every hit is then
    confirmed with an exact AABB overlap test. Contact itself is decided
    later by boolean intersection.
    """

    def __init__(
        self,
        elements: Sequence[StructuralElement],
        categories: Collection[Category] = STRUCTURAL_CATEGORIES,
    ):
        self._elements: List[StructuralElement] = [
            e
            for e in elements
            if e.category in categories and e.bounding_box is not None
        ]
        self._by_id: Dict[int, StructuralElement] = {
            e.element_id: e for e in self._elements
        }
        if self._elements:
            self._mins = np.array([e.bounding_box.min_pt for e in self._elements])
            self._maxs = np.array([e.bounding_box.max_pt for e in self._elements])
            half = (self._maxs - self._mins) / 2.0
            self._tree = KDTree(self._mins + half)
            self._max_half = half.max(axis=0)
        else:
            self._mins = np.zeros((0, 3))
            self._maxs = np.zeros((0, 3))
            self._tree = None
            self._max_half = np.zeros(3)
        logger.debug("Proximity index built over %d elements", len(self._elements))

    def __len__(self) -> int:
        return len(self._elements)

    def __contains__(self, element_id: int) -> bool:
        return element_id in self._by_id

    def get(self, element_id: int) -> Optional[StructuralElement]:
        return self._by_id.get(element_id)

    def query_box(self, box: Box3, exclude_id: Optional[int] = None) -> List[int]:
        """Ids of indexed elements whose boxes overlap ``box``, in index order."""
        if self._tree is None:
            return []
        center = box.center
        half = box.extents / 2.0
        radius = float(np.linalg.norm(half + self._max_half))
        hits = sorted(self._tree.query_ball_point(center, r=radius * (1.0 + 1e-9)))
        if not hits:
            return []
        hits = np.asarray(hits, dtype=int)
        lo = np.asarray(box.min_pt)
        hi = np.asarray(box.max_pt)
        mask = np.all(self._mins[hits] <= hi, axis=1) & np.all(self._maxs[hits] >= lo, axis=1)
        ids = [self._elements[i].element_id for i in hits[mask]]
        return [i for i in ids if i != exclude_id]

    def neighbors(
        self,
        host: StructuralElement,
        expansion: float,
        restrict_to: Optional[Collection[int]] = None,
    ) -> NeighborSet:
        """Candidate neighbors of ``host`` within ``expansion`` of its box.

        ``restrict_to`` limits hits to a set of member ids (same pour zone).
        """
        search_box = host.bounding_box.expanded(expansion)
        ids = self.query_box(search_box, exclude_id=host.element_id)
        if restrict_to is not None:
            allowed = set(restrict_to)
            ids = [i for i in ids if i in allowed]
        return NeighborSet(
            host_id=host.element_id,
            neighbor_ids=tuple(ids),
            search_box=search_box,
            expansion=float(expansion),
        )
