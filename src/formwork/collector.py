"""Structural element collection: the Collect state of a run."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from formwork.contracts import (
    STRUCTURAL_CATEGORIES,
    Category,
    ExclusionFlag,
    StructuralElement,
)
from formwork.errors import FormworkError, ModelUnavailableError
from formwork.model import HostModel
from formwork.session import AnalysisSession

logger = logging.getLogger(__name__)


def allowed_categories(
    categories: Optional[Sequence[Category]] = None,
    exclude_foundation: bool = False,
) -> List[Category]:
    allowed = list(categories) if categories is not None else list(STRUCTURAL_CATEGORIES)
    if exclude_foundation:
        allowed = [c for c in allowed if c != Category.FOUNDATION]
    return [c for c in allowed if c != Category.OTHER]


def _parse_flags(raw: Iterable[str]) -> frozenset:
    flags = set()
    for value in raw:
        try:
            flags.add(ExclusionFlag(value))
        except ValueError:
            logger.debug("Ignoring unknown exclusion flag %r", value)
    return frozenset(flags)


def collect_structural_elements(
    model: HostModel,
    categories: Optional[Sequence[Category]] = None,
    exclude_foundation: bool = False,
    session: Optional[AnalysisSession] = None,
) -> List[StructuralElement]:
    """Snapshot every element instance of the allowed categories.

    Type elements and duplicate ids are dropped. An element whose bounding
    box cannot be read is recorded and snapshotted without a box, so it still
    shows up in the run summary.
    """
    allowed = allowed_categories(categories, exclude_foundation)
    labels = [c.value for c in allowed]

    seen = set()
    snapshots: List[StructuralElement] = []
    for element_id in model.find_elements(labels):
        if element_id in seen:
            continue
        seen.add(element_id)

        element = model.get_element(element_id)
        if element.is_type:
            continue
        category = Category.from_label(element.category)
        if category not in allowed:
            continue
        try:
            box = model.get_bounding_box(element_id)
        except ModelUnavailableError:
            raise
        except FormworkError as exc:
            if session is not None:
                session.record_error(element_id, "collect", exc)
            else:
                logger.warning("No bounding box for element %d: %s", element_id, exc)
            box = None

        snapshots.append(
            StructuralElement(
                element_id=element_id,
                category=category,
                bounding_box=box,
                name=element.name,
                level=element.level,
                pour_zone=element.pour_zone,
                phase=element.phase,
                exclusion_flags=_parse_flags(element.flags),
            )
        )

    logger.info(
        "Collected %d structural elements (%s)",
        len(snapshots),
        ", ".join(labels),
    )
    return snapshots
