"""Per-element, per-category, per-zone and project totals."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from formwork.contracts import (
    Category,
    CategoryTotals,
    ElementRecord,
    ElementStatus,
    FormworkPiece,
    PourZoneGroup,
)
from formwork.zones import PourZoneGrouper


def format_area_formula(areas_m2: Sequence[float]) -> str:
    """``"3.120 + 2.480 = 5.600m²"``; a single piece is just ``"5.600m²"``."""
    if not areas_m2:
        return "0.000m²"
    total = sum(areas_m2)
    if len(areas_m2) == 1:
        return f"{total:.3f}m²"
    terms = " + ".join(f"{a:.3f}" for a in areas_m2)
    return f"{terms} = {total:.3f}m²"


class ResultAggregator:
    """Collects element records and pieces, then totals them."""

    def __init__(self, grouper: Optional[PourZoneGrouper] = None):
        self.grouper = grouper
        self.records: List[ElementRecord] = []
        self.pieces: List[FormworkPiece] = []

    def add(self, record: ElementRecord, pieces: Sequence[FormworkPiece] = ()) -> None:
        self.records.append(record)
        self.pieces.extend(pieces)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.records if r.status == ElementStatus.OK)

    @property
    def failure_count(self) -> int:
        return sum(
            1
            for r in self.records
            if r.status in (ElementStatus.FAILED, ElementStatus.NO_GEOMETRY)
        )

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.records if r.status == ElementStatus.EXCLUDED)

    def category_totals(self) -> Dict[Category, CategoryTotals]:
        totals: "OrderedDict[Category, CategoryTotals]" = OrderedDict()
        for record in sorted(self.records, key=lambda r: list(Category).index(r.category)):
            entry = totals.setdefault(record.category, CategoryTotals(category=record.category))
            entry.element_count += 1
            entry.piece_count += record.piece_count
            entry.net_area_m2 += record.net_area_m2
            entry.concrete_volume_m3 += record.concrete_volume_m3
        return dict(totals)

    def zone_totals(self) -> List[PourZoneGroup]:
        if self.grouper is None:
            return []
        zones = OrderedDict(
            (g.zone_key, replace(g, member_ids=list(g.member_ids), piece_count=0,
                                 net_area_m2=0.0, concrete_volume_m3=0.0))
            for g in self.grouper.groups
        )
        for record in self.records:
            zone = zones.get(record.zone_key)
            if zone is None:
                continue
            zone.piece_count += record.piece_count
            zone.net_area_m2 += record.net_area_m2
            zone.concrete_volume_m3 += record.concrete_volume_m3
        return list(zones.values())


def record_formula(record: ElementRecord) -> str:
    return format_area_formula(record.piece_areas_m2)


def sorted_detail_records(records: Sequence[ElementRecord]) -> List[ElementRecord]:
    """Detail-row order: level, then category, then name."""
    return sorted(records, key=lambda r: (r.level, r.category.value, r.name, r.element_id))
