"""Pour-zone grouping of structural elements."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from formwork.contracts import PourZoneGroup, StructuralElement

DEFAULT_ZONE = "Default"


def zone_key(element: StructuralElement) -> str:
    """``"<zone>|<phase>"``; untagged elements fall in the default zone."""
    zone = (element.pour_zone or "").strip() or DEFAULT_ZONE
    phase = (element.phase or "").strip()
    return f"{zone}|{phase}"


class PourZoneGrouper:
    """Groups elements by pour zone and phase.

    In precision mode the grouper also restricts neighbor search to the
    members of an element's own zone.
    """

    def __init__(self, elements: Sequence[StructuralElement], precision_mode: bool = False):
        self.precision_mode = precision_mode
        self._groups: "OrderedDict[str, PourZoneGroup]" = OrderedDict()
        self._key_of: Dict[int, str] = {}
        for element in elements:
            key = zone_key(element)
            group = self._groups.get(key)
            if group is None:
                zone, phase = key.split("|", 1)
                group = PourZoneGroup(zone_key=key, zone_id=zone, phase=phase)
                self._groups[key] = group
            group.member_ids.append(element.element_id)
            self._key_of[element.element_id] = key

    @property
    def groups(self) -> List[PourZoneGroup]:
        return list(self._groups.values())

    def key_of(self, element_id: int) -> str:
        return self._key_of.get(element_id, f"{DEFAULT_ZONE}|")

    def group_of(self, element_id: int) -> Optional[PourZoneGroup]:
        return self._groups.get(self.key_of(element_id))

    def search_scope(self, element_id: int) -> Optional[List[int]]:
        """Member ids neighbor search may use, or None for the whole model."""
        if not self.precision_mode:
            return None
        group = self.group_of(element_id)
        return list(group.member_ids) if group is not None else []
