"""Host model interface and an in-memory implementation.

The engine only talks to the host through ``HostModel``. ``InMemoryModel``
is an arena of elements keyed by stable integer ids; it backs the CLI (via
``load_model_json``) and the tests.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

import numpy as np
import trimesh

from formwork.errors import (
    GeometryExtractionError,
    ModelUnavailableError,
    ParameterWriteError,
)
from geometry_primitives import Box3, PlanarFace, boundary_loops
from materials import MM_PER_FT

logger = logging.getLogger(__name__)

_STORAGE_TYPES = {
    "float": (float, int),
    "int": (int,),
    "str": (str,),
}


@dataclass
class GeometryInstance:
    """Instanced geometry: child solids placed by a 4x4 transform."""

    children: List[Union[trimesh.Trimesh, "GeometryInstance"]]
    transform: np.ndarray = field(default_factory=lambda: np.eye(4))


GeometryItem = Union[trimesh.Trimesh, GeometryInstance]


@dataclass(frozen=True)
class ParameterSlot:
    """A parameter definition bound to a category."""

    name: str
    storage: str  # "float" | "int" | "str"
    read_only: bool = False


@dataclass
class ModelElement:
    element_id: int
    name: str
    category: str
    level: str = ""
    pour_zone: Optional[str] = None
    phase: Optional[str] = None
    flags: List[str] = field(default_factory=list)
    is_type: bool = False
    geometry: List[GeometryItem] = field(default_factory=list)
    parameters: Dict[str, object] = field(default_factory=dict)


class HostModel(ABC):
    """Collaborator interface the formwork engine consumes."""

    @abstractmethod
    def ensure_available(self) -> None:
        """Raise ``ModelUnavailableError`` if the model cannot be used."""

    @abstractmethod
    def find_elements(self, categories: Optional[Iterable[str]] = None) -> List[int]:
        ...

    @abstractmethod
    def get_element(self, element_id: int) -> ModelElement:
        ...

    @abstractmethod
    def get_solids(self, element_id: int) -> List[GeometryItem]:
        ...

    @abstractmethod
    def get_bounding_box(self, element_id: int) -> Box3:
        ...

    def get_boundary_curve_loops(self, face: PlanarFace) -> List[List[tuple]]:
        return boundary_loops(face.outline_2d)

    @abstractmethod
    def bind_parameters(self, category: str, slots: Sequence[ParameterSlot]) -> None:
        ...

    @abstractmethod
    def create_geometry_element(
        self, solids: Sequence[trimesh.Trimesh], category: str
    ) -> int:
        ...

    @abstractmethod
    def set_parameter(self, element_id: int, name: str, value: object) -> None:
        ...

    @abstractmethod
    def get_parameter(self, element_id: int, name: str) -> object:
        ...

    @abstractmethod
    def delete_elements(self, element_ids: Iterable[int]) -> int:
        ...

    @abstractmethod
    def transaction(self, name: str):
        """Context manager: commit on success, roll back on exception."""


class InMemoryModel(HostModel):
    """Arena-backed host model. Ids are assigned sequentially and never reused."""

    def __init__(self, name: str = "model"):
        self.name = name
        self._elements: Dict[int, ModelElement] = {}
        self._bindings: Dict[str, Dict[str, ParameterSlot]] = {}
        self._next_id = 1
        self._available = True
        self._journal: Optional[List[tuple]] = None

    # ─── Arena ───────────────────────────────────────────────────────────

    def add_element(
        self,
        name: str,
        category: str,
        geometry: Sequence[GeometryItem] = (),
        *,
        element_id: Optional[int] = None,
        level: str = "",
        pour_zone: Optional[str] = None,
        phase: Optional[str] = None,
        flags: Iterable[str] = (),
        is_type: bool = False,
    ) -> int:
        if element_id is None:
            element_id = self._next_id
        if element_id in self._elements:
            raise ValueError(f"Duplicate element id {element_id}")
        self._next_id = max(self._next_id, element_id + 1)
        self._elements[element_id] = ModelElement(
            element_id=element_id,
            name=name,
            category=category,
            level=level,
            pour_zone=pour_zone,
            phase=phase,
            flags=list(flags),
            is_type=is_type,
            geometry=list(geometry),
        )
        self._record(("create", element_id))
        return element_id

    def close(self) -> None:
        self._available = False

    def __len__(self) -> int:
        return len(self._elements)

    # ─── HostModel ───────────────────────────────────────────────────────

    def ensure_available(self) -> None:
        if not self._available:
            raise ModelUnavailableError(f"Model '{self.name}' is not available")

    def find_elements(self, categories: Optional[Iterable[str]] = None) -> List[int]:
        wanted = None if categories is None else {c.lower() for c in categories}
        return [
            eid
            for eid, element in sorted(self._elements.items())
            if wanted is None or element.category.lower() in wanted
        ]

    def get_element(self, element_id: int) -> ModelElement:
        try:
            return self._elements[element_id]
        except KeyError:
            raise GeometryExtractionError(
                f"Unknown element {element_id}", element_id=element_id
            ) from None

    def get_solids(self, element_id: int) -> List[GeometryItem]:
        return list(self.get_element(element_id).geometry)

    def get_bounding_box(self, element_id: int) -> Box3:
        boxes = [_item_bounds(item) for item in self.get_solids(element_id)]
        boxes = [b for b in boxes if b is not None]
        if not boxes:
            raise GeometryExtractionError(
                f"Element {element_id} has no geometry", element_id=element_id
            )
        return Box3.union_of(boxes)

    def bind_parameters(self, category: str, slots: Sequence[ParameterSlot]) -> None:
        bound = self._bindings.setdefault(category.lower(), {})
        for slot in slots:
            bound.setdefault(slot.name, slot)

    def create_geometry_element(
        self, solids: Sequence[trimesh.Trimesh], category: str
    ) -> int:
        if not solids:
            raise GeometryExtractionError("Cannot create an element without solids")
        element_id = self.add_element(
            name=f"{category}-{self._next_id}",
            category=category,
            geometry=[s.copy() for s in solids],
        )
        return element_id

    def set_parameter(self, element_id: int, name: str, value: object) -> None:
        element = self.get_element(element_id)
        slot = self._bindings.get(element.category.lower(), {}).get(name)
        if slot is None:
            raise ParameterWriteError(
                f"Parameter '{name}' not found on element {element_id}",
                element_id=element_id,
                parameter=name,
            )
        if slot.read_only:
            raise ParameterWriteError(
                f"Parameter '{name}' is read-only",
                element_id=element_id,
                parameter=name,
            )
        accepted = _STORAGE_TYPES.get(slot.storage, ())
        if isinstance(value, bool) or not isinstance(value, accepted):
            raise ParameterWriteError(
                f"Parameter '{name}' stores {slot.storage}, got {type(value).__name__}",
                element_id=element_id,
                parameter=name,
            )
        self._record(("param", element_id, name, element.parameters.get(name, _MISSING)))
        element.parameters[name] = value

    def get_parameter(self, element_id: int, name: str) -> object:
        return self.get_element(element_id).parameters.get(name)

    def delete_elements(self, element_ids: Iterable[int]) -> int:
        deleted = 0
        for element_id in list(element_ids):
            element = self._elements.pop(element_id, None)
            if element is None:
                continue
            self._record(("delete", element))
            deleted += 1
        return deleted

    @contextmanager
    def transaction(self, name: str) -> Iterator[None]:
        if self._journal is not None:
            # Nested scopes join the outer transaction.
            yield
            return
        self.ensure_available()
        self._journal = []
        try:
            yield
        except BaseException:
            journal, self._journal = self._journal, None
            self._rollback(journal)
            logger.warning("Transaction '%s' rolled back (%d changes)", name, len(journal))
            raise
        else:
            logger.debug("Transaction '%s' committed (%d changes)", name, len(self._journal))
            self._journal = None

    # ─── Internal ────────────────────────────────────────────────────────

    def _record(self, entry: tuple) -> None:
        if self._journal is not None:
            self._journal.append(entry)

    def _rollback(self, journal: List[tuple]) -> None:
        for entry in reversed(journal):
            kind = entry[0]
            if kind == "create":
                self._elements.pop(entry[1], None)
            elif kind == "delete":
                element = entry[1]
                self._elements[element.element_id] = element
            elif kind == "param":
                _, element_id, param_name, previous = entry
                element = self._elements.get(element_id)
                if element is None:
                    continue
                if previous is _MISSING:
                    element.parameters.pop(param_name, None)
                else:
                    element.parameters[param_name] = previous


_MISSING = object()


def _item_bounds(item: GeometryItem) -> Optional[Box3]:
    if isinstance(item, GeometryInstance):
        child_boxes = []
        for child in item.children:
            if isinstance(child, trimesh.Trimesh) and len(child.vertices):
                placed = child.copy()
                placed.apply_transform(item.transform)
                child_boxes.append(Box3.from_bounds(placed.bounds))
        return Box3.union_of(child_boxes) if child_boxes else None
    if isinstance(item, trimesh.Trimesh) and len(item.vertices):
        return Box3.from_bounds(item.bounds)
    return None


# ─── JSON loader ─────────────────────────────────────────────────────────────

def _box_mesh(bounds: Dict[str, Sequence[float]]) -> trimesh.Trimesh:
    lo = np.asarray(bounds["min"], dtype=float)
    hi = np.asarray(bounds["max"], dtype=float)
    if np.any(hi <= lo):
        raise ValueError(f"Invalid box bounds: {bounds}")
    mesh = trimesh.creation.box(extents=hi - lo)
    mesh.apply_translation((lo + hi) / 2.0)
    return mesh


def _load_mesh(path: Path) -> trimesh.Trimesh:
    loaded = trimesh.load(str(path), force="mesh")
    if not isinstance(loaded, trimesh.Trimesh):
        raise ValueError(f"Could not load a mesh from {path}")
    return loaded


def _geometry_from_item(item: Dict[str, object], base_dir: Path, scale: float) -> List[GeometryItem]:
    geometry: List[GeometryItem] = []
    for box in item.get("boxes", []) or []:
        mesh = _box_mesh(box)  # type: ignore[arg-type]
        mesh.apply_scale(scale)
        geometry.append(mesh)
    mesh_ref = item.get("mesh")
    if mesh_ref:
        mesh = _load_mesh(base_dir / str(mesh_ref))
        mesh.apply_scale(scale)
        geometry.append(mesh)
    for instance in item.get("instances", []) or []:
        transform = np.asarray(instance.get("transform", np.eye(4)), dtype=float)
        transform = transform.copy()
        transform[:3, 3] *= scale
        children = []
        for box in instance.get("boxes", []) or []:
            child = _box_mesh(box)
            child.apply_scale(scale)
            children.append(child)
        geometry.append(GeometryInstance(children=children, transform=transform))
    return geometry


def load_model_json(path: str | Path) -> InMemoryModel:
    """Build an ``InMemoryModel`` from a JSON model description."""
    model_path = Path(path)
    payload = json.loads(model_path.read_text(encoding="utf-8"))
    units = str(payload.get("units", "ft")).lower()
    if units not in ("ft", "mm"):
        raise ValueError(f"Unsupported units '{units}' (expected 'ft' or 'mm')")
    scale = 1.0 if units == "ft" else 1.0 / MM_PER_FT

    raw_elements = payload.get("elements", [])
    if not isinstance(raw_elements, list):
        raise ValueError("model file must contain an 'elements' list")

    model = InMemoryModel(name=str(payload.get("name", model_path.stem)))
    for item in raw_elements:
        if not isinstance(item, dict):
            continue
        geometry = _geometry_from_item(item, model_path.parent, scale)
        model.add_element(
            name=str(item.get("name", "")),
            category=str(item.get("category", "Other")),
            geometry=geometry,
            element_id=int(item["id"]) if "id" in item else None,
            level=str(item.get("level", "")),
            pour_zone=item.get("pour_zone"),
            phase=item.get("phase"),
            flags=[str(f) for f in item.get("flags", [])],
            is_type=bool(item.get("is_type", False)),
        )
    logger.info("Loaded model '%s': %d elements", model.name, len(model))
    return model
