"""Contracts for the formwork generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import trimesh

from geometry_primitives import Box3
from materials import DEFAULT_MATERIAL_KEY, DEFAULT_THICKNESS_MM, MATERIALS, ft_to_mm, mm_to_ft

FORMWORK_CATEGORY_LABEL = "Formwork"


class Category(str, Enum):
    """Structural category of a model element."""
    COLUMN = "Column"
    BEAM = "Beam"
    SLAB = "Slab"
    WALL = "Wall"
    FOUNDATION = "Foundation"
    STAIR = "Stair"
    OTHER = "Other"

    @classmethod
    def from_label(cls, label: str) -> "Category":
        for member in cls:
            if member.value.lower() == str(label).strip().lower():
                return member
        return cls.OTHER


STRUCTURAL_CATEGORIES: Tuple[Category, ...] = (
    Category.COLUMN,
    Category.BEAM,
    Category.SLAB,
    Category.WALL,
    Category.FOUNDATION,
    Category.STAIR,
)


class ExclusionFlag(str, Enum):
    ON_GRADE = "OnGrade"
    AGAINST_SOIL = "AgainstSoil"
    OVERRIDE = "Override"


class FaceOrientation(str, Enum):
    LATERAL = "lateral"
    BOTTOM = "bottom"
    TOP = "top"
    INCLINED_DOWN = "inclined_down"
    INCLINED_UP = "inclined_up"


class AreaMode(str, Enum):
    ALL_FACES = "all_faces"
    CONTACT_FACE = "contact_face"


class RunState(str, Enum):
    IDLE = "idle"
    COLLECT = "collect"
    INDEX = "index"
    PER_ELEMENT = "per_element"
    AGGREGATE = "aggregate"
    REPORT = "report"


class ElementStatus(str, Enum):
    OK = "ok"
    NO_GEOMETRY = "no_geometry"
    EXCLUDED = "excluded"
    FAILED = "failed"


@dataclass(frozen=True)
class FormworkConfig:
    """Configuration for a formwork analysis run.

    Lengths suffixed ``_mm`` are converted to native feet where they are used.
    """

    thickness_mm: float = DEFAULT_THICKNESS_MM
    material_key: str = DEFAULT_MATERIAL_KEY
    categories: Tuple[Category, ...] = STRUCTURAL_CATEGORIES
    exclude_foundation: bool = False
    precision_mode: bool = False  # restrict neighbor search to the pour zone

    # Neighbor search buffers, kept per context
    slab_column_buffer_mm: float = 3000.0
    general_buffer_ft: float = 5.0
    face_probe_buffer_mm: float = 3000.0

    volume_epsilon: float = 1e-6  # ft³
    full_coverage_ratio: float = 0.999
    area_mode: AreaMode = AreaMode.ALL_FACES
    system_name: str = "Formwork Area Analysis"

    def __post_init__(self):
        if not self.thickness_mm > 0:
            raise ValueError(f"thickness_mm must be positive, got {self.thickness_mm}")
        if not 0.0 < self.full_coverage_ratio <= 1.0:
            raise ValueError("full_coverage_ratio must be in (0, 1]")
        if self.material_key not in MATERIALS:
            raise ValueError(f"Unknown material key '{self.material_key}'")

    @property
    def thickness_ft(self) -> float:
        return mm_to_ft(self.thickness_mm)


def config_from_dict(payload: Mapping[str, object]) -> FormworkConfig:
    """Build a config from a JSON mapping; unknown keys are ignored."""
    known = {f.name for f in fields(FormworkConfig)}
    kwargs: Dict[str, object] = {}
    for key, value in payload.items():
        if key not in known:
            continue
        if key == "categories":
            value = tuple(Category.from_label(v) for v in value)  # type: ignore[union-attr]
        elif key == "area_mode":
            value = AreaMode(value)
        kwargs[key] = value
    return FormworkConfig(**kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True)
class StructuralElement:
    """Read-only snapshot of a host element, taken when the run starts.

    Solids are not copied into the snapshot; they are read once per run and
    cached by the analysis session.
    ``bounding_box`` is ``None`` when the host could not report one; such an
    element is carried to the summary but never indexed.
    """

    element_id: int
    category: Category
    bounding_box: Optional[Box3]
    name: str = ""
    level: str = ""
    pour_zone: Optional[str] = None
    phase: Optional[str] = None
    exclusion_flags: FrozenSet[ExclusionFlag] = frozenset()

    def has_flag(self, flag: ExclusionFlag) -> bool:
        return flag in self.exclusion_flags


@dataclass(frozen=True)
class NeighborSet:
    """Candidate neighbors of one host, found by box overlap."""

    host_id: int
    neighbor_ids: Tuple[int, ...]
    search_box: Box3
    expansion: float

    def __len__(self) -> int:
        return len(self.neighbor_ids)


@dataclass
class FormworkPiece:
    """One generated formwork solid covering one face of a host element."""

    host_id: int
    face_id: int
    category: Category
    orientation: FaceOrientation
    thickness_ft: float
    material_key: str
    gross_area_m2: float
    net_area_m2: float
    deduction_ratio: float
    deduction_applied: bool
    solid: trimesh.Trimesh
    face_key: Tuple = ()
    element_ref: Optional[int] = None  # model id once written back

    @property
    def thickness_mm(self) -> float:
        return ft_to_mm(self.thickness_ft)

    def validate(self) -> List[str]:
        """Check piece invariants. Returns a list of issues (empty = ok)."""
        issues = []
        if not self.thickness_ft > 0:
            issues.append(f"Non-positive thickness: {self.thickness_ft}")
        if self.net_area_m2 < 0 or self.gross_area_m2 < 0:
            issues.append("Negative area")
        if self.net_area_m2 > self.gross_area_m2 + 1e-9:
            issues.append(
                f"Net area {self.net_area_m2:.6f} exceeds gross {self.gross_area_m2:.6f}"
            )
        if not 0.0 <= self.deduction_ratio <= 1.0:
            issues.append(f"Deduction ratio out of range: {self.deduction_ratio}")
        return issues


@dataclass
class ElementRecord:
    """Per-element result row."""

    element_id: int
    name: str
    level: str
    category: Category
    status: ElementStatus
    piece_areas_m2: List[float] = field(default_factory=list)
    gross_area_m2: float = 0.0
    net_area_m2: float = 0.0
    concrete_volume_m3: float = 0.0
    neighbor_count: int = 0
    zone_key: str = ""

    @property
    def piece_count(self) -> int:
        return len(self.piece_areas_m2)


@dataclass
class CategoryTotals:
    category: Category
    element_count: int = 0
    piece_count: int = 0
    net_area_m2: float = 0.0
    concrete_volume_m3: float = 0.0

    @property
    def average_area_m2(self) -> float:
        if self.element_count == 0:
            return 0.0
        return self.net_area_m2 / self.element_count


@dataclass
class PourZoneGroup:
    """Elements cast together in one pour phase, with their totals."""

    zone_key: str
    zone_id: str
    phase: str
    member_ids: List[int] = field(default_factory=list)
    piece_count: int = 0
    net_area_m2: float = 0.0
    concrete_volume_m3: float = 0.0

    @property
    def element_count(self) -> int:
        return len(self.member_ids)


@dataclass(frozen=True)
class Diagnostic:
    """A recovered error recorded during a run."""

    element_id: Optional[int]
    stage: str
    error_type: str
    message: str


@dataclass
class FormworkRunResult:
    """In-memory result of a batch formwork run."""

    run_id: str
    analysis_time: str  # %Y-%m-%d %H:%M:%S
    config: FormworkConfig
    records: List[ElementRecord]
    pieces: List[FormworkPiece]
    category_totals: Dict[Category, CategoryTotals]
    zones: List[PourZoneGroup]
    success_count: int
    failure_count: int
    skipped_count: int
    deleted_prior_count: int
    diagnostics: List[Diagnostic] = field(default_factory=list)
    checkpoints: List[Path] = field(default_factory=list)
    counters: Dict[str, int] = field(default_factory=dict)

    @property
    def element_count(self) -> int:
        return len(self.records)

    @property
    def piece_count(self) -> int:
        return len(self.pieces)

    @property
    def written_piece_count(self) -> int:
        """Pieces that exist in the model after writeback."""
        return sum(1 for p in self.pieces if p.element_ref is not None)

    @property
    def net_area_m2(self) -> float:
        return float(sum(r.net_area_m2 for r in self.records))

    @property
    def gross_area_m2(self) -> float:
        return float(sum(r.gross_area_m2 for r in self.records))

    @property
    def concrete_volume_m3(self) -> float:
        return float(sum(r.concrete_volume_m3 for r in self.records))
