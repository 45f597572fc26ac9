"""
Shared test fixtures for formwork generation tests.

All geometry is in feet, the native model unit.
"""
import sys
import warnings
from pathlib import Path

# Suppress trimesh internal RuntimeWarning for degenerate cross-sections.
warnings.filterwarnings(
    "ignore",
    message="invalid value encountered in divide",
    category=RuntimeWarning,
    module=r"trimesh\.triangles",
)

import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from formwork.contracts import Category, ExclusionFlag, StructuralElement
from formwork.model import InMemoryModel
from geometry_primitives import Box3


def box_between(lo, hi) -> trimesh.Trimesh:
    """Axis-aligned box mesh spanning ``lo`` to ``hi`` (feet)."""
    extents = [h - l for l, h in zip(lo, hi)]
    mesh = trimesh.creation.box(extents=extents)
    mesh.apply_translation([(l + h) / 2.0 for l, h in zip(lo, hi)])
    return mesh


def snapshot(element_id, category, mesh, flags=(), **kwargs) -> StructuralElement:
    """StructuralElement snapshot of a mesh, without going through a model."""
    return StructuralElement(
        element_id=element_id,
        category=category,
        bounding_box=Box3.from_bounds(mesh.bounds),
        exclusion_flags=frozenset(ExclusionFlag(f) for f in flags),
        **kwargs,
    )


@pytest.fixture
def column_mesh():
    """A 1x1 ft column, 10 ft tall, standing on z=0."""
    return box_between((0.0, 0.0, 0.0), (1.0, 1.0, 10.0))


@pytest.fixture
def slab_mesh():
    """A 20x20 ft slab, 1 ft thick, at z=10..11."""
    return box_between((-10.0, -10.0, 10.0), (10.0, 10.0, 11.0))


@pytest.fixture
def isolated_column_model(column_mesh):
    model = InMemoryModel(name="isolated_column")
    model.add_element("C1", "Column", [column_mesh], level="L1")
    return model


@pytest.fixture
def beam_column_model():
    """A 20 ft beam passing through a 2x2 ft column at mid-span.

    Beam: x 0..20, y 0..1, z 9..10. Column: x 9..11, y -0.5..1.5, z 0..10.
    """
    model = InMemoryModel(name="beam_column")
    model.add_element(
        "B1",
        "Beam",
        [box_between((0.0, 0.0, 9.0), (20.0, 1.0, 10.0))],
        element_id=1,
        level="L1",
        pour_zone="A",
    )
    model.add_element(
        "C1",
        "Column",
        [box_between((9.0, -0.5, 0.0), (11.0, 1.5, 10.0))],
        element_id=2,
        level="L1",
        pour_zone="B",
    )
    return model


@pytest.fixture
def frame_model():
    """Small frame: two columns, a beam, a slab, a wall and a foundation."""
    model = InMemoryModel(name="frame")
    model.add_element(
        "F1", "Foundation", [box_between((-1.0, -1.0, -2.0), (12.0, 2.0, 0.0))],
        level="L0", flags=["AgainstSoil"],
    )
    model.add_element("C1", "Column", [box_between((0.0, 0.0, 0.0), (1.0, 1.0, 10.0))], level="L1")
    model.add_element("C2", "Column", [box_between((10.0, 0.0, 0.0), (11.0, 1.0, 10.0))], level="L1")
    model.add_element("B1", "Beam", [box_between((0.0, 0.0, 9.0), (11.0, 1.0, 10.0))], level="L1")
    model.add_element("S1", "Slab", [box_between((-2.0, -2.0, 10.0), (13.0, 13.0, 11.0))], level="L2")
    model.add_element("W1", "Wall", [box_between((0.0, 12.0, 0.0), (11.0, 12.5, 10.0))], level="L1")
    model.add_element("Type", "Column", [box_between((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))], is_type=True)
    return model


def category_of(result, category: Category):
    return [r for r in result.records if r.category == category]
