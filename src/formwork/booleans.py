"""Result-returning wrappers around trimesh boolean operations."""

from __future__ import annotations

import logging
from typing import Optional

import trimesh

from formwork.errors import BooleanOperationError
from formwork.result import Err, Ok, Result

logger = logging.getLogger(__name__)


class BooleanEngine:
    """Pairwise union/intersection/difference that never raise.

    ``engine`` is passed to ``trimesh.boolean``; ``None`` lets trimesh pick
    its default backend (manifold3d).
    """

    def __init__(self, engine: Optional[str] = None):
        self.engine = engine

    def union(self, a: trimesh.Trimesh, b: trimesh.Trimesh) -> Result:
        return self._run("union", a, b)

    def intersection(self, a: trimesh.Trimesh, b: trimesh.Trimesh) -> Result:
        return self._run("intersection", a, b)

    def difference(self, a: trimesh.Trimesh, b: trimesh.Trimesh) -> Result:
        return self._run("difference", a, b)

    def _run(self, operation: str, a: trimesh.Trimesh, b: trimesh.Trimesh) -> Result:
        op = getattr(trimesh.boolean, operation)
        try:
            out = op([a, b], engine=self.engine)
        except Exception as exc:
            logger.debug("Boolean %s raised %s: %s", operation, type(exc).__name__, exc)
            return Err(
                BooleanOperationError(
                    f"{operation} failed: {type(exc).__name__}: {exc}",
                    operation=operation,
                )
            )
        if not isinstance(out, trimesh.Trimesh):
            return Err(
                BooleanOperationError(
                    f"{operation} returned {type(out).__name__}", operation=operation
                )
            )
        return Ok(out)


def solid_volume(mesh: Optional[trimesh.Trimesh]) -> float:
    """Volume of a boolean result; empty or missing meshes count as zero."""
    if mesh is None or mesh.is_empty:
        return 0.0
    return float(mesh.volume)
