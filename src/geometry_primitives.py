"""
Core geometry types for formwork generation.

Built on Shapely for 2D polygon operations. Provides Box3 (axis-aligned
bounds used by the proximity index), PlanarFace (a coplanar face group
extracted from a solid), and conversions between 3D faces and their local
2D outlines.
"""
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

Vec3 = Tuple[float, float, float]


@dataclass(frozen=True)
class Box3:
    """Axis-aligned bounding box in native units."""
    min_pt: Vec3
    max_pt: Vec3

    @classmethod
    def from_bounds(cls, bounds) -> "Box3":
        """Build from a (2, 3) array as returned by ``trimesh.Trimesh.bounds``."""
        arr = np.asarray(bounds, dtype=float)
        return cls(
            min_pt=(float(arr[0][0]), float(arr[0][1]), float(arr[0][2])),
            max_pt=(float(arr[1][0]), float(arr[1][1]), float(arr[1][2])),
        )

    @classmethod
    def union_of(cls, boxes: Sequence["Box3"]) -> "Box3":
        if not boxes:
            raise ValueError("Cannot bound an empty box list")
        mins = np.min([b.min_pt for b in boxes], axis=0)
        maxs = np.max([b.max_pt for b in boxes], axis=0)
        return cls.from_bounds([mins, maxs])

    @property
    def center(self) -> np.ndarray:
        return (np.asarray(self.min_pt) + np.asarray(self.max_pt)) / 2.0

    @property
    def extents(self) -> np.ndarray:
        return np.asarray(self.max_pt) - np.asarray(self.min_pt)

    def expanded(self, distance: float) -> "Box3":
        d = float(distance)
        lo = np.asarray(self.min_pt) - d
        hi = np.asarray(self.max_pt) + d
        return Box3.from_bounds([lo, hi])

    def overlaps(self, other: "Box3") -> bool:
        """Closed-interval overlap; touching boxes count as overlapping."""
        a_lo, a_hi = np.asarray(self.min_pt), np.asarray(self.max_pt)
        b_lo, b_hi = np.asarray(other.min_pt), np.asarray(other.max_pt)
        return bool(np.all(a_lo <= b_hi) and np.all(b_lo <= a_hi))


@dataclass
class PlanarFace:
    """A group of coplanar triangles of one solid, with its 2D outline.

    The outline lives in the (basis_u, basis_v) frame; a 2D point (a, b)
    maps back to ``a * basis_u + b * basis_v + plane_offset * normal``.
    """
    face_id: int
    normal: np.ndarray              # (3,) unit outward normal
    plane_offset: float             # signed distance from origin (n . p = d)
    outline_2d: BaseGeometry        # Polygon or MultiPolygon, holes kept
    area: float                     # native units (ft²)
    centroid_3d: np.ndarray         # (3,) area-weighted centroid
    basis_u: np.ndarray
    basis_v: np.ndarray
    solid_index: int = 0
    triangle_indices: List[int] = field(default_factory=list)

    @property
    def origin_3d(self) -> np.ndarray:
        return self.normal * self.plane_offset

    def to_world(self, points_2d) -> np.ndarray:
        """Map local outline points back onto the face plane in 3D."""
        pts = np.asarray(points_2d, dtype=float).reshape(-1, 2)
        return (
            pts[:, :1] * self.basis_u
            + pts[:, 1:2] * self.basis_v
            + self.origin_3d
        )

    def world_bounds(self) -> Box3:
        """3D bounds of the face outline."""
        coords = []
        for poly in polygon_parts(self.outline_2d):
            coords.extend(poly.exterior.coords)
        if not coords:
            return Box3(tuple(self.centroid_3d), tuple(self.centroid_3d))
        pts = self.to_world(coords)
        return Box3.from_bounds([pts.min(axis=0), pts.max(axis=0)])


# ─── Conversion functions ────────────────────────────────────────────────────

def project_faces_to_2d_with_basis(
    mesh,
    face_indices: List[int],
    plane_normal: np.ndarray,
    plane_offset: float,
) -> Tuple[BaseGeometry, np.ndarray, np.ndarray, np.ndarray]:
    """Project mesh faces onto a plane and return the 2D region + basis vectors.

    Args:
        mesh: trimesh.Trimesh
        face_indices: indices of faces belonging to this face group
        plane_normal: unit normal of the plane
        plane_offset: signed distance from origin

    Returns:
        (region, u_axis, v_axis, origin_3d). The region keeps holes and every
        disconnected part, since formwork area must not be lost.
    """
    n = plane_normal / np.linalg.norm(plane_normal)
    u_axis, v_axis = make_2d_basis(n)

    origin_3d = n * plane_offset

    triangles_3d = mesh.vertices[mesh.faces[face_indices]]  # (N, 3, 3)
    uv = np.stack([triangles_3d @ u_axis, triangles_3d @ v_axis], axis=-1)

    polygons_2d = []
    for tri in uv:
        p = Polygon([(float(a), float(b)) for a, b in tri])
        if p.is_valid and p.area > 0:
            polygons_2d.append(p)

    if not polygons_2d:
        return Polygon(), u_axis, v_axis, origin_3d

    merged = unary_union(polygons_2d)
    if not merged.is_valid:
        merged = merged.buffer(0)
    return merged, u_axis, v_axis, origin_3d


def polygon_parts(region: BaseGeometry) -> List[Polygon]:
    """Split a region into its non-empty polygon parts."""
    if region is None or region.is_empty:
        return []
    if isinstance(region, Polygon):
        return [region]
    if isinstance(region, MultiPolygon):
        return [g for g in region.geoms if not g.is_empty]
    return [g for g in getattr(region, "geoms", []) if isinstance(g, Polygon) and not g.is_empty]


def boundary_loops(region: BaseGeometry) -> List[List[Tuple[float, float]]]:
    """Closed boundary loops of a 2D region: each exterior followed by its holes."""
    loops = []
    for poly in polygon_parts(region):
        loops.append([(float(x), float(y)) for x, y in poly.exterior.coords[:-1]])
        for interior in poly.interiors:
            loops.append([(float(x), float(y)) for x, y in interior.coords[:-1]])
    return loops


def region_from_loops(loops: Sequence[Sequence[Tuple[float, float]]]) -> BaseGeometry:
    """Rebuild a 2D region from closed loops by even-odd fill.

    Inverse of ``boundary_loops``: a loop inside another loop is a hole.
    """
    region: BaseGeometry = Polygon()
    for loop in loops:
        if len(loop) < 3:
            continue
        ring = Polygon(loop)
        if not ring.is_valid:
            ring = ring.buffer(0)
        region = region.symmetric_difference(ring)
    return region


def face_frame(face: PlanarFace) -> np.ndarray:
    """4x4 transform taking local (u, v, n) coordinates to world coordinates."""
    frame = np.eye(4)
    frame[:3, 0] = face.basis_u
    frame[:3, 1] = face.basis_v
    frame[:3, 2] = face.normal
    frame[:3, 3] = face.origin_3d
    return frame


# ─── Internal helpers ────────────────────────────────────────────────────────

def make_2d_basis(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Build an orthonormal (u, v) basis perpendicular to normal.

    The frame (u, v, normal) is right-handed.
    """
    n = normal / np.linalg.norm(normal)
    if abs(n[2]) < 0.9:
        ref = np.array([0.0, 0.0, 1.0])
    else:
        ref = np.array([1.0, 0.0, 0.0])
    u = np.cross(n, ref)
    u /= np.linalg.norm(u)
    v = np.cross(n, u)
    v /= np.linalg.norm(v)
    return u, v
