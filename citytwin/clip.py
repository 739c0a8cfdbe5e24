"""Clip triangle meshes against the horizontal datum plane y = plane_y.

Only the part of each triangle at or above the plane survives.  A triangle
straddling the plane becomes one triangle (one vertex above) or two
triangles fanned from the first vertex above in input order (two above).
Every emitted facet has finite coordinates, non-zero area and a unit normal
derived from its own vertices.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .constants import DEGENERATE_EPSILON, INTERPOLATION_EPSILON, PLANE_SNAP_EPSILON
from .models import Facet

logger = logging.getLogger(__name__)


@dataclass
class ClipStats:
    triangles: int = 0
    kept: int = 0
    discarded: int = 0
    split: int = 0
    rejected: int = 0

    def merge(self, other: "ClipStats"):
        self.triangles += other.triangles
        self.kept += other.kept
        self.discarded += other.discarded
        self.split += other.split
        self.rejected += other.rejected


def snap(points: np.ndarray, plane_y: float = 0.0) -> np.ndarray:
    """Copy of *points* with y values within PLANE_SNAP_EPSILON set to plane_y."""
    out = np.array(points, dtype=np.float64)
    near = np.abs(out[..., 1] - plane_y) <= PLANE_SNAP_EPSILON
    out[..., 1][near] = plane_y
    return out


def facet_normal(a, b, c):
    """Unit normal of triangle (a, b, c), or None if it fails the validity filter."""
    tri = np.array([a, b, c], dtype=np.float64)
    if not np.isfinite(tri).all():
        return None
    cross = np.cross(tri[1] - tri[0], tri[2] - tri[0])
    length_sq = float(cross @ cross)
    if not np.isfinite(length_sq) or length_sq <= DEGENERATE_EPSILON:
        return None
    return cross / np.sqrt(length_sq)


def plane_crossing(above: np.ndarray, below: np.ndarray, plane_y: float = 0.0) -> np.ndarray:
    """Point where segment above→below meets the plane."""
    dy = below[1] - above[1]
    if abs(dy) < INTERPOLATION_EPSILON:
        point = (above + below) / 2.0
    else:
        t = (plane_y - above[1]) / dy
        t = min(max(t, 0.0), 1.0)
        point = above + t * (below - above)
    point = np.array(point, dtype=np.float64)
    point[1] = plane_y
    return point


def clip_triangle(tri: np.ndarray, plane_y: float = 0.0) -> list:
    """Candidate triangles of *tri* at or above the plane (validity not yet checked).

    *tri* is a (3, 3) array of already snapped vertices.
    """
    above = [bool(tri[i, 1] >= plane_y) for i in range(3)]
    count = sum(above)
    if count == 0:
        return []
    if count == 3:
        return [tri]

    if count == 1:
        i = above.index(True)
        a, b, c = tri[i], tri[(i + 1) % 3], tri[(i + 2) % 3]
        return [np.array([a, plane_crossing(a, b, plane_y), plane_crossing(a, c, plane_y)])]

    # Two above: walk the quad in the input's cyclic order.
    k = above.index(False)
    a, b, c = tri[(k + 1) % 3], tri[(k + 2) % 3], tri[k]
    quad = [a, b, plane_crossing(b, c, plane_y), plane_crossing(a, c, plane_y)]
    # Fan from the first vertex above in input order.
    first = above.index(True)
    start = 0 if first == (k + 1) % 3 else 1
    p = quad[start:] + quad[:start]
    return [np.array([p[0], p[1], p[2]]), np.array([p[0], p[2], p[3]])]


def clip_mesh(mesh, plane_y: float = 0.0, stats: ClipStats | None = None) -> list:
    """Clip every face of *mesh*; returns a list of Facets in face order."""
    if stats is None:
        stats = ClipStats()
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    faces = np.asarray(mesh.faces, dtype=np.int64)
    if len(faces) == 0:
        return []

    triangles = snap(vertices[faces], plane_y)
    ys = triangles[:, :, 1]
    all_below = (ys < plane_y).all(axis=1)
    all_above = (ys >= plane_y).all(axis=1)

    facets = []
    for index, tri in enumerate(triangles):
        stats.triangles += 1
        if all_below[index]:
            stats.discarded += 1
            continue
        if all_above[index]:
            candidates = [tri]
            stats.kept += 1
        else:
            candidates = clip_triangle(tri, plane_y)
            stats.split += 1
        for candidate in candidates:
            normal = facet_normal(*candidate)
            if normal is None:
                stats.rejected += 1
                continue
            facets.append(Facet(normal=normal, vertices=candidate))
    return facets


def triangle_area(tri) -> float:
    tri = np.asarray(tri, dtype=np.float64)
    return float(np.linalg.norm(np.cross(tri[1] - tri[0], tri[2] - tri[0])) / 2.0)
