"""Merge tessellated parts into one mesh per (category, source object).

Every mesh operation here returns a new Trimesh; the input is never edited.
"""

import logging
import math

import numpy as np
import trimesh

from .constants import (DEGENERATE_EPSILON, REORIENT_Z_UP_TO_Y_UP, WELD_DISTANCE,
                        WINDING_EPSILON)
from .models import Category, SolidGroup
from .xform import apply_to_points, translation

logger = logging.getLogger(__name__)


def _build(vertices, faces) -> trimesh.Trimesh:
    return trimesh.Trimesh(vertices=np.array(vertices, dtype=np.float64).reshape(-1, 3),
                           faces=np.array(faces, dtype=np.int64).reshape(-1, 3),
                           process=False)


def _copy(mesh: trimesh.Trimesh, vertices=None, faces=None) -> trimesh.Trimesh:
    return _build(mesh.vertices if vertices is None else vertices,
                  mesh.faces if faces is None else faces)


def concatenate(meshes) -> trimesh.Trimesh:
    """Append meshes into one, offsetting face indices as vertices grow."""
    vertices = []
    faces = []
    offset = 0
    for mesh in meshes:
        vertices.append(np.asarray(mesh.vertices, dtype=np.float64))
        faces.append(np.asarray(mesh.faces, dtype=np.int64) + offset)
        offset += len(mesh.vertices)
    if not vertices:
        return _build(np.zeros((0, 3)), np.zeros((0, 3)))
    return _build(np.vstack(vertices), np.vstack(faces))


def reorient(mesh: trimesh.Trimesh, matrix: np.ndarray = REORIENT_Z_UP_TO_Y_UP) -> trimesh.Trimesh:
    return _copy(mesh, vertices=apply_to_points(matrix, mesh.vertices))


def weld(mesh: trimesh.Trimesh, distance: float = WELD_DISTANCE) -> trimesh.Trimesh:
    """Merge vertices closer than *distance* (seams between sub-meshes)."""
    out = _copy(mesh)
    if len(out.vertices) == 0:
        return out
    digits = max(0, int(round(-math.log10(distance))))
    out.merge_vertices(merge_tex=True, merge_norm=True, digits_vertex=digits)
    return out


def _cross(mesh: trimesh.Trimesh) -> np.ndarray:
    tri = mesh.vertices[mesh.faces]
    return np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])


def compact(mesh: trimesh.Trimesh) -> trimesh.Trimesh:
    """Drop degenerate faces and vertices no face references."""
    out = _copy(mesh)
    if len(out.faces):
        cross = _cross(out)
        keep = np.einsum('ij,ij->i', cross, cross) > DEGENERATE_EPSILON
        if not keep.all():
            out.update_faces(keep)
    out.remove_unreferenced_vertices()
    return out


def unify_winding(mesh: trimesh.Trimesh) -> trimesh.Trimesh:
    """Make face winding consistent across each connected component."""
    out = _copy(mesh)
    if len(out.faces) > 1:
        trimesh.repair.fix_winding(out)
    return _copy(out)


def correct_winding(mesh: trimesh.Trimesh, needs_up: bool) -> trimesh.Trimesh:
    """Reverse every face whose normal points down (-Y).

    All swaps are decided from the normals of the input mesh; the returned
    mesh derives its normals afresh from the corrected faces. Walls whose
    vertical component is only rounding noise keep their winding.
    """
    if not needs_up or len(mesh.faces) == 0:
        return _copy(mesh)
    cross = _cross(mesh)
    down = cross[:, 1] < -WINDING_EPSILON * np.linalg.norm(cross, axis=1)
    faces = np.array(mesh.faces, dtype=np.int64)
    # swap the last two indices
    faces[down] = faces[down][:, [0, 2, 1]]
    return _copy(mesh, faces=faces)


def world_bounds(groups):
    """(min, max) corners over all group meshes, or None if there are none."""
    corners = [g.mesh.vertices for g in groups
               if g.mesh is not None and len(g.mesh.vertices)]
    if not corners:
        return None
    stacked = np.vstack(corners)
    return stacked.min(axis=0), stacked.max(axis=0)


def recenter(groups, horizontal_only: bool = True) -> np.ndarray:
    """Translate every group so the joint bounding box is centred at the origin.

    With *horizontal_only* the vertical (Y) axis is left untouched.
    Returns the applied offset.
    """
    bounds = world_bounds(groups)
    if bounds is None:
        return np.zeros(3)
    center = (bounds[0] + bounds[1]) / 2.0
    offset = -center
    if horizontal_only:
        offset[1] = 0.0
    shift = translation(*offset)
    for group in groups:
        if group.mesh is not None:
            group.mesh = _copy(group.mesh, vertices=apply_to_points(shift, group.mesh.vertices))
    logger.info(f"Recentred model by ({offset[0]:.3f}, {offset[1]:.3f}, {offset[2]:.3f})")
    return offset


class MeshAssembler:
    """Group tessellated nodes and finalize one mesh per group."""

    def __init__(self, reorient_matrix=REORIENT_Z_UP_TO_Y_UP,
                 horizontal_only: bool = True, weld_vertices: bool = True):
        self.reorient_matrix = reorient_matrix
        self.horizontal_only = horizontal_only
        self.weld_vertices = weld_vertices

    def group(self, tessellated) -> list:
        """Collect ``(node, meshes)`` pairs into SolidGroups.

        Groups come out in category enumeration order; within a category,
        in order of first appearance.
        """
        groups = {}
        for node, meshes in tessellated:
            key = (node.category, node.source_id)
            group = groups.get(key)
            if group is None:
                group = groups[key] = SolidGroup(category=node.category,
                                                 source_id=node.source_id,
                                                 properties=dict(node.properties))
            group.parts.extend(meshes)

        order = {c: i for i, c in enumerate(Category)}
        keys = sorted(groups, key=lambda k: order[k[0]])
        return [groups[k] for k in keys]

    def finalize(self, group: SolidGroup) -> SolidGroup:
        mesh = concatenate(group.parts)
        if self.reorient_matrix is not None:
            mesh = reorient(mesh, self.reorient_matrix)
        if self.weld_vertices:
            mesh = weld(mesh)
        mesh = compact(mesh)
        mesh = unify_winding(mesh)
        mesh = correct_winding(mesh, group.category.ground_hugging)
        group.mesh = mesh
        group.parts = []
        return group

    def assemble(self, tessellated) -> list:
        groups = [self.finalize(g) for g in self.group(tessellated)]
        groups = [g for g in groups if len(g.mesh.faces) > 0]
        recenter(groups, horizontal_only=self.horizontal_only)
        logger.info(f"Assembled {len(groups)} solid groups")
        return groups
