"""Tessellation adapter: turn any renderable into world-space triangle meshes.

Native renderables (mesh, planar brep, extrusion, control-grid surface) are
triangulated with trimesh/shapely.  ``rhino3dm`` payloads use the render
mesh cached in the file, falling back to sampling the underlying surface.
Every mesh leaving this module is triangles only.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import trimesh
from shapely.geometry import Polygon
from shapely.geometry.polygon import orient
from tqdm import tqdm

from .models import HostGeometry, MeshingParameters
from .xform import apply_to_points, flips_handedness, is_identity

logger = logging.getLogger(__name__)

_SUBDIVIDE_MAX_ITER = 16
# Cells per side of the measuring pass over a rhino3dm surface.
_COARSE_CELLS = 2


def triangulate_faces(faces) -> np.ndarray:
    """Split quads (a, b, c, d) into (a, b, c) and (a, c, d)."""
    triangles = []
    for face in faces:
        if len(face) == 3:
            triangles.append([face[0], face[1], face[2]])
        elif len(face) == 4:
            if face[2] == face[3]:
                triangles.append([face[0], face[1], face[2]])
            else:
                triangles.append([face[0], face[1], face[2]])
                triangles.append([face[0], face[2], face[3]])
    return np.array(triangles, dtype=np.int64).reshape(-1, 3)


def _make_mesh(vertices, faces) -> trimesh.Trimesh:
    # process=False keeps vertex order and duplicate seams intact
    return trimesh.Trimesh(vertices=np.asarray(vertices, dtype=np.float64).reshape(-1, 3),
                           faces=np.asarray(faces, dtype=np.int64).reshape(-1, 3),
                           process=False)


def _refine(mesh: trimesh.Trimesh, params: MeshingParameters) -> trimesh.Trimesh:
    """Subdivide until no edge is longer than ``max_edge_length``."""
    if not params.refine_grid or params.max_edge_length <= 0 or len(mesh.faces) == 0:
        return mesh
    try:
        v, f = trimesh.remesh.subdivide_to_size(mesh.vertices, mesh.faces,
                                                max_edge=params.max_edge_length,
                                                max_iter=_SUBDIVIDE_MAX_ITER)
    except ValueError as e:
        logger.debug(f"Refinement stopped early: {e}")
        return mesh
    return _make_mesh(v, f)


# ── Native renderables ──────────────────────────────────────────────────

def _mesh_geometry(geometry, params):
    vertices = np.asarray(geometry.vertices, dtype=np.float64).reshape(-1, 3)
    faces = triangulate_faces(geometry.faces)
    if len(faces):
        in_range = ((faces >= 0) & (faces < len(vertices))).all(axis=1)
        if not in_range.all():
            logger.warning(f"Dropping {int((~in_range).sum())} faces with "
                           f"out-of-range vertex indices")
            faces = faces[in_range]
    if len(faces) == 0:
        return []
    return [_make_mesh(vertices, faces)]


def _newell_normal(loop: np.ndarray) -> np.ndarray:
    nxt = np.roll(loop, -1, axis=0)
    normal = np.array([
        np.sum((loop[:, 1] - nxt[:, 1]) * (loop[:, 2] + nxt[:, 2])),
        np.sum((loop[:, 2] - nxt[:, 2]) * (loop[:, 0] + nxt[:, 0])),
        np.sum((loop[:, 0] - nxt[:, 0]) * (loop[:, 1] + nxt[:, 1])),
    ])
    length = np.linalg.norm(normal)
    return normal / length if length > 0 else normal


def _planar_face(loops):
    """Triangulate one planar face given as [outer, *holes] loops."""
    outer = np.asarray(loops[0], dtype=np.float64).reshape(-1, 3)
    if len(outer) > 1 and np.allclose(outer[0], outer[-1]):
        outer = outer[:-1]
    if len(outer) < 3:
        return None
    normal = _newell_normal(outer)
    if not np.any(normal):
        return None

    to_plane = trimesh.geometry.plane_transform(origin=outer[0], normal=normal)
    to_world = np.linalg.inv(to_plane)
    outer_2d = apply_to_points(to_plane, outer)[:, :2]
    holes_2d = [apply_to_points(to_plane, np.asarray(h, dtype=np.float64))[:, :2]
                for h in loops[1:]]
    polygon = orient(Polygon(outer_2d, holes_2d), sign=1.0)
    if polygon.is_empty or polygon.area <= 0:
        return None

    v2, faces = trimesh.creation.triangulate_polygon(polygon)
    if len(faces) == 0:
        return None
    v3 = apply_to_points(to_world, np.column_stack([v2, np.zeros(len(v2))]))
    mesh = _make_mesh(v3, faces)
    # Match the loop orientation of the input face
    flipped = mesh.face_normals @ normal < 0
    if flipped.any():
        faces = mesh.faces.copy()
        faces[flipped] = faces[flipped][:, ::-1]
        mesh = _make_mesh(v3, faces)
    return mesh


def _brep_geometry(geometry, params):
    parts = []
    for loops in geometry.faces:
        try:
            mesh = _planar_face(loops)
        except Exception as e:
            logger.warning(f"Brep face triangulation failed: {e}")
            continue
        if mesh is not None:
            parts.append(mesh)
    if not parts:
        return []
    mesh = trimesh.util.concatenate(parts) if len(parts) > 1 else parts[0]
    if not params.simple_planes:
        mesh = _refine(mesh, params)
    return [mesh]


def _extrusion_geometry(geometry, params):
    polygon = Polygon(geometry.profile)
    if not polygon.is_valid or polygon.area <= 0:
        polygon = polygon.buffer(0)
    if polygon.is_empty or geometry.height == 0:
        return []
    height = abs(geometry.height)
    base_z = geometry.base_z + min(geometry.height, 0.0)
    mesh = trimesh.creation.extrude_polygon(orient(polygon, sign=1.0), height=height)
    mesh.apply_translation([0.0, 0.0, base_z])
    mesh = _make_mesh(mesh.vertices, mesh.faces)
    if not params.simple_planes:
        mesh = _refine(mesh, params)
    return [mesh]


def _grid_counts(points: np.ndarray, params: MeshingParameters):
    """Cells along U and V for a control grid, honouring the meshing bounds."""
    rows, cols = points.shape[:2]
    len_u = max(np.linalg.norm(np.diff(points, axis=0), axis=2).sum(axis=0).max(), 0.0)
    len_v = max(np.linalg.norm(np.diff(points, axis=1), axis=2).sum(axis=1).max(), 0.0)

    nu, nv = max(rows - 1, 1), max(cols - 1, 1)
    if params.max_edge_length > 0:
        nu = max(nu, math.ceil(len_u / params.max_edge_length))
        nv = max(nv, math.ceil(len_v / params.max_edge_length))

    total = nu * nv
    if params.grid_min_count > 0 and total < params.grid_min_count:
        scale = math.sqrt(params.grid_min_count / total)
        nu, nv = math.ceil(nu * scale), math.ceil(nv * scale)
    elif params.grid_max_count > 0 and total > params.grid_max_count:
        scale = math.sqrt(params.grid_max_count / total)
        nu, nv = max(1, math.floor(nu * scale)), max(1, math.floor(nv * scale))
    if params.min_edge_length > 0:
        nu = min(nu, max(1, math.floor(len_u / params.min_edge_length)))
        nv = min(nv, max(1, math.floor(len_v / params.min_edge_length)))
    return nu, nv


def _bilinear(points: np.ndarray, s: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Evaluate the bilinear patch grid at parameters s (rows) and t (cols)."""
    rows, cols = points.shape[:2]
    i = np.clip(np.floor(s).astype(int), 0, rows - 2)
    j = np.clip(np.floor(t).astype(int), 0, cols - 2)
    fs = (s - i)[:, None]
    ft = (t - j)[:, None]
    p00 = points[i, j]
    p10 = points[i + 1, j]
    p01 = points[i, j + 1]
    p11 = points[i + 1, j + 1]
    return (p00 * (1 - fs) * (1 - ft) + p10 * fs * (1 - ft)
            + p01 * (1 - fs) * ft + p11 * fs * ft)


def grid_mesh(rows: int, cols: int, vertices: np.ndarray) -> trimesh.Trimesh:
    """Two triangles per cell of a row-major (rows x cols) vertex grid."""
    faces = []
    for r in range(rows - 1):
        for c in range(cols - 1):
            i00 = r * cols + c
            i01 = i00 + 1
            i10 = i00 + cols
            i11 = i10 + 1
            faces.append([i00, i10, i11])
            faces.append([i00, i11, i01])
    return _make_mesh(vertices, faces)


def _is_planar_grid(points: np.ndarray, tolerance: float = 0.0) -> bool:
    flat = points.reshape(-1, 3)
    centered = flat - flat.mean(axis=0)
    _, singular, vt = np.linalg.svd(centered, full_matrices=False)
    if tolerance > 0:
        return np.abs(centered @ vt[-1]).max() <= tolerance
    return singular[-1] <= 1e-9 * max(singular[0], 1.0)


def _surface_geometry(geometry, params):
    points = np.asarray(geometry.control_points, dtype=np.float64)
    if points.ndim != 3 or points.shape[0] < 2 or points.shape[1] < 2:
        logger.warning(f"Surface control grid has invalid shape {points.shape}")
        return []
    rows, cols = points.shape[:2]
    if params.simple_planes and _is_planar_grid(points, params.tolerance):
        return [grid_mesh(rows, cols, points.reshape(-1, 3))]

    nu, nv = _grid_counts(points, params)
    s = np.linspace(0.0, rows - 1, nu + 1)
    t = np.linspace(0.0, cols - 1, nv + 1)
    ss, tt = np.meshgrid(s, t, indexing='ij')
    vertices = _bilinear(points, ss.ravel(), tt.ravel())
    return [grid_mesh(nu + 1, nv + 1, vertices)]


# ── rhino3dm payloads ──────────────────────────────────────────────────

def _rhino_mesh(mesh):
    vertices = np.array([[mesh.Vertices[i].X, mesh.Vertices[i].Y, mesh.Vertices[i].Z]
                         for i in range(len(mesh.Vertices))], dtype=np.float64)
    faces = triangulate_faces([tuple(mesh.Faces[i]) for i in range(len(mesh.Faces))])
    if len(vertices) == 0 or len(faces) == 0:
        return None
    return _make_mesh(vertices, faces)


def _sample_rhino_surface(surface, params):
    """Grid-sample a rhino3dm surface when no render mesh is cached.

    A coarse pass measures the surface so the final grid follows the same
    meshing parameters as native surfaces.
    """
    u_dom = surface.Domain(0)
    v_dom = surface.Domain(1)

    def sample(nu, nv):
        us = np.linspace(u_dom.T0, u_dom.T1, nu + 1)
        vs = np.linspace(v_dom.T0, v_dom.T1, nv + 1)
        points = [[surface.PointAt(u, v) for v in vs] for u in us]
        return np.array([[[p.X, p.Y, p.Z] for p in row] for row in points],
                        dtype=np.float64)

    coarse = sample(_COARSE_CELLS, _COARSE_CELLS)
    nu, nv = _grid_counts(coarse, params)
    return grid_mesh(nu + 1, nv + 1, sample(nu, nv).reshape(-1, 3))


def _rhino_brep(brep, params):
    import rhino3dm

    parts = []
    for i in range(len(brep.Faces)):
        face = brep.Faces[i]
        mesh = face.GetMesh(rhino3dm.MeshType.Any)
        part = _rhino_mesh(mesh) if mesh is not None else None
        if part is None:
            surface = face.UnderlyingSurface()
            if surface is None:
                continue
            part = _sample_rhino_surface(surface, params)
        parts.append(part)
    return parts


def _host_geometry(geometry, params):
    import rhino3dm

    payload = geometry.payload
    if geometry.kind == "brep":
        return _rhino_brep(payload, params)
    if geometry.kind == "extrusion":
        mesh = payload.GetMesh(rhino3dm.MeshType.Any)
        if mesh is not None:
            part = _rhino_mesh(mesh)
            return [part] if part is not None else []
        brep = payload.ToBrep(True)
        return _rhino_brep(brep, params) if brep is not None else []
    if geometry.kind == "surface":
        brep = rhino3dm.Brep.CreateFromSurface(payload)
        if brep is not None:
            return _rhino_brep(brep, params)
        return [_sample_rhino_surface(payload, params)]
    logger.warning(f"Unsupported host geometry kind: {geometry.kind}")
    return []


_HANDLERS = {
    "mesh": _mesh_geometry,
    "brep": _brep_geometry,
    "extrusion": _extrusion_geometry,
    "surface": _surface_geometry,
}


def tessellate(geometry, params: MeshingParameters | None = None) -> list:
    """Local-space triangle meshes for *geometry* (possibly empty)."""
    params = params or MeshingParameters()
    if geometry is None:
        return []
    if isinstance(geometry, HostGeometry):
        meshes = _host_geometry(geometry, params)
    else:
        handler = _HANDLERS.get(geometry.kind)
        if handler is None:
            logger.warning(f"Cannot tessellate geometry of kind {geometry.kind!r}")
            return []
        meshes = handler(geometry, params)
    return [m for m in meshes if m is not None and len(m.faces) > 0]


def place_mesh(mesh: trimesh.Trimesh, matrix: np.ndarray) -> trimesh.Trimesh:
    """Copy of *mesh* moved by *matrix*; mirrored placements keep outward winding."""
    if is_identity(matrix):
        return _make_mesh(mesh.vertices.copy(), mesh.faces.copy())
    vertices = apply_to_points(matrix, mesh.vertices)
    faces = mesh.faces.copy()
    if flips_handedness(matrix):
        faces = faces[:, ::-1]
    return _make_mesh(vertices, faces)


def tessellate_node(node, params: MeshingParameters | None = None) -> list:
    """World-space triangle meshes for one GeometryNode."""
    return [place_mesh(m, node.transform) for m in tessellate(node.geometry, params)]


def tessellate_nodes(nodes, params: MeshingParameters | None = None,
                     workers: int = 1, show_progress: bool = False) -> list:
    """Tessellate every node; returns ``[(node, meshes), ...]`` in input order.

    With ``workers > 1`` the nodes are fanned out over a thread pool.
    ``Executor.map`` yields results in submission order, so the output is
    independent of scheduling.  A node that fails is logged and yields no
    meshes.
    """
    params = params or MeshingParameters()

    def _work(node):
        try:
            return tessellate_node(node, params)
        except Exception as e:
            logger.warning(f"Tessellation failed for object {node.source_id}: {e}")
            return []

    nodes = list(nodes)
    if workers > 1 and len(nodes) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(tqdm(executor.map(_work, nodes), total=len(nodes),
                                desc="Tessellating", disable=not show_progress))
    else:
        results = [_work(n) for n in tqdm(nodes, desc="Tessellating",
                                           disable=not show_progress)]
    return list(zip(nodes, results))
