import numpy as np
import pytest
import trimesh
from shapely.geometry import Polygon, box as shapely_box

from citytwin.clip import (ClipStats, clip_mesh, clip_triangle, facet_normal,
                           plane_crossing, snap, triangle_area)


def _mesh(triangles):
    triangles = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
    vertices = triangles.reshape(-1, 3)
    faces = np.arange(len(vertices)).reshape(-1, 3)
    return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)


def _area(facets):
    return sum(triangle_area(f.vertices) for f in facets)


def test_triangle_above_plane_is_unchanged():
    tri = [[0, 1, 0], [1, 2, 0], [0, 3, 1]]
    facets = clip_mesh(_mesh([tri]))
    assert len(facets) == 1
    assert np.array_equal(facets[0].vertices, np.array(tri, dtype=float))
    expected = np.cross(np.subtract(tri[1], tri[0]), np.subtract(tri[2], tri[0]))
    expected = expected / np.linalg.norm(expected)
    assert np.allclose(facets[0].normal, expected)


def test_triangle_below_plane_is_discarded():
    stats = ClipStats()
    facets = clip_mesh(_mesh([[[0, -1, 0], [1, -2, 0], [0, -3, 1]]]), stats=stats)
    assert facets == []
    assert stats.discarded == 1


def test_triangle_lying_on_plane_is_kept():
    facets = clip_mesh(_mesh([[[0, 0, 0], [0, 0, 1], [1, 0, 0]]]))
    assert len(facets) == 1
    assert np.allclose(facets[0].normal, [0, 1, 0])


def test_one_vertex_above_gives_one_triangle():
    tri = np.array([[0, -1, 0], [2, 1, 0], [0, -1, 2]], dtype=float)
    pieces = clip_triangle(tri)
    assert len(pieces) == 1
    assert np.array_equal(pieces[0][0], tri[1])
    assert (pieces[0][:, 1] >= 0).all()


def test_two_vertices_above_gives_two_triangles():
    tri = np.array([[0, -1, 0], [2, 1, 0], [0, 1, 0]], dtype=float)
    facets = clip_mesh(_mesh([tri]))
    assert len(facets) == 2
    assert _area(facets) == pytest.approx(1.5)
    for f in facets:
        assert (f.vertices[:, 1] >= 0).all()
        assert np.allclose(f.normal, [0, 0, 1])


@pytest.mark.parametrize("below", [0, 1, 2])
def test_fan_starts_at_first_vertex_above(below):
    tri = np.array([[0, 1, 0], [1, 1, 0], [0.5, 2, 0]], dtype=float)
    tri[below, 1] = -1.0
    first_above = min(i for i in range(3) if i != below)
    pieces = clip_triangle(tri)
    assert len(pieces) == 2
    assert np.array_equal(pieces[0][0], tri[first_above])
    assert np.array_equal(pieces[1][0], tri[first_above])


def test_clipping_preserves_winding():
    tri = np.array([[0, -1, 0], [1, 1, 0], [-1, 1, 0]], dtype=float)
    original = facet_normal(*tri)
    for f in clip_mesh(_mesh([tri])):
        assert np.allclose(f.normal, original)


@pytest.mark.parametrize("seed", range(5))
def test_straddling_area_matches_portion_above_plane(seed):
    rng = np.random.default_rng(seed)
    for _ in range(20):
        xy = rng.uniform(-5, 5, size=(3, 2))
        poly = Polygon(xy)
        if poly.area < 1e-3:
            continue
        tri = np.column_stack([xy, np.zeros(3)])
        expected = poly.intersection(shapely_box(-10, 0, 10, 10)).area
        facets = clip_mesh(_mesh([tri]))
        assert _area(facets) == pytest.approx(expected, abs=1e-6)
        for f in facets:
            assert (f.vertices[:, 1] >= 0).all()


def test_coincident_vertices_yield_nothing():
    stats = ClipStats()
    facets = clip_mesh(_mesh([[[0, 1, 0], [0, 1, 0], [1, 2, 0]]]), stats=stats)
    assert facets == []
    assert stats.rejected == 1


def test_collinear_straddling_triangle_yields_nothing():
    facets = clip_mesh(_mesh([[[0, -1, 0], [1, 0, 0], [2, 1, 0]]]))
    assert facets == []


def test_non_finite_vertices_are_rejected():
    assert facet_normal([0, 0, 0], [np.nan, 1, 0], [1, 0, 0]) is None
    assert facet_normal([0, 0, 0], [np.inf, 1, 0], [1, 0, 0]) is None


def test_vertex_touching_plane_from_below_produces_no_sliver():
    # Only a single point reaches y = 0: zero area above the plane.
    facets = clip_mesh(_mesh([[[0, 0, 0], [1, -1, 0], [-1, -1, 0]]]))
    assert facets == []


def test_snap_pulls_near_plane_values_onto_plane():
    pts = snap(np.array([[0, 1e-9, 0], [0, -5e-9, 0], [0, 1e-3, 0]]))
    assert pts[0, 1] == 0.0
    assert pts[1, 1] == 0.0
    assert pts[2, 1] == 1e-3


def test_plane_crossing_falls_back_to_midpoint_for_flat_edge():
    p = plane_crossing(np.array([0.0, 1e-10, 0.0]), np.array([2.0, -1e-10, 4.0]))
    assert np.allclose(p, [1.0, 0.0, 2.0])


def test_custom_plane_height():
    tri = [[0, 4, 0], [1, 6, 0], [0, 6, 0]]
    facets = clip_mesh(_mesh([tri]), plane_y=5.0)
    assert facets
    for f in facets:
        assert (f.vertices[:, 1] >= 5.0).all()


def test_normals_are_unit_length():
    rng = np.random.default_rng(42)
    tris = rng.uniform(-3, 3, size=(50, 3, 3))
    for f in clip_mesh(_mesh(tris)):
        assert np.isfinite(f.normal).all()
        assert np.linalg.norm(f.normal) == pytest.approx(1.0)
