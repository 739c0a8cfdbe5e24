import numpy as np
import pytest
import trimesh

from citytwin.assemble import (MeshAssembler, compact, concatenate, correct_winding,
                               recenter, reorient)
from citytwin.models import Category, GeometryNode, SolidGroup
from citytwin.tessellate import tessellate

from conftest import box_mesh


def _tri(vertices):
    return trimesh.Trimesh(vertices=np.array(vertices, dtype=float), faces=[[0, 1, 2]],
                           process=False)


def _node(category, source_id):
    return GeometryNode(geometry=None, transform=np.eye(4), source_id=source_id,
                        category=category)


def test_concatenate_offsets_face_indices():
    a = _tri([[0, 0, 0], [1, 0, 0], [0, 1, 0]])
    b = _tri([[5, 0, 0], [6, 0, 0], [5, 1, 0]])
    merged = concatenate([a, b])
    assert merged.faces.tolist() == [[0, 1, 2], [3, 4, 5]]
    assert np.array_equal(merged.vertices[3], [5, 0, 0])


def test_concatenate_nothing_is_empty():
    assert len(concatenate([]).faces) == 0


def test_reorient_maps_z_up_to_y_up():
    mesh = reorient(_tri([[1, 2, 3], [0, 0, 0], [0, 0, 1]]))
    assert np.allclose(mesh.vertices[0], [1, 3, -2])
    assert np.allclose(mesh.vertices[2], [0, 1, 0])


def test_compact_drops_degenerate_faces_and_orphans():
    mesh = trimesh.Trimesh(vertices=[[0, 0, 0], [1, 0, 0], [0, 1, 0], [2, 0, 0], [9, 9, 9]],
                           faces=[[0, 1, 2], [0, 1, 3]], process=False)
    out = compact(mesh)
    assert len(out.faces) == 1
    assert len(out.vertices) == 3
    assert len(mesh.faces) == 2


def test_correct_winding_flips_downward_faces():
    down = _tri([[0, 0, 0], [1, 0, 0], [0, 0, 1]])
    assert down.face_normals[0][1] < 0

    fixed = correct_winding(down, needs_up=True)
    assert fixed.faces.tolist() == [[0, 2, 1]]
    assert np.allclose(fixed.face_normals[0], [0, 1, 0])

    untouched = correct_winding(down, needs_up=False)
    assert untouched.faces.tolist() == [[0, 1, 2]]


def test_correct_winding_leaves_vertical_faces_alone():
    wall = _tri([[0, 0, 0], [1, 0, 0], [0, 1, 0]])
    assert correct_winding(wall, needs_up=True).faces.tolist() == [[0, 1, 2]]


def test_correct_winding_ignores_rounding_noise_on_walls():
    # cross product (0, -1e-15, 1): a wall with float noise in its normal
    wall = _tri([[0, 0, 0], [1, 0, 0], [0, 1, 1e-15]])
    assert correct_winding(wall, needs_up=True).faces.tolist() == [[0, 1, 2]]

    steep = _tri([[0, 0, 0], [1, 0, 0], [0, 1, 1e-6]])
    assert correct_winding(steep, needs_up=True).faces.tolist() == [[0, 2, 1]]


def test_recenter_shifts_only_horizontal_axes():
    group = SolidGroup(category=Category.buildings, source_id="a",
                       mesh=_tri([[2, 1, -6], [4, 3, -2], [2, 3, -2]]))
    offset = recenter([group])
    assert np.allclose(offset, [-3, 0, 4])
    assert np.allclose(group.mesh.bounds, [[-1, 1, -2], [1, 3, 2]])


def test_recenter_vertical_when_requested():
    group = SolidGroup(category=Category.buildings, source_id="a",
                       mesh=_tri([[2, 1, -6], [4, 3, -2], [2, 3, -2]]))
    recenter([group], horizontal_only=False)
    assert np.allclose(group.mesh.bounds, [[-1, -1, -2], [1, 1, 2]])


def test_recenter_uses_joint_bounds():
    left = SolidGroup(category=Category.buildings, source_id="a",
                      mesh=_tri([[0, 0, 0], [1, 0, 0], [0, 1, 0]]))
    right = SolidGroup(category=Category.roads, source_id="b",
                       mesh=_tri([[9, 0, 0], [10, 0, 0], [9, 1, 0]]))
    recenter([left, right])
    assert left.mesh.bounds[0][0] == pytest.approx(-5.0)
    assert right.mesh.bounds[1][0] == pytest.approx(5.0)


def test_groups_follow_category_order_then_first_appearance():
    part = _tri([[0, 0, 0], [1, 0, 0], [0, 1, 0]])
    tessellated = [
        (_node(Category.other, "a"), [part]),
        (_node(Category.buildings, "b"), [part]),
        (_node(Category.roads, "c"), [part]),
        (_node(Category.buildings, "d"), [part]),
        (_node(Category.buildings, "b"), [part]),
    ]
    groups = MeshAssembler().group(tessellated)
    assert [g.key for g in groups] == [
        (Category.buildings, "b"), (Category.buildings, "d"),
        (Category.roads, "c"), (Category.other, "a")]
    assert len(groups[0].parts) == 2


def test_finalize_welds_seams_between_parts():
    left = trimesh.Trimesh(vertices=[[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
                           faces=[[0, 1, 2], [0, 2, 3]], process=False)
    right = trimesh.Trimesh(vertices=[[1, 0, 0], [2, 0, 0], [2, 1, 0], [1, 1, 0]],
                            faces=[[0, 1, 2], [0, 2, 3]], process=False)
    group = SolidGroup(category=Category.buildings, source_id="a", parts=[left, right])
    out = MeshAssembler(reorient_matrix=None).finalize(group)
    assert len(out.mesh.vertices) == 6
    assert len(out.mesh.faces) == 4
    assert out.parts == []


@pytest.mark.parametrize("category,expected_sign", [
    (Category.grounds, 1.0),
    (Category.roads, 1.0),
    (Category.buildings, -1.0),
])
def test_ground_hugging_categories_face_up(category, expected_sign):
    # Faces down (-Z) before reorientation, -Y after.
    part = _tri([[0, 0, 0], [0, 1, 0], [1, 0, 0]])
    group = SolidGroup(category=category, source_id="g", parts=[part])
    out = MeshAssembler().finalize(group)
    assert np.sign(out.mesh.face_normals[0][1]) == expected_sign


def test_assemble_drops_empty_groups_and_recentres():
    box = tessellate(box_mesh(0, 1, x0=10.0, y0=10.0))
    tessellated = [
        (_node(Category.buildings, "box"), box),
        (_node(Category.trees, "empty"), []),
    ]
    groups = MeshAssembler().assemble(tessellated)
    assert [g.source_id for g in groups] == ["box"]
    bounds = groups[0].mesh.bounds
    assert np.allclose(bounds, [[-0.5, 0, -0.5], [0.5, 1, 0.5]])


def test_assembly_does_not_mutate_parts():
    part = _tri([[0, 0, 0], [0, 1, 0], [1, 0, 0]])
    before = part.vertices.copy()
    group = SolidGroup(category=Category.grounds, source_id="g", parts=[part])
    MeshAssembler().finalize(group)
    assert np.array_equal(part.vertices, before)
    assert part.faces.tolist() == [[0, 1, 2]]
