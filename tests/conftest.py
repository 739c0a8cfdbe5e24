import json

import numpy as np
import pytest

from citytwin.models import (InstanceDefinition, InstanceReference, Layer,
                             MeshGeometry, SceneObject)
from citytwin.scene import SceneDocument

# Outward-facing quads for a unit box, Z up.
BOX_QUADS = [
    (0, 3, 2, 1),  # bottom
    (4, 5, 6, 7),  # top
    (0, 1, 5, 4),  # -y
    (1, 2, 6, 5),  # +x
    (2, 3, 7, 6),  # +y
    (3, 0, 4, 7),  # -x
]


def box_vertices(z0, z1, x0=0.0, y0=0.0, size=1.0):
    x1, y1 = x0 + size, y0 + size
    return np.array([
        [x0, y0, z0], [x1, y0, z0], [x1, y1, z0], [x0, y1, z0],
        [x0, y0, z1], [x1, y0, z1], [x1, y1, z1], [x0, y1, z1],
    ], dtype=np.float64)


def box_mesh(z0, z1, **kwargs):
    return MeshGeometry(vertices=box_vertices(z0, z1, **kwargs), faces=list(BOX_QUADS))


def box_dict(z0, z1, **kwargs):
    return {"type": "mesh",
            "vertices": box_vertices(z0, z1, **kwargs).tolist(),
            "faces": [list(q) for q in BOX_QUADS]}


def make_document(layers=None, objects=None, definitions=None):
    return SceneDocument(layers or [], objects or [], definitions or [])


def layer_tree(*specs):
    """Layers from (id, name, parent_id) tuples."""
    return [Layer(id=i, name=n, parent_id=p) for i, n, p in specs]


@pytest.fixture
def box():
    return box_mesh


@pytest.fixture
def scene_file(tmp_path):
    """Write a JSON scene and return its path."""
    def _write(data, name="scene.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def nested_document():
    """City > Buildings > Block A, plus an unrelated Default layer."""
    layers = layer_tree(("city", "City", None),
                        ("bld", "Buildings", "city"),
                        ("blk", "Block A", "bld"),
                        ("dflt", "Default", None))
    leaf = SceneObject(id="leaf", geometry=box_mesh(0, 1), layer_id="blk")
    definitions = [InstanceDefinition(id="D1", name="house", objects=[leaf])]
    objects = [
        SceneObject(id="o1", geometry=box_mesh(2, 3), layer_id="blk"),
        SceneObject(id="o2", geometry=InstanceReference("D1", np.eye(4)), layer_id="bld"),
        SceneObject(id="o3", geometry=box_mesh(2, 3), layer_id="dflt"),
    ]
    return make_document(layers, objects, definitions)
