"""Scene documents: layer table, object list and instance definitions.

Two loaders are provided.  ``.3dm`` files are read with ``rhino3dm``;
``.json`` files hold a host-free description of the same tables::

    {
      "layers": [{"id": "L1", "name": "Buildings", "parent": null,
                  "user_strings": {"height": "12"}}],
      "objects": [{"id": "o1", "layer": "L1", "user_strings": {},
                   "geometry": {"type": "mesh", "vertices": [...],
                                "faces": [...]}}],
      "definitions": [{"id": "D1", "name": "tree", "objects": [...]}]
    }

Geometry types are ``mesh``, ``brep``, ``extrusion``, ``surface`` and
``instance``.
"""

import json
import logging
import pathlib
from contextlib import contextmanager
from typing import Iterator, Optional

import numpy as np

from .errors import DocumentOpenError, UnknownDefinitionError
from .models import (BrepGeometry, ExtrusionGeometry, HostGeometry,
                     InstanceDefinition, InstanceReference, Layer,
                     MeshGeometry, SceneObject, SurfaceGeometry)
from .xform import as_matrix

logger = logging.getLogger(__name__)

_NIL_ID = "00000000-0000-0000-0000-000000000000"


class SceneDocument:
    """In-memory view of one opened input document."""

    def __init__(self, layers=None, objects=None, definitions=None,
                 source: Optional[str] = None):
        self.layers = {layer.id: layer for layer in (layers or [])}
        self.objects = list(objects or [])
        self.definitions = {d.id: d for d in (definitions or [])}
        self.source = source
        self.closed = False

    def layer(self, layer_id) -> Optional[Layer]:
        if layer_id is None:
            return None
        return self.layers.get(layer_id)

    def parent_of(self, layer: Layer) -> Optional[Layer]:
        return self.layer(layer.parent_id)

    def ancestors(self, layer_id) -> Iterator[Layer]:
        """Yield the layer itself, then each parent up to the root."""
        seen = set()
        current = self.layer(layer_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            yield current
            current = self.parent_of(current)

    def full_path(self, layer_id) -> str:
        layer = self.layer(layer_id)
        if layer is None:
            return "<no layer>"
        if layer.full_path:
            return layer.full_path
        names = [l.name for l in self.ancestors(layer_id)]
        return "::".join(reversed(names))

    def resolve_definition(self, definition_id) -> InstanceDefinition:
        try:
            return self.definitions[definition_id]
        except KeyError:
            raise UnknownDefinitionError(definition_id) from None

    def close(self):
        self.layers.clear()
        self.objects.clear()
        self.definitions.clear()
        self.closed = True

    def __repr__(self):
        return (f"SceneDocument(source={self.source!r}, layers={len(self.layers)}, "
                f"objects={len(self.objects)}, definitions={len(self.definitions)})")


@contextmanager
def open_document(path):
    """Open *path* for the duration of a ``with`` block.

    The document is closed on every exit path.  Raises DocumentOpenError
    if the file is missing or cannot be parsed.
    """
    path = pathlib.Path(path)
    if not path.is_file():
        raise DocumentOpenError(path, "file not found")

    suffix = path.suffix.lower()
    if suffix == ".3dm":
        doc = load_3dm(path)
    elif suffix == ".json":
        doc = load_json(path)
    else:
        raise DocumentOpenError(path, f"unsupported file type '{suffix}'")

    logger.info(f"Loaded model from: {path} ({len(doc.objects)} objects, "
                f"{len(doc.layers)} layers, {len(doc.definitions)} block definitions)")
    try:
        yield doc
    finally:
        doc.close()


# ── JSON scenes ─────────────────────────────────────────────────────────

def load_json(path) -> SceneDocument:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return document_from_dict(data, source=str(path))
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise DocumentOpenError(path, str(e)) from e


def document_from_dict(data: dict, source: Optional[str] = None) -> SceneDocument:
    layers = [
        Layer(id=str(item["id"]),
              name=str(item.get("name", "")),
              parent_id=_optional_id(item.get("parent")),
              user_strings=dict(item.get("user_strings", {})),
              full_path=item.get("full_path"))
        for item in data.get("layers", [])
    ]
    objects = [_object_from_dict(item) for item in data.get("objects", [])]
    definitions = [
        InstanceDefinition(id=str(item["id"]),
                           name=str(item.get("name", "")),
                           objects=[_object_from_dict(o) for o in item.get("objects", [])])
        for item in data.get("definitions", [])
    ]
    return SceneDocument(layers, objects, definitions, source=source)


def _optional_id(value):
    return None if value is None else str(value)


def _object_from_dict(item: dict) -> SceneObject:
    return SceneObject(id=str(item["id"]),
                       geometry=geometry_from_dict(item["geometry"]),
                       layer_id=_optional_id(item.get("layer")),
                       user_strings=dict(item.get("user_strings", {})))


def geometry_from_dict(data: dict):
    kind = data["type"]
    if kind == "mesh":
        return MeshGeometry(vertices=np.asarray(data["vertices"], dtype=np.float64),
                            faces=[tuple(int(i) for i in f) for f in data["faces"]])
    if kind == "brep":
        faces = []
        for face in data["faces"]:
            if isinstance(face, dict):
                loops = [face["outer"]] + list(face.get("holes", []))
            else:
                loops = [face]
            faces.append([np.asarray(loop, dtype=np.float64) for loop in loops])
        return BrepGeometry(faces=faces)
    if kind == "extrusion":
        return ExtrusionGeometry(profile=[tuple(p[:2]) for p in data["profile"]],
                                 height=float(data["height"]),
                                 base_z=float(data.get("base_z", 0.0)))
    if kind == "surface":
        return SurfaceGeometry(control_points=np.asarray(data["control_points"],
                                                         dtype=np.float64))
    if kind == "instance":
        return InstanceReference(definition_id=str(data["definition"]),
                                 xform=as_matrix(data.get("xform")))
    raise ValueError(f"Unknown geometry type: {kind}")


# ── Rhino .3dm files ────────────────────────────────────────────────────

def load_3dm(path) -> SceneDocument:
    try:
        import rhino3dm
    except ImportError as e:
        raise DocumentOpenError(path, "rhino3dm is required for .3dm files") from e

    try:
        model = rhino3dm.File3dm.Read(str(path))
    except Exception as e:
        raise DocumentOpenError(path, str(e)) from e
    if model is None:
        raise DocumentOpenError(path, "rhino3dm could not read the file")

    layers = []
    index_to_id = {}
    for index, layer in enumerate(model.Layers):
        layer_id = str(layer.Id)
        index_to_id[index] = layer_id
        parent = str(layer.ParentLayerId)
        layers.append(Layer(id=layer_id,
                            name=layer.Name or "",
                            parent_id=None if parent == _NIL_ID else parent,
                            user_strings=_user_strings(layer),
                            full_path=getattr(layer, "FullPath", None)))

    by_id = {}
    top_level = []
    for obj in model.Objects:
        attrs = obj.Attributes
        scene_obj = _convert_object(obj, index_to_id, rhino3dm)
        if scene_obj is None:
            continue
        by_id[str(attrs.Id)] = scene_obj
        if not getattr(attrs, "IsInstanceDefinitionObject", False):
            top_level.append(scene_obj)

    definitions = []
    for idef in model.InstanceDefinitions:
        members = [by_id[str(oid)] for oid in idef.GetObjectIds() if str(oid) in by_id]
        definitions.append(InstanceDefinition(id=str(idef.Id), name=idef.Name or "",
                                              objects=members))

    return SceneDocument(layers, top_level, definitions, source=str(path))


def _convert_object(obj, index_to_id, rhino3dm) -> Optional[SceneObject]:
    geometry = obj.Geometry
    if geometry is None:
        return None
    attrs = obj.Attributes
    renderable = _convert_geometry(geometry, rhino3dm)
    if renderable is None:
        logger.debug(f"Skipping unsupported geometry {type(geometry).__name__}")
        return None
    user_strings = _user_strings(attrs)
    user_strings.update(_user_strings(geometry))
    return SceneObject(id=str(attrs.Id),
                       geometry=renderable,
                       layer_id=index_to_id.get(attrs.LayerIndex),
                       user_strings=user_strings)


def _convert_geometry(geometry, rhino3dm):
    if isinstance(geometry, rhino3dm.InstanceReference):
        xf = geometry.Xform
        matrix = np.array([[getattr(xf, f"M{r}{c}") for c in range(4)]
                           for r in range(4)], dtype=np.float64)
        return InstanceReference(definition_id=str(geometry.ParentIdefId), xform=matrix)
    if isinstance(geometry, rhino3dm.Mesh):
        return _mesh_from_rhino(geometry)
    if isinstance(geometry, rhino3dm.Brep):
        return HostGeometry(kind="brep", payload=geometry)
    if isinstance(geometry, rhino3dm.Extrusion):
        return HostGeometry(kind="extrusion", payload=geometry)
    if isinstance(geometry, rhino3dm.Surface):
        return HostGeometry(kind="surface", payload=geometry)
    return None


def _mesh_from_rhino(mesh) -> MeshGeometry:
    vertices = np.array([[mesh.Vertices[i].X, mesh.Vertices[i].Y, mesh.Vertices[i].Z]
                         for i in range(len(mesh.Vertices))], dtype=np.float64)
    faces = []
    for i in range(len(mesh.Faces)):
        a, b, c, d = mesh.Faces[i]
        faces.append((a, b, c) if c == d else (a, b, c, d))
    return MeshGeometry(vertices=vertices.reshape(-1, 3), faces=faces)


def _user_strings(component) -> dict:
    """Key/value user text of a rhino3dm component as a plain dict."""
    getter = getattr(component, "GetUserStrings", None)
    if getter is None:
        return {}
    pairs = getter()
    if isinstance(pairs, dict):
        return {str(k): str(v) for k, v in pairs.items()}
    return {str(k): str(v) for k, v in (pairs or ())}
