"""Data classes for scene input, flattened geometry and output solids."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import NamedTuple, Optional

import numpy as np

from .constants import CATEGORY_STEMS, DEFAULT_MESHING, GROUND_HUGGING


class Category(str, Enum):
    buildings = "buildings"
    trees = "trees"
    grasses = "grasses"
    waters = "waters"
    grounds = "grounds"
    roads = "roads"
    other = "other"

    @property
    def stem(self) -> str:
        return CATEGORY_STEMS[self.value]

    @property
    def ground_hugging(self) -> bool:
        return self.value in GROUND_HUGGING

    @classmethod
    def from_layer_name(cls, name: str) -> Optional["Category"]:
        """Match a layer name against the category keywords.

        ``other`` is a fallback bucket, never a keyword.
        """
        key = (name or "").strip().lower()
        if key == cls.other.value:
            return None
        try:
            return cls(key)
        except ValueError:
            return None


class ClassifyMode(str, Enum):
    all = "all"
    buildings_only = "buildings-only"


class ExportStatus(str, Enum):
    success = "success"
    cancel = "cancel"
    failure = "failure"
    nothing = "nothing"


# ── Scene input ─────────────────────────────────────────────────────────

@dataclass
class Layer:
    id: str
    name: str
    parent_id: Optional[str] = None
    user_strings: dict = field(default_factory=dict)
    full_path: Optional[str] = None


class Renderable:
    """Base class of the geometry payloads an object can carry."""
    kind = None


@dataclass
class MeshGeometry(Renderable):
    """Polygon mesh; faces are triangles or quads given as index tuples."""
    vertices: np.ndarray
    faces: list
    kind = "mesh"


@dataclass
class BrepGeometry(Renderable):
    """Boundary representation made of planar polygon faces.

    Each face is a list of (N, 3) loops: the outer boundary first, then holes.
    """
    faces: list
    kind = "brep"


@dataclass
class ExtrusionGeometry(Renderable):
    """A closed 2D profile in the XY plane extruded along +Z."""
    profile: list
    height: float
    base_z: float = 0.0
    kind = "extrusion"


@dataclass
class SurfaceGeometry(Renderable):
    """Bilinear patch grid defined by an (U, V, 3) array of control points."""
    control_points: np.ndarray
    kind = "surface"


@dataclass
class HostGeometry(Renderable):
    """Geometry owned by the host library (e.g. a ``rhino3dm`` Brep)."""
    kind: str
    payload: object = None


@dataclass
class InstanceReference(Renderable):
    definition_id: str
    xform: np.ndarray = field(default_factory=lambda: np.eye(4))
    kind = "instance"


@dataclass
class SceneObject:
    id: str
    geometry: Renderable
    layer_id: Optional[str] = None
    user_strings: dict = field(default_factory=dict)


@dataclass
class InstanceDefinition:
    id: str
    name: str = ""
    objects: list = field(default_factory=list)


# ── Pipeline values ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class GeometryNode:
    """One leaf renderable after flattening, placed in world space."""
    geometry: Renderable
    transform: np.ndarray
    source_id: str
    layer_id: Optional[str] = None
    properties: dict = field(default_factory=dict)
    category: Optional[Category] = None


@dataclass
class SolidGroup:
    """Merged mesh for one (category, source object) key."""
    category: Category
    source_id: str
    properties: dict = field(default_factory=dict)
    parts: list = field(default_factory=list)
    mesh: object = None
    name: Optional[str] = None

    @property
    def key(self):
        return (self.category, self.source_id)


class Facet(NamedTuple):
    normal: np.ndarray
    vertices: np.ndarray


_CAMEL_ALIASES = {
    'jaggedSeams': 'jagged_seams',
    'refineGrid': 'refine_grid',
    'simplePlanes': 'simple_planes',
    'minEdgeLength': 'min_edge_length',
    'maxEdgeLength': 'max_edge_length',
    'gridMinCount': 'grid_min_count',
    'gridMaxCount': 'grid_max_count',
    'relativeTolerance': 'relative_tolerance',
}


@dataclass(frozen=True)
class MeshingParameters:
    jagged_seams: bool = DEFAULT_MESHING['jagged_seams']
    refine_grid: bool = DEFAULT_MESHING['refine_grid']
    simple_planes: bool = DEFAULT_MESHING['simple_planes']
    min_edge_length: float = DEFAULT_MESHING['min_edge_length']
    max_edge_length: float = DEFAULT_MESHING['max_edge_length']
    grid_min_count: int = DEFAULT_MESHING['grid_min_count']
    grid_max_count: int = DEFAULT_MESHING['grid_max_count']
    tolerance: float = DEFAULT_MESHING['tolerance']
    relative_tolerance: float = DEFAULT_MESHING['relative_tolerance']

    @classmethod
    def from_mapping(cls, values: dict) -> "MeshingParameters":
        """Build from a dict using either camelCase or snake_case keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown meshing parameter: {key}")
            default = getattr(cls, name)
            if isinstance(default, bool):
                kwargs[name] = _to_bool(value)
            else:
                kwargs[name] = type(default)(value)
        return cls(**kwargs)


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)
