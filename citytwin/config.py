"""Export settings, with overrides from CITYTWIN_* environment variables."""

import os
import pathlib
from dataclasses import dataclass, field, replace
from typing import Optional

from dotenv import load_dotenv

from .models import ClassifyMode, MeshingParameters

# Load environment variables
load_dotenv()

_TRUTHY = ("1", "true", "yes")

_MESHING_ENV = {
    'CITYTWIN_JAGGED_SEAMS': 'jagged_seams',
    'CITYTWIN_REFINE_GRID': 'refine_grid',
    'CITYTWIN_SIMPLE_PLANES': 'simple_planes',
    'CITYTWIN_MIN_EDGE_LENGTH': 'min_edge_length',
    'CITYTWIN_MAX_EDGE_LENGTH': 'max_edge_length',
    'CITYTWIN_GRID_MIN_COUNT': 'grid_min_count',
    'CITYTWIN_GRID_MAX_COUNT': 'grid_max_count',
    'CITYTWIN_TOLERANCE': 'tolerance',
    'CITYTWIN_RELATIVE_TOLERANCE': 'relative_tolerance',
}


def env_flag(name: str, default: bool = False, environ=None) -> bool:
    environ = os.environ if environ is None else environ
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class ExportConfig:
    mode: ClassifyMode = ClassifyMode.all
    other_as_building: bool = False
    meshing: MeshingParameters = field(default_factory=MeshingParameters)
    plane_y: float = 0.0
    reorient: bool = True
    center_vertical: bool = False
    weld: bool = True
    workers: int = 1
    metadata_dir: Optional[pathlib.Path] = None
    show_progress: bool = False

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "ExportConfig":
        """Defaults, then CITYTWIN_* variables, then keyword *overrides*."""
        environ = os.environ if environ is None else environ
        values = {}
        if 'CITYTWIN_MODE' in environ:
            values['mode'] = ClassifyMode(environ['CITYTWIN_MODE'].strip().lower())
        values['other_as_building'] = env_flag('CITYTWIN_OTHER_AS_BUILDING', False, environ)
        values['reorient'] = env_flag('CITYTWIN_REORIENT', True, environ)
        values['center_vertical'] = env_flag('CITYTWIN_CENTER_VERTICAL', False, environ)
        values['weld'] = env_flag('CITYTWIN_WELD', True, environ)
        if 'CITYTWIN_PLANE_Y' in environ:
            values['plane_y'] = float(environ['CITYTWIN_PLANE_Y'])
        if 'CITYTWIN_WORKERS' in environ:
            values['workers'] = max(1, int(environ['CITYTWIN_WORKERS']))
        if environ.get('CITYTWIN_METADATA_DIR'):
            values['metadata_dir'] = pathlib.Path(environ['CITYTWIN_METADATA_DIR'])

        meshing = {attr: environ[var] for var, attr in _MESHING_ENV.items() if var in environ}
        values['meshing'] = MeshingParameters.from_mapping(meshing)

        config = cls(**values)
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **overrides) if overrides else config
