"""Fixed vocabularies, numeric tolerances and default export settings."""

import numpy as np

# ── Categories ──────────────────────────────────────────────────────────
# Output stem per category; roads are written as highway.
CATEGORY_STEMS = {
    'buildings': 'building',
    'trees': 'tree',
    'grasses': 'grass',
    'waters': 'waterway',
    'grounds': 'ground',
    'roads': 'highway',
    'other': 'other',
}

# Categories whose faces must point up after assembly.
GROUND_HUGGING = frozenset({'grounds', 'roads', 'waters', 'grasses'})

# ── Numeric tolerances ──────────────────────────────────────────────────
# Squared cross-product length at or below which a triangle is degenerate.
DEGENERATE_EPSILON = 1e-12
# Coordinates this close to the datum plane are snapped onto it.
PLANE_SNAP_EPSILON = 1e-8
# Edge y-spans below this use the midpoint instead of interpolation.
INTERPOLATION_EPSILON = 1e-8
# Positional tolerance used when welding vertices.
WELD_DISTANCE = 1e-6
# Share of a face normal below -Y at which the face counts as facing down.
WINDING_EPSILON = 1e-9

# Guard against runaway instance nesting.
MAX_INSTANCE_DEPTH = 64

# ── Meshing defaults ────────────────────────────────────────────────────
DEFAULT_MESHING = {
    'jagged_seams': False,
    'refine_grid': True,
    'simple_planes': False,
    'min_edge_length': 0.01,
    'max_edge_length': 2.0,
    'grid_min_count': 100,
    'grid_max_count': 10000,
    'tolerance': 0.0,
    'relative_tolerance': 0.0,
}

# ── Output orientation ──────────────────────────────────────────────────
# Z-up scene → Y-up output: y' = z, z' = -y.
REORIENT_Z_UP_TO_Y_UP = np.array([
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
    [0.0, -1.0, 0.0, 0.0],
    [0.0, 0.0, 0.0, 1.0],
])

# ── Side metadata tables ────────────────────────────────────────────────
# Rows are selected by output stem. Each column: (header, candidate property
# keys in lookup order).
METADATA_PLACEHOLDER = 'undefined'

METADATA_TABLES = {
    'vegetation': {
        'stems': ('tree', 'grass', 'ground'),
        'columns': [
            ('vegetation_type', ('vegetation_type', 'VegetationType', 'species', 'type')),
            ('soil_type', ('soil_type', 'SoilType', 'soil')),
            ('height', ('height', 'Height')),
        ],
    },
    'roads': {
        'stems': ('highway',),
        'columns': [
            ('road_type', ('road_type', 'RoadType', 'highway', 'type')),
            ('surface', ('surface', 'Surface')),
            ('lanes', ('lanes', 'Lanes')),
            ('width', ('width', 'Width')),
        ],
    },
    'waters': {
        'stems': ('waterway',),
        'columns': [
            ('water_type', ('water_type', 'WaterType', 'waterway', 'type')),
            ('depth', ('depth', 'Depth')),
        ],
    },
    'buildings': {
        'stems': ('building',),
        'columns': [
            ('building_type', ('building_type', 'BuildingType', 'building', 'type')),
            ('height', ('height', 'Height')),
            ('floors', ('floors', 'building:levels', 'Floors')),
            ('year_built', ('year_built', 'start_date', 'YearBuilt')),
            ('address', ('address', 'addr:street', 'Address')),
        ],
    },
}
