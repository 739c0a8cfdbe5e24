"""Per-category attribute tables written next to the STL.

One CSV per table family, one row per written solid, keyed by the solid
name so rows can be joined back to the STL blocks.
"""

import csv
import logging
import pathlib

from .constants import METADATA_PLACEHOLDER, METADATA_TABLES

logger = logging.getLogger(__name__)


def first_defined(properties: dict, keys, default: str = METADATA_PLACEHOLDER) -> str:
    """Value of the first key in *keys* holding a non-blank string."""
    for key in keys:
        value = properties.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return default


def table_rows(solids, family: str) -> list:
    spec = METADATA_TABLES[family]
    stems = set(spec['stems'])
    rows = []
    for solid in solids:
        if solid.stem not in stems:
            continue
        row = [solid.name, solid.category.value]
        row.extend(first_defined(solid.properties, keys) for _, keys in spec['columns'])
        rows.append(row)
    return rows


def table_header(family: str) -> list:
    return ['name', 'category'] + [col for col, _ in METADATA_TABLES[family]['columns']]


def write_metadata_tables(solids, output_dir) -> dict:
    """Write every non-empty table; returns ``{family: path}``."""
    output_dir = pathlib.Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = {}
    for family in METADATA_TABLES:
        rows = table_rows(solids, family)
        if not rows:
            continue
        path = output_dir / f"{family}.csv"
        with open(path, 'w', encoding='utf-8-sig', newline='') as f:
            writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL, lineterminator='\r\n')
            writer.writerow(table_header(family))
            writer.writerows(rows)
        logger.info(f"Wrote {len(rows)} rows to {path}")
        written[family] = path
    return written
