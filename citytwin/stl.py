"""ASCII STL serialization of clipped solid groups.

Layout of one solid::

    solid building1
      facet normal 0.0 1.0 0.0
        outer loop
          vertex 0.0 2.0 0.0
          vertex 0.0 2.0 1.0
          vertex 1.0 2.0 1.0
        endloop
      endfacet
    endsolid building1

Numbers use Python's shortest round-trip float repr.
"""

import io
import logging
import os
import pathlib
import tempfile
import warnings
from dataclasses import dataclass, field

from .clip import ClipStats, clip_mesh
from .errors import DegenerateGeometryWarning, EmptySolidWarning
from .models import Category

logger = logging.getLogger(__name__)


def format_number(value) -> str:
    return repr(float(value))


def _vec(values) -> str:
    return " ".join(format_number(v) for v in values)


def facet_lines(facet):
    yield f"  facet normal {_vec(facet.normal)}"
    yield "    outer loop"
    for vertex in facet.vertices:
        yield f"      vertex {_vec(vertex)}"
    yield "    endloop"
    yield "  endfacet"


def solid_lines(name: str, facets):
    yield f"solid {name}"
    for facet in facets:
        yield from facet_lines(facet)
    yield f"endsolid {name}"


@dataclass
class SerializedSolid:
    name: str
    category: Category
    source_id: str
    facets: int
    properties: dict = field(default_factory=dict)
    stem: str = ""

    def __post_init__(self):
        self.stem = self.stem or self.category.stem


@dataclass
class SerializeReport:
    solids: list = field(default_factory=list)
    omitted: list = field(default_factory=list)
    clip: ClipStats = field(default_factory=ClipStats)

    @property
    def facet_count(self) -> int:
        return sum(s.facets for s in self.solids)


class SolidSerializer:
    """Clip each solid group against the datum plane and write it as STL.

    Counters are kept per output stem and advance only for solids that are
    written, so names within a stem are contiguous from 1.
    """

    def __init__(self, plane_y: float = 0.0, other_as_building: bool = False):
        self.plane_y = plane_y
        self.other_as_building = other_as_building

    def stem(self, category: Category) -> str:
        if category == Category.other and self.other_as_building:
            return Category.buildings.stem
        return category.stem

    def serialize(self, groups, stream) -> SerializeReport:
        report = SerializeReport()
        counters = {}
        order = {c: i for i, c in enumerate(Category)}

        for group in sorted(groups, key=lambda g: order[g.category]):
            stats = ClipStats()
            facets = clip_mesh(group.mesh, self.plane_y, stats)
            report.clip.merge(stats)
            if stats.rejected:
                logger.debug(f"{group.category.value}/{group.source_id}: "
                             f"{stats.rejected} degenerate triangles skipped")

            if not facets:
                warnings.warn(f"Solid for object {group.source_id} ({group.category.value}) "
                              f"has no facets above the datum plane; omitted",
                              EmptySolidWarning, stacklevel=2)
                logger.warning(f"Omitting empty solid for object {group.source_id} "
                               f"({group.category.value})")
                report.omitted.append(group.source_id)
                continue

            stem = self.stem(group.category)
            counters[stem] = counters.get(stem, 0) + 1
            name = f"{stem}{counters[stem]}"
            group.name = name

            for line in solid_lines(name, facets):
                stream.write(line)
                stream.write("\n")
            report.solids.append(SerializedSolid(name=name,
                                                 category=group.category,
                                                 source_id=group.source_id,
                                                 facets=len(facets),
                                                 properties=dict(group.properties),
                                                 stem=stem))
            group.mesh = None

        if report.clip.rejected:
            warnings.warn(f"{report.clip.rejected} degenerate triangles skipped",
                          DegenerateGeometryWarning, stacklevel=2)
        return report

    def to_string(self, groups):
        buffer = io.StringIO()
        report = self.serialize(groups, buffer)
        return buffer.getvalue(), report

    def write(self, groups, output_path) -> SerializeReport:
        """Write the document to *output_path* via a temporary sibling file.

        Nothing is left behind at *output_path* if serialization fails.
        """
        output_path = pathlib.Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.name}.",
                                        suffix=".tmp", dir=str(output_path.parent))
        try:
            with os.fdopen(fd, "w", encoding="ascii", newline="\n") as f:
                report = self.serialize(groups, f)
            if report.solids:
                os.replace(tmp_name, output_path)
            else:
                os.unlink(tmp_name)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return report
