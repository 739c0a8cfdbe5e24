"""Export pipeline: a thin orchestrator over the focused modules.

scene → flatten → classify → tessellate → assemble → clip + serialize
"""

import logging
import pathlib
import time
from dataclasses import dataclass, field
from typing import Optional

from . import classify as classify_mod
from .assemble import MeshAssembler
from .config import ExportConfig
from .constants import REORIENT_Z_UP_TO_Y_UP
from .errors import DocumentOpenError
from .flatten import flatten_scene
from .metadata import write_metadata_tables
from .models import ExportStatus
from .scene import open_document
from .stl import SolidSerializer
from .tessellate import tessellate_nodes

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    status: ExportStatus
    output_path: Optional[str] = None
    message: str = ""
    solids: list = field(default_factory=list)
    omitted: list = field(default_factory=list)
    metadata_files: dict = field(default_factory=dict)
    stats: dict = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    @property
    def solid_names(self) -> list:
        return [s.name for s in self.solids]


class ExportCancelled(Exception):
    pass


def export_document(document, output_path, config: ExportConfig | None = None,
                    cancel_event=None, progress_callback=None) -> ExportResult:
    """Run the full pipeline on an opened SceneDocument.

    *cancel_event* (a ``threading.Event``) is checked between stages.
    Returns an ExportResult; the STL is written only when at least one
    solid survives clipping.
    """
    config = config or ExportConfig()
    t0 = time.perf_counter()
    stats = {}

    def _progress(pct, msg):
        logger.info(msg)
        if progress_callback:
            progress_callback(pct, msg)

    def _checkpoint():
        if cancel_event is not None and cancel_event.is_set():
            raise ExportCancelled()

    def _result(status, message, **kwargs):
        return ExportResult(status=status, message=message, stats=stats,
                            elapsed_seconds=round(time.perf_counter() - t0, 3),
                            **kwargs)

    try:
        _progress(5, "Resolving layer categories...")
        layer_map = classify_mod.build_layer_map(document)
        _checkpoint()

        _progress(10, "Flattening block instances...")
        nodes = flatten_scene(document, stats=stats)
        _checkpoint()

        _progress(20, "Classifying objects...")
        nodes = classify_mod.classify_nodes(nodes, document, config.mode,
                                            layer_map=layer_map, stats=stats)
        stats['nodes'] = len(nodes)
        if not nodes:
            logger.warning("No exportable geometry found")
            return _result(ExportStatus.nothing, "No exportable geometry found")
        _checkpoint()

        _progress(30, f"Tessellating {len(nodes)} geometry nodes...")
        tessellated = tessellate_nodes(nodes, config.meshing, workers=config.workers,
                                       show_progress=config.show_progress)
        _checkpoint()

        _progress(70, "Assembling solids...")
        assembler = MeshAssembler(reorient_matrix=REORIENT_Z_UP_TO_Y_UP if config.reorient else None,
                                  horizontal_only=not config.center_vertical,
                                  weld_vertices=config.weld)
        groups = assembler.assemble(tessellated)
        stats['groups'] = len(groups)
        if not groups:
            logger.warning("Tessellation produced no triangles")
            return _result(ExportStatus.nothing, "Tessellation produced no triangles")
        _checkpoint()

        _progress(85, "Clipping against datum plane and writing STL...")
        serializer = SolidSerializer(plane_y=config.plane_y,
                                     other_as_building=config.other_as_building)
        report = serializer.write(groups, output_path)
    except ExportCancelled:
        logger.info("Export cancelled")
        return _result(ExportStatus.cancel, "Export cancelled")

    clip = report.clip
    stats.update({'triangles': clip.triangles, 'discarded_below': clip.discarded,
                  'split': clip.split, 'rejected': clip.rejected,
                  'facets': report.facet_count})

    if not report.solids:
        logger.warning("Every solid was clipped away; nothing written")
        return _result(ExportStatus.nothing, "No geometry above the datum plane",
                       omitted=report.omitted)

    metadata_files = {}
    if config.metadata_dir is not None:
        metadata_files = {k: str(v) for k, v in
                          write_metadata_tables(report.solids, config.metadata_dir).items()}

    output_path = str(pathlib.Path(output_path))
    _progress(100, f"Exported ASCII STL to: {output_path} "
                   f"({len(report.solids)} solids, {report.facet_count:,} facets)")
    return _result(ExportStatus.success, "Export complete",
                   output_path=output_path, solids=report.solids,
                   omitted=report.omitted, metadata_files=metadata_files)


def export_file(input_path, output_path, config: ExportConfig | None = None,
                cancel_event=None, progress_callback=None) -> ExportResult:
    """Open *input_path*, export it, and close it again on every exit path."""
    try:
        with open_document(input_path) as document:
            return export_document(document, output_path, config,
                                   cancel_event=cancel_event,
                                   progress_callback=progress_callback)
    except DocumentOpenError as e:
        logger.error(str(e))
        return ExportResult(status=ExportStatus.failure, message=str(e))
