"""citytwin package: export layered city models to clipped ASCII STL solids."""

from citytwin.config import ExportConfig
from citytwin.exporter import ExportResult, export_document, export_file
from citytwin.models import Category, ClassifyMode, ExportStatus
from citytwin.scene import SceneDocument, open_document
