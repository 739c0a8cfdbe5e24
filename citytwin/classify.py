"""Category resolution from layer ancestry."""

import dataclasses
import logging
from typing import Optional

from .models import Category, ClassifyMode

logger = logging.getLogger(__name__)


def build_layer_map(document) -> dict:
    """Map each layer id to the category of its nearest keyword ancestor.

    The layer itself counts as its own first ancestor.  Layers with no
    keyword anywhere above them get no entry.
    """
    layer_map = {}
    for layer_id in document.layers:
        for ancestor in document.ancestors(layer_id):
            category = Category.from_layer_name(ancestor.name)
            if category is not None:
                layer_map[layer_id] = category
                break
    return layer_map


def classify_layer(layer_id, layer_map: dict, document) -> Category:
    """Walk up from *layer_id* and return the first mapped category."""
    for layer in document.ancestors(layer_id):
        category = layer_map.get(layer.id)
        if category is not None:
            return category
    return Category.other


def classify(node, layer_map: dict, document,
             mode: ClassifyMode = ClassifyMode.all) -> Optional[Category]:
    """Category of *node*, or None when *mode* excludes it."""
    category = classify_layer(node.layer_id, layer_map, document)
    if mode == ClassifyMode.buildings_only and category != Category.buildings:
        return None
    return category


def classify_nodes(nodes, document, mode: ClassifyMode = ClassifyMode.all,
                   layer_map: Optional[dict] = None, stats: Optional[dict] = None):
    """Tag every node with its category, dropping nodes *mode* excludes.

    Each source object is reported once.
    """
    if layer_map is None:
        layer_map = build_layer_map(document)

    tagged = []
    reported = set()
    counts = {}
    for node in nodes:
        category = classify(node, layer_map, document, mode)
        first_seen = node.source_id not in reported
        reported.add(node.source_id)
        path = document.full_path(node.layer_id)

        if category is None:
            if first_seen:
                logger.info(f"Excluded object {node.source_id} on layer: {path}")
                _bump(stats, 'excluded_objects')
            continue

        if first_seen:
            counts[category] = counts.get(category, 0) + 1
            if category == Category.other:
                logger.warning(f"Found unclassified object on layer: {path} "
                               f"→ assigned to 'other'")
                _bump(stats, 'unclassified_objects')
            else:
                logger.debug(f"Found {category.value} object on layer: {path}")

        tagged.append(dataclasses.replace(node, category=category))

    for category in Category:
        if category in counts:
            logger.info(f"  {category.value}: {counts[category]} objects")
    if stats is not None:
        stats['categories'] = {c.value: n for c, n in counts.items()}
    return tagged


def _bump(stats, key):
    if stats is not None:
        stats[key] = stats.get(key, 0) + 1
