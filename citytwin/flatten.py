"""Instance flattening: resolve block references into world-space leaves."""

import logging

from .constants import MAX_INSTANCE_DEPTH
from .errors import CyclicInstanceError, UnknownDefinitionError
from .models import GeometryNode, InstanceReference
from .xform import compose, identity

logger = logging.getLogger(__name__)


def merged_properties(document, obj) -> dict:
    """Layer user text overlaid by object user text (object wins)."""
    props = {}
    for layer in reversed(list(document.ancestors(obj.layer_id))):
        props.update(layer.user_strings)
    props.update(obj.user_strings)
    return props


def flatten_object(obj, resolver, transform=None, properties=None):
    """Expand one top-level object into GeometryNodes.

    *resolver* maps a definition id to an InstanceDefinition and raises
    UnknownDefinitionError when it cannot.  The walk uses an explicit stack;
    each entry carries the chain of definition ids above it so a definition
    reached again from inside itself raises CyclicInstanceError.
    """
    nodes = []
    properties = dict(properties or obj.user_strings)
    stack = [(obj.geometry, identity() if transform is None else transform, ())]

    while stack:
        geometry, accumulated, chain = stack.pop()

        if not isinstance(geometry, InstanceReference):
            if geometry.kind in ("mesh", "brep", "extrusion", "surface"):
                nodes.append(GeometryNode(geometry=geometry,
                                          transform=accumulated,
                                          source_id=obj.id,
                                          layer_id=obj.layer_id,
                                          properties=properties))
            continue

        def_id = geometry.definition_id
        if def_id in chain:
            raise CyclicInstanceError(chain + (def_id,))
        if len(chain) >= MAX_INSTANCE_DEPTH:
            raise CyclicInstanceError(chain + (def_id,))

        try:
            definition = resolver(def_id)
        except UnknownDefinitionError as e:
            logger.warning(f"Object {obj.id}: {e}, skipping reference")
            continue

        placed = compose(accumulated, geometry.xform)
        # Reversed so members pop in definition order.
        for member in reversed(definition.objects):
            if member.geometry is not None:
                stack.append((member.geometry, placed, chain + (def_id,)))

    return nodes


def flatten_scene(document, objects=None, stats=None):
    """Flatten every top-level object of *document*.

    A cyclic reference aborts only the object that contains it.
    Returns the list of GeometryNodes in object order.
    """
    objects = document.objects if objects is None else objects
    nodes = []
    for obj in objects:
        try:
            nodes.extend(flatten_object(obj, document.resolve_definition,
                                        properties=merged_properties(document, obj)))
        except CyclicInstanceError as e:
            logger.warning(f"Skipping object {obj.id} on layer "
                           f"{document.full_path(obj.layer_id)}: {e}")
            if stats is not None:
                stats['cyclic_objects'] = stats.get('cyclic_objects', 0) + 1
    logger.info(f"Flattened {len(objects)} objects into "
                f"{len(nodes)} geometry nodes")
    return nodes
