import numpy as np
import pytest

from citytwin.classify import build_layer_map, classify, classify_layer, classify_nodes
from citytwin.flatten import flatten_scene
from citytwin.models import Category, ClassifyMode, GeometryNode, Layer

from conftest import box_mesh, layer_tree, make_document


def _node(layer_id, source_id="o"):
    return GeometryNode(geometry=box_mesh(0, 1), transform=np.eye(4),
                        source_id=source_id, layer_id=layer_id)


@pytest.mark.parametrize("name,expected", [
    ("Buildings", Category.buildings),
    ("  TREES ", Category.trees),
    ("grasses", Category.grasses),
    ("Waters", Category.waters),
    ("GROUNDS", Category.grounds),
    ("Roads", Category.roads),
    ("Road", None),
    ("other", None),
    ("", None),
])
def test_category_from_layer_name(name, expected):
    assert Category.from_layer_name(name) == expected


def test_stems_are_fixed():
    assert [c.stem for c in Category] == [
        "building", "tree", "grass", "waterway", "ground", "highway", "other"]


def test_descendant_layers_inherit_the_nearest_keyword(nested_document):
    layer_map = build_layer_map(nested_document)
    assert layer_map["bld"] == Category.buildings
    assert layer_map["blk"] == Category.buildings
    assert "city" not in layer_map
    assert "dflt" not in layer_map


def test_nearest_ancestor_wins():
    layers = layer_tree(("r", "Roads", None), ("t", "Trees", "r"), ("leaf", "Row 1", "t"))
    doc = make_document(layers)
    assert classify_layer("leaf", build_layer_map(doc), doc) == Category.trees


def test_unmatched_layer_is_other(nested_document):
    layer_map = build_layer_map(nested_document)
    assert classify(_node("dflt"), layer_map, nested_document) == Category.other
    assert classify(_node(None), layer_map, nested_document) == Category.other


def test_buildings_only_mode_excludes_everything_else():
    layers = layer_tree(("b", "Buildings", None), ("w", "Waters", None), ("x", "Misc", None))
    doc = make_document(layers)
    layer_map = build_layer_map(doc)
    mode = ClassifyMode.buildings_only
    assert classify(_node("b"), layer_map, doc, mode) == Category.buildings
    assert classify(_node("w"), layer_map, doc, mode) is None
    assert classify(_node("x"), layer_map, doc, mode) is None


def test_classification_is_idempotent(nested_document):
    nodes = flatten_scene(nested_document)
    first = [n.category for n in classify_nodes(nodes, nested_document)]
    second = [n.category for n in classify_nodes(nodes, nested_document)]
    assert first == second
    assert first == [Category.buildings, Category.buildings, Category.other]


def test_renaming_an_ancestor_reclassifies_descendants(nested_document):
    nested_document.layers["bld"].name = "Structures"
    nodes = flatten_scene(nested_document)

    tagged = classify_nodes(nodes, nested_document)
    assert {n.category for n in tagged} == {Category.other}

    excluded = classify_nodes(nodes, nested_document, ClassifyMode.buildings_only)
    assert excluded == []


def test_classify_nodes_counts_unclassified_objects_once():
    layers = [Layer(id="x", name="Layer 01")]
    doc = make_document(layers)
    nodes = [_node("x", "same"), _node("x", "same"), _node("x", "other-object")]
    stats = {}
    tagged = classify_nodes(nodes, doc, stats=stats)
    assert len(tagged) == 3
    assert stats["unclassified_objects"] == 2


def test_layer_parent_cycle_terminates():
    layers = layer_tree(("a", "A", "b"), ("b", "B", "a"))
    doc = make_document(layers)
    assert build_layer_map(doc) == {}
    assert classify_layer("a", {}, doc) == Category.other
