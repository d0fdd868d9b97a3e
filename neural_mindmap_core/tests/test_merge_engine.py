import pytest

from neural_mindmap_core.config import MindMapConfig
from neural_mindmap_core.errors import ValidationError
from neural_mindmap_core.merge_engine import MergeEngine

from mindmap_testkit import axis


@pytest.fixture
def engine(builder):
    return MergeEngine(builder, MindMapConfig(embedding_dimension=8, network_depth=3))


@pytest.fixture
def context_maps(builder, network):
    first = builder.build({
        "nodes": [
            {"id": "a1", "name": "Knowledge", "weight": 1},
            {"id": "b1", "name": "Graph", "weight": 4},
        ],
        "edges": [{"source": "a1", "target": "b1", "weight": 1}],
    }, {"a1": axis(0), "b1": axis(1)}, network)

    second = builder.build({
        "nodes": [
            {"id": "a1", "name": "Music", "weight": 1},
            {"id": "k", "name": "Knowing", "weight": 5},
            {"id": "g", "name": "Graphs", "weight": 1},
        ],
        "edges": [
            {"source": "k", "target": "a1", "weight": 2},
            {"source": "k", "target": "g", "weight": 4},
        ],
    }, {"a1": axis(2), "k": axis(0), "g": axis(1)}, network)
    return first, second


def test_similar_concepts_coalesce(engine, context_maps, network):
    first, second = context_maps
    merged = engine.merge([("context1", first), ("context2", second)], network)

    assert merged.id.startswith("merged-")
    assert sorted(merged.node_ids()) == ["a1", "b1", "context2:a1"]

    knowledge = merged.get_node("a1")
    # The more relevant source concept names the merged one
    assert knowledge.label == "Knowing"
    assert knowledge.weight == 5
    assert knowledge.metadata["source_contexts"] == ["context1", "context2"]
    assert knowledge.metadata["merged_from"] == ["context1:a1", "context2:k"]

    graph = merged.get_node("b1")
    assert graph.label == "Graph"
    assert graph.weight == 4

    music = merged.get_node("context2:a1")
    assert music.label == "Music"
    assert music.metadata["source_contexts"] == ["context2"]


def test_connections_are_remapped_with_max_weight(engine, context_maps, network):
    first, second = context_maps
    merged = engine.merge([("context1", first), ("context2", second)], network)
    weights = {c.key: c.weight for c in merged.connections}

    assert weights == {("a1", "b1"): 4.0, ("a1", "context2:a1"): 2.0}
    assert merged.merge_metrics == {
        "source_contexts": ["context1", "context2"],
        "source_map_ids": [first.id, second.id],
        "coalesced_nodes": 2,
        "cross_context_connections": 1,
        "similarity_threshold": 0.65,
    }


def test_sources_are_not_modified(engine, context_maps, network):
    first, second = context_maps
    before = [(n.id, n.label, n.weight) for n in first.nodes + second.nodes]
    engine.merge([("context1", first), ("context2", second)], network)

    assert [(n.id, n.label, n.weight) for n in first.nodes + second.nodes] == before
    assert first.merge_metrics is None


def test_strict_threshold_keeps_concepts_apart(engine, context_maps, network):
    first, second = context_maps
    merged = engine.merge([("context1", first), ("context2", second)], network, {"similarity_threshold": 1.0})

    assert merged.merge_metrics["coalesced_nodes"] == 0
    assert sorted(merged.node_ids()) == ["a1", "b1", "context2:a1", "g", "k"]


def test_same_context_maps_never_coalesce_with_each_other(engine, builder, network):
    twin = builder.build({"nodes": [{"id": "x"}, {"id": "y"}]}, {"x": axis(0), "y": axis(0)}, network)
    other = builder.build({"nodes": [{"id": "z"}]}, {"z": axis(3)}, network)
    merged = engine.merge([("context1", twin), ("context2", other)], network)

    assert sorted(merged.node_ids()) == ["x", "y", "z"]
    assert merged.merge_metrics["coalesced_nodes"] == 0


def test_merge_needs_two_contexts(engine, context_maps, network):
    first, second = context_maps
    with pytest.raises(ValidationError, match="At least two context names"):
        engine.merge([("context1", first), ("context1", second)], network)
    with pytest.raises(ValidationError):
        engine.merge([("context1", first)], network)


def test_equal_similarity_goes_to_lowest_node_id(engine, builder, network):
    first = builder.build({
        "nodes": [
            {"id": "zeta", "name": "Zeta", "weight": 3},
            {"id": "alpha", "name": "Alpha", "weight": 1},
        ],
    }, {"zeta": axis(0), "alpha": axis(1)}, network)
    second = builder.build({"nodes": [{"id": "mid", "name": "Between"}]}, {"mid": axis(0) + axis(1)}, network)

    merged = engine.merge([("context1", first), ("context2", second)], network, {"similarity_threshold": 0.5})

    assert sorted(merged.node_ids()) == ["alpha", "zeta"]
    assert merged.get_node("alpha").metadata["merged_from"] == ["context1:alpha", "context2:mid"]
    assert merged.get_node("zeta").metadata["merged_from"] == ["context1:zeta"]
    assert merged.merge_metrics["coalesced_nodes"] == 1
