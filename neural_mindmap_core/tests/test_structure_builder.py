import numpy as np
import pytest

from neural_mindmap_core.errors import ComputationError
from neural_mindmap_core.structure_builder import MapStructureBuilder, betweenness_centrality
from neural_mindmap_core.map_structures import Connection

from mindmap_testkit import BASIC_GRAPH, EMBEDDING_DIM, axis, basic_embeddings_by_id, group_vector, make_network


def assert_structurally_valid(structure):
    ids = set(structure.node_ids())
    for conn in structure.connections:
        assert conn.source in ids and conn.target in ids
        assert conn.source != conn.target
        assert conn.weight > 0
    members = [node_id for c in structure.clusters for node_id in c.node_ids]
    assert sorted(members) == sorted(ids)
    for node in structure.nodes:
        assert 0 <= node.layer_index < structure.network_depth
        assert node.embedding.shape == (structure.embedding_dimension,)


def test_basic_graph_clusters_by_theme(network):
    builder = MapStructureBuilder(derive_similarity_connections=False)
    structure = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)

    assert_structurally_valid(structure)
    assert structure.id.startswith("map-")
    assert [c.id for c in structure.clusters] == ["cluster-0", "cluster-1", "cluster-2"]
    assert [c.node_ids for c in structure.clusters] == [
        ("node1", "node2", "node3", "node4"),
        ("node5", "node6", "node7"),
        ("node8", "node9", "node10"),
    ]
    assert all(0.9 < c.coherence <= 1.0 for c in structure.clusters)
    assert structure.get_node("node6").community_id == "cluster-1"


def test_layers_follow_centrality(network):
    builder = MapStructureBuilder(derive_similarity_connections=False)
    structure = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)

    assert [layer.node_ids for layer in structure.layers] == [
        ("node1", "node2", "node3", "node4"),
        ("node6", "node7", "node5"),
        ("node9", "node8", "node10"),
    ]
    assert structure.get_node("node1").relevance == pytest.approx(1.0)
    assert structure.get_node("node10").relevance == pytest.approx(3 / 20)


def test_metrics(network, builder):
    structure = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)
    metrics = structure.cognitive_metrics

    # 14 raw edges plus 4 same-cluster similarity links
    assert metrics.connection_count == 18
    assert sum(1 for c in structure.connections if c.derived) == 4
    assert metrics.node_count == 10
    assert metrics.knowledge_density == pytest.approx(1.8)
    expected = 0.4 * metrics.avg_cluster_coherence + 0.3 * min(3 / 10, 1) + 0.3 * min(3 / 5, 1)
    assert metrics.cognitive_complexity_score == pytest.approx(expected)
    assert sum(metrics.layer_distribution) == pytest.approx(1.0)


def test_edges_are_cleaned():
    network = make_network(threshold=0.99)
    graph = {
        "nodes": [{"id": "a"}, {"id": "b"}, {"id": "c"}],
        "edges": [
            {"source": "a", "target": "b", "weight": 1},
            {"source": "b", "target": "a", "weight": 3},
            {"source": "a", "target": "a"},
            {"source": "a", "target": "zzz"},
            {"source": "b", "target": "c", "weight": 0},
            {"source": "c", "target": "b", "weight": -1},
        ],
    }
    embeddings = {"a": axis(0), "b": axis(1), "c": axis(2)}
    structure = MapStructureBuilder().build(graph, embeddings, network)

    assert [(c.key, c.weight) for c in structure.connections] == [(("a", "b"), 3.0)]
    assert structure.diagnostics["dropped_edges"] == 1
    assert structure.diagnostics["self_loops"] == 1
    assert structure.diagnostics["non_positive_edges"] == 2


@pytest.mark.parametrize("graph", [
    {"nodes": "node1"},
    {"nodes": [{"name": "anonymous"}]},
    {"nodes": [{"id": "a"}, {"id": "a"}]},
    {"nodes": [{"id": "a", "weight": -2}]},
    {"nodes": [{"id": "a", "weight": "heavy"}]},
    {"nodes": [{"id": "a"}, {"id": "b"}], "edges": [{"source": "a", "target": "b", "weight": "strong"}]},
])
def test_malformed_graphs_raise(graph, network, builder):
    embeddings = {"a": axis(0), "b": axis(1)}
    with pytest.raises(ComputationError):
        builder.build(graph, embeddings, network)


def test_empty_graph_gives_empty_structure(network, builder):
    structure = builder.build({"nodes": [], "edges": []}, {}, network)

    assert structure.nodes == []
    assert structure.clusters == []
    assert structure.layers == []
    assert structure.cognitive_metrics.node_count == 0
    assert structure.cognitive_metrics.cognitive_complexity_score == 0.0


def test_nodes_without_embedding_are_excluded(network, builder):
    embeddings = basic_embeddings_by_id()
    del embeddings["node10"]
    structure = builder.build(BASIC_GRAPH, embeddings, network)

    assert "node10" not in structure.node_ids()
    assert structure.diagnostics["excluded_nodes"] == ["node10"]
    assert structure.diagnostics["dropped_edges"] == 2
    assert_structurally_valid(structure)


def test_raw_embeddings_are_aligned_to_network_dimension(network, builder):
    graph = {"nodes": [{"id": "short", "embedding": [3.0, 4.0]}]}
    structure = builder.build(graph, {}, network)

    node = structure.get_node("short")
    assert node.embedding.shape == (EMBEDDING_DIM,)
    assert np.linalg.norm(node.embedding) == pytest.approx(1.0)
    assert node.embedding[0] == pytest.approx(0.6)


def test_equal_similarity_joins_earliest_cluster(builder):
    network = make_network(threshold=0.5)
    graph = {"nodes": [{"id": "x"}, {"id": "y"}, {"id": "z"}]}
    embeddings = {"x": axis(0), "y": axis(1), "z": axis(0) + axis(1)}
    structure = builder.build(graph, embeddings, network)

    assert structure.clusters[0].node_ids == ("x", "z")
    assert structure.clusters[1].node_ids == ("y",)
    assert structure.clusters[1].coherence == 1.0


def test_derived_connections_are_capped_per_node(network):
    builder = MapStructureBuilder(max_derived_connections_per_node=1)
    graph = {"nodes": [{"id": f"n{i}"} for i in range(4)]}
    embeddings = {f"n{i}": group_vector(0, i) for i in range(4)}
    structure = builder.build(graph, embeddings, network)

    derived = [c for c in structure.connections if c.derived]
    assert len(derived) == 2
    endpoints = [c.source for c in derived] + [c.target for c in derived]
    assert sorted(endpoints) == ["n0", "n1", "n2", "n3"]


def test_betweenness_of_a_path():
    scores = betweenness_centrality(["a", "b", "c"], [Connection("a", "b"), Connection("b", "c")])
    assert scores == {"a": 0.0, "b": 1.0, "c": 0.0}


def test_build_is_repeatable(network, builder):
    first = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)
    second = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)

    assert first.id != second.id
    assert len(first.nodes) == len(second.nodes)
    assert len(first.connections) == len(second.connections)
    assert [c.node_ids for c in first.clusters] == [c.node_ids for c in second.clusters]
    assert [layer.node_ids for layer in first.layers] == [layer.node_ids for layer in second.layers]


def test_restructure_rejects_dangling_connections(network, builder):
    structure = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)
    with pytest.raises(ComputationError):
        builder.restructure(structure.nodes[:2], structure.connections, network, map_id="map-broken")
