import numpy as np
import pytest

from neural_mindmap_core.collaborators import (
    EmbeddingProvider, GraphStore, HashingEmbeddingProvider, InMemoryGraphStore, InsightGenerator,
    RadialVisualizationAdapter, StructuralInsightGenerator, VisualizationAdapter
)
from neural_mindmap_core.map_structures import EmergentPattern

from mindmap_testkit import BASIC_GRAPH, basic_embeddings_by_id


@pytest.mark.asyncio
async def test_hashing_embedder_is_deterministic():
    embedder = HashingEmbeddingProvider(dimension=64)
    first, second, other, empty = await embedder.embed(["Knowledge graph", "Knowledge graph", "Music theory", "  "])

    assert isinstance(embedder, EmbeddingProvider)
    assert first.shape == (64,)
    assert np.linalg.norm(first) == pytest.approx(1.0)
    assert np.array_equal(first, second)
    assert embedder.similarity(first, second) == pytest.approx(1.0)
    assert embedder.similarity(first, other) < 0.9
    assert empty is None


@pytest.mark.asyncio
async def test_in_memory_graph_store_copies_graphs():
    store = InMemoryGraphStore()
    assert isinstance(store, GraphStore)
    assert await store.fetch_graph("u", "missing") == {"nodes": [], "edges": []}

    await store.put_graph("u", "c", BASIC_GRAPH)
    fetched = await store.fetch_graph("u", "c")
    fetched["nodes"].clear()

    again = await store.fetch_graph("u", "c")
    assert len(again["nodes"]) == 10
    assert len(again["edges"]) == 14


@pytest.mark.asyncio
async def test_structural_insights(builder, network):
    structure = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)
    generator = StructuralInsightGenerator()
    pattern = EmergentPattern(type="bridge", description="Novel bridge", node_ids=["node1"], confidence=0.6)

    insights = await generator.generate_insights(structure, [pattern])

    assert isinstance(generator, InsightGenerator)
    by_type = {}
    for insight in insights:
        by_type.setdefault(insight.type, []).append(insight)
    assert [i.confidence for i in by_type["structural"]] == [0.9, 0.85, 0.8]
    assert len(by_type["semantic"]) == 3
    # Every pair of themes is linked in the basic graph
    assert "gap" not in by_type
    assert by_type["emergent"][0].details["pattern_type"] == "bridge"


@pytest.mark.asyncio
async def test_unlinked_clusters_are_gaps(builder, network):
    graph = {"nodes": [{"id": "a"}, {"id": "b"}]}
    structure = builder.build(graph, {"a": np.eye(8, dtype=np.float32)[0], "b": np.eye(8, dtype=np.float32)[1]}, network)

    insights = await StructuralInsightGenerator().generate_insights(structure, [])
    gaps = [i for i in insights if i.type == "gap"]

    assert len(gaps) == 1
    assert gaps[0].confidence == 0.75
    assert gaps[0].details["suggested_bridging_concepts"] == ["a", "b"]


def test_radial_layout(builder, network):
    structure = builder.build(BASIC_GRAPH, basic_embeddings_by_id(), network)
    adapter = RadialVisualizationAdapter()

    rendered = adapter.render(structure)

    assert isinstance(adapter, VisualizationAdapter)
    assert rendered["layout_type"] == "neural-radial"
    assert len(rendered["nodes"]) == 10
    assert len(rendered["edges"]) == len(structure.connections)
    core_node = next(n for n in rendered["nodes"] if n["id"] == "node1")
    assert core_node["layer"] == 0
    assert core_node["size"] == round(1.0 + 4.0 * structure.get_node("node1").relevance, 4)
    assert {n["color_index"] for n in rendered["nodes"]} == {0, 1, 2}
