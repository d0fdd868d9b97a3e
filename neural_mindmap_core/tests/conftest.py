import pytest

from neural_mindmap_core.config import MindMapConfig
from neural_mindmap_core.neural_mindmap_core import NeuralMindMapCore
from neural_mindmap_core.structure_builder import MapStructureBuilder

from mindmap_testkit import (
    BASIC_GRAPH, EMBEDDING_DIM, FakeEmbeddingProvider, FakeGraphStore, basic_vectors, make_network
)


@pytest.fixture
def config():
    return MindMapConfig(
        embedding_dimension=EMBEDDING_DIM,
        network_depth=3,
        min_similarity_threshold=0.65,
        expansion_timeout=1.0,
        expansion_poll_interval=0.01,
    )


@pytest.fixture
def builder():
    return MapStructureBuilder()


@pytest.fixture
def network():
    return make_network()


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider(basic_vectors())


@pytest.fixture
def graph_store():
    return FakeGraphStore({("user123", "testContext"): BASIC_GRAPH})


@pytest.fixture
def core(config, embedding_provider, graph_store):
    return NeuralMindMapCore(config=config, embedding_provider=embedding_provider, graph_store=graph_store)
