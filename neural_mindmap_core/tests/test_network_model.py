import asyncio
import numpy as np
import pytest

from neural_mindmap_core.config import MindMapConfig
from neural_mindmap_core.errors import ValidationError
from neural_mindmap_core.map_structures import Cluster
from neural_mindmap_core.network_model import NetworkModelManager


@pytest.fixture
def manager():
    return NetworkModelManager(MindMapConfig(embedding_dimension=16, network_depth=4))


@pytest.mark.asyncio
async def test_model_is_built_once_per_key(manager):
    results = await asyncio.gather(*(manager.get_or_build("u1", "ctx") for _ in range(5)))

    assert all(r is results[0] for r in results)
    assert manager.builds == 1
    assert results[0].embedding_dimension == 16
    assert results[0].network_depth == 4
    assert results[0].min_similarity_threshold == 0.65


@pytest.mark.asyncio
async def test_overrides_only_apply_at_build_time(manager):
    first = await manager.get_or_build("u1", "ctx", {"network_depth": 2})
    second = await manager.get_or_build("u1", "ctx", {"network_depth": 7})

    assert first is second
    assert second.network_depth == 2

    other = await manager.get_or_build("u1", "other")
    assert other.network_depth == 4


@pytest.mark.asyncio
async def test_invalidate_forces_rebuild(manager):
    await manager.get_or_build("u1", "ctx", {"min_similarity_threshold": 0.9})
    assert await manager.invalidate("u1", "ctx") is True
    assert await manager.invalidate("u1", "ctx") is False

    rebuilt = await manager.get_or_build("u1", "ctx")
    assert rebuilt.min_similarity_threshold == 0.65
    assert manager.builds == 2

    await manager.get_or_build("u2", "ctx")
    assert await manager.invalidate_all() == 2
    assert manager.keys() == []


@pytest.mark.asyncio
async def test_learned_centroids_do_not_change_model_value(manager):
    model = await manager.get_or_build("u1", "ctx")
    twin = manager._build("u1", "ctx", {})

    cluster = Cluster(id="cluster-0", node_ids=("a",), coherence=1.0, centroid=np.ones(16, dtype=np.float32))
    await manager.update_centroids("u1", "ctx", [cluster])

    assert "cluster-0" in model.centroids
    assert model == twin
    assert await manager.update_centroids("nobody", "ctx", [cluster]) is None


@pytest.mark.asyncio
async def test_invalid_overrides_are_rejected(manager):
    with pytest.raises(ValidationError):
        await manager.get_or_build("u1", "ctx", {"min_similarity_threshold": 1.5})
    with pytest.raises(ValidationError):
        await manager.get_or_build("u1", "ctx", {"layer_width": 3})
    with pytest.raises(ValidationError, match="network_depth must be an integer"):
        await manager.get_or_build("u1", "ctx", {"network_depth": 2.5})
    assert manager.peek("u1", "ctx") is None
