import pytest
from fastapi.testclient import TestClient

from neural_mindmap_core.api.server import build_default_core, create_app
from neural_mindmap_core.config import MindMapConfig

GRAPH = {
    "nodes": [
        {"id": "node1", "name": "Knowledge Graph", "weight": 3},
        {"id": "node2", "name": "Graph Analysis", "weight": 2},
        {"id": "node3", "name": "Pattern Recognition", "weight": 1},
    ],
    "edges": [
        {"source": "node1", "target": "node2", "weight": 2},
        {"source": "node2", "target": "node3"},
    ],
}


@pytest.fixture
def client():
    core = build_default_core(MindMapConfig(embedding_dimension=32, network_depth=3))
    with TestClient(create_app(core)) as test_client:
        yield test_client


def put_and_generate(client, context="testContext"):
    assert client.put(f"/graphs/user123/{context}", json=GRAPH).status_code == 200
    return client.post(f"/mindmaps/user123/{context}/generate")


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "healthy"
    assert data["map_count"] == 0


def test_generate_and_fetch(client):
    response = put_and_generate(client)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    generated = body["data"]
    assert generated["id"].startswith("map-")
    assert len(generated["nodes"]) == 3
    assert "embedding" not in generated["nodes"][0]
    assert generated["cognitive_metrics"]["node_count"] == 3

    fetched = client.get("/mindmaps/user123/testContext").json()["data"]
    assert fetched["id"] == generated["id"]

    with_vectors = client.get("/mindmaps/user123/testContext", params={"include_embeddings": True}).json()["data"]
    assert len(with_vectors["nodes"][0]["embedding"]) == 32


def test_missing_map_is_404(client):
    response = client.get("/mindmaps/user123/nowhere")

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "No existing neural mind map found for user user123, context nowhere",
        "error_type": "NotFoundError",
    }


def test_evolve_missing_map_is_404(client):
    response = client.post("/mindmaps/user123/nowhere/evolve", json={"creativity_factor": 0.5})

    assert response.status_code == 404
    assert response.json()["error_type"] == "NotFoundError"


def test_evolve(client):
    baseline = put_and_generate(client).json()["data"]
    response = client.post("/mindmaps/user123/testContext/evolve", json={"creativity_factor": 0.8, "novel_concepts": 1})

    assert response.status_code == 200
    evolved = response.json()["data"]
    assert evolved["id"] == f"evolved-{baseline['id']}-g1"
    assert len(evolved["nodes"]) == 4
    assert evolved["evolution_metrics"]["added_nodes"] == 1


def test_invalid_creativity_is_400(client):
    put_and_generate(client)
    response = client.post("/mindmaps/user123/testContext/evolve", json={"creativity_factor": 1.5})

    assert response.status_code == 400
    assert response.json()["error_type"] == "ValidationError"


def test_merge(client):
    put_and_generate(client, "context1")
    put_and_generate(client, "context2")

    response = client.post("/mindmaps/user123/merge", json={
        "source_contexts": ["context1", "context2"],
        "target_context": "mergedContext",
    })

    assert response.status_code == 200
    merged = response.json()["data"]
    assert merged["id"].startswith("merged-")
    assert merged["merge_metrics"]["target_context"] == "mergedContext"
    # Identical graphs coalesce node for node
    assert merged["merge_metrics"]["coalesced_nodes"] == 3
    assert client.get("/mindmaps/user123/mergedContext").status_code == 200


def test_merge_errors(client):
    put_and_generate(client, "context1")

    single = client.post("/mindmaps/user123/merge", json={"source_contexts": ["context1"], "target_context": "t"})
    assert single.status_code == 400
    assert single.json()["error"] == "At least two context names are required for merging"

    missing = client.post("/mindmaps/user123/merge", json={"source_contexts": ["context1", "context7"], "target_context": "t"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "Mind map not found for context: context7"

    malformed = client.post("/mindmaps/user123/merge", json={"source_contexts": ["context1", "context7"]})
    assert malformed.status_code == 400
    assert malformed.json()["success"] is False


def test_insights(client):
    put_and_generate(client)
    response = client.post("/mindmaps/user123/testContext/insights", json={"insight_types": ["structural"], "min_confidence": 0.85})

    assert response.status_code == 200
    insights = response.json()["data"]
    assert [i["confidence"] for i in insights] == [0.9, 0.85]
    assert all(i["type"] == "structural" for i in insights)


def test_stats(client):
    put_and_generate(client)
    data = client.get("/stats").json()["data"]

    assert data["maps"] == 1
    assert data["operations"]["generated"] == 1
    assert data["embedding_cache"]["size"] == 3
