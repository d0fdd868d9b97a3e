"""Shared helpers and fake collaborators for the mind map tests."""

import asyncio
import numpy as np
from typing import Any, Dict, List, Optional

from neural_mindmap_core.geometry_manager import GeometryManager
from neural_mindmap_core.map_structures import ConceptNode
from neural_mindmap_core.network_model import NetworkModel

EMBEDDING_DIM = 8


def axis(index: int, dim: int = EMBEDDING_DIM) -> np.ndarray:
    vector = np.zeros(dim, dtype=np.float32)
    vector[index] = 1.0
    return vector

def group_vector(group: int, member: int, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Group direction on axes 0-2 plus a small member offset on axes 3+; groups are orthogonal."""
    vector = axis(group, dim) + 0.1 * axis(3 + member, dim)
    return (vector / np.linalg.norm(vector)).astype(np.float32)

# Knowledge graph fixture: three themes of concepts
BASIC_GRAPH = {
    "nodes": [
        {"id": "node1", "name": "Knowledge", "weight": 5},
        {"id": "node2", "name": "Graph", "weight": 4},
        {"id": "node3", "name": "Analysis", "weight": 4},
        {"id": "node4", "name": "Insight", "weight": 3},
        {"id": "node5", "name": "Pattern", "weight": 3},
        {"id": "node6", "name": "Data", "weight": 3},
        {"id": "node7", "name": "Structure", "weight": 2},
        {"id": "node8", "name": "Relationship", "weight": 2},
        {"id": "node9", "name": "Concept", "weight": 2},
        {"id": "node10", "name": "Understanding", "weight": 1},
    ],
    "edges": [
        {"source": "node1", "target": "node2", "weight": 3},
        {"source": "node1", "target": "node3", "weight": 2},
        {"source": "node1", "target": "node4", "weight": 1},
        {"source": "node2", "target": "node5", "weight": 2},
        {"source": "node2", "target": "node6", "weight": 1},
        {"source": "node3", "target": "node4", "weight": 3},
        {"source": "node3", "target": "node7", "weight": 2},
        {"source": "node4", "target": "node10", "weight": 1},
        {"source": "node5", "target": "node7", "weight": 2},
        {"source": "node6", "target": "node7", "weight": 1},
        {"source": "node6", "target": "node8", "weight": 1},
        {"source": "node7", "target": "node9", "weight": 1},
        {"source": "node8", "target": "node9", "weight": 2},
        {"source": "node9", "target": "node10", "weight": 1},
    ]
}

# label -> (group, member)
BASIC_THEMES = {
    "Knowledge": (0, 0), "Graph": (0, 1), "Analysis": (0, 2), "Insight": (0, 3),
    "Pattern": (1, 0), "Data": (1, 1), "Structure": (1, 2),
    "Relationship": (2, 0), "Concept": (2, 1), "Understanding": (2, 2),
}

def basic_vectors() -> Dict[str, np.ndarray]:
    return {label: group_vector(*position) for label, position in BASIC_THEMES.items()}

def basic_embeddings_by_id() -> Dict[str, np.ndarray]:
    vectors = basic_vectors()
    return {n["id"]: vectors[n["name"]] for n in BASIC_GRAPH["nodes"]}

def make_network(user_id="user123", context="testContext", dim=EMBEDDING_DIM, depth=3, threshold=0.65) -> NetworkModel:
    return NetworkModel(user_id=user_id, context=context, embedding_dimension=dim,
                        network_depth=depth, min_similarity_threshold=threshold)

def make_node(node_id: str, vector: np.ndarray, weight: float = 1.0, label: Optional[str] = None) -> ConceptNode:
    geometry = GeometryManager(embedding_dim=len(vector))
    return ConceptNode(id=node_id, label=label or node_id, embedding=geometry.normalize_embedding(np.asarray(vector, dtype=np.float32)), weight=weight)

class FakeEmbeddingProvider:
    """Looks texts up in a table; unknown texts get a deterministic one-hot vector."""

    def __init__(self, table: Optional[Dict[str, np.ndarray]] = None, dim: int = EMBEDDING_DIM,
                 unembeddable=(), delay: float = 0.0, fail_with: Optional[Exception] = None):
        self.table = dict(table or {})
        self.dim = dim
        self.unembeddable = set(unembeddable)
        self.delay = delay
        self.fail_with = fail_with
        self.calls: List[List[str]] = []
        self.geometry = GeometryManager(embedding_dim=dim)

    async def embed(self, texts):
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        vectors = []
        for text in texts:
            if text in self.unembeddable:
                vectors.append(None)
            elif text in self.table:
                vectors.append(self.table[text])
            else:
                vectors.append(axis(sum(map(ord, text)) % self.dim, self.dim))
        return vectors

    def similarity(self, a, b):
        return self.geometry.calculate_similarity(a, b)

    @property
    def embedded_texts(self) -> List[str]:
        return [t for batch in self.calls for t in batch]

class FakeGraphStore:
    def __init__(self, graphs: Optional[Dict[tuple, Dict[str, Any]]] = None, delay: float = 0.0, fail_with: Optional[Exception] = None):
        self.graphs = dict(graphs or {})
        self.delay = delay
        self.fail_with = fail_with
        self.active = 0
        self.max_active = 0
        self.fetches = 0

    async def fetch_graph(self, user_id, context, options=None):
        self.fetches += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            return self.graphs.get((user_id, context), {"nodes": [], "edges": []})
        finally:
            self.active -= 1

class FakeJobSystem:
    """Job system that reports a scripted sequence of states, repeating the last one."""

    def __init__(self, states: List[Dict[str, Any]], fail_submit: Optional[Exception] = None):
        self.states = list(states)
        self.fail_submit = fail_submit
        self.submitted: List[tuple] = []
        self.polls = 0
        self.cancelled: List[str] = []

    async def submit_expansion(self, user_id, context, options):
        if self.fail_submit is not None:
            raise self.fail_submit
        self.submitted.append((user_id, context, options))
        return f"job-{len(self.submitted)}"

    async def poll_job(self, job_id):
        state = self.states[min(self.polls, len(self.states) - 1)]
        self.polls += 1
        return state

    async def cancel_job(self, job_id):
        self.cancelled.append(job_id)

