# neural_mindmap_core/collaborators.py

"""
Interfaces of the external collaborators the engine consumes, plus small local
implementations used by the API server and tests.

The engine only ever talks to these protocols; a production deployment swaps in
its own embedding model, graph storage and expansion job system.
"""

import asyncio
import copy
import hashlib
import math
import re
import numpy as np
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .custom_logger import logger
from .geometry_manager import GeometryManager
from .map_structures import EmergentPattern, Insight, NeuralMapStructure


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, texts: Sequence[str]) -> List[Optional[Sequence[float]]]:
        """One vector per text, or None where no embedding can be computed."""
        ...

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        """Cosine convention, in [-1, 1]."""
        ...


@runtime_checkable
class GraphStore(Protocol):
    async def fetch_graph(self, user_id: str, context: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, List[Dict[str, Any]]]:
        ...


@runtime_checkable
class ExpansionJobSystem(Protocol):
    async def submit_expansion(self, user_id: str, context: str, options: Dict[str, Any]) -> str:
        ...

    async def poll_job(self, job_id: str) -> Dict[str, Any]:
        """Returns at least ``{"status": ..., "result": ..., "error": ...}``."""
        ...


@runtime_checkable
class InsightGenerator(Protocol):
    async def generate_insights(self, structure: NeuralMapStructure, patterns: Sequence[EmergentPattern], options: Optional[Dict[str, Any]] = None) -> List[Insight]:
        ...


@runtime_checkable
class VisualizationAdapter(Protocol):
    def render(self, structure: NeuralMapStructure) -> Dict[str, Any]:
        ...


class HashingEmbeddingProvider:
    """Deterministic feature-hashing embedder.

    Words and character trigrams are hashed into signed buckets, so texts that share
    vocabulary land close together. Good enough for local runs and tests; not a
    semantic model.
    """

    def __init__(self, dimension: int = 768):
        self.dimension = dimension
        self.geometry = GeometryManager(embedding_dim=dimension)
        self.calls = 0

    def _features(self, text: str) -> List[str]:
        words = re.findall(r"\w+", text.lower())
        features = list(words)
        for word in words:
            padded = f"#{word}#"
            features.extend(padded[i:i + 3] for i in range(len(padded) - 2))
        return features

    def _embed_one(self, text: str) -> Optional[np.ndarray]:
        features = self._features(text or "")
        if not features:
            return None
        vector = np.zeros(self.dimension, dtype=np.float32)
        for feature in features:
            digest = hashlib.md5(feature.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign
        return self.geometry.normalize_embedding(vector)

    async def embed(self, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
        self.calls += 1
        return [self._embed_one(t) for t in texts]

    def similarity(self, a, b) -> float:
        return self.geometry.calculate_similarity(a, b)


class InMemoryGraphStore:
    """Graph store backed by a dict; graphs are registered with put_graph."""

    def __init__(self):
        self._graphs: Dict[tuple, Dict[str, List[Dict[str, Any]]]] = {}
        self._lock = asyncio.Lock()

    async def put_graph(self, user_id: str, context: str, graph: Dict[str, Any]):
        async with self._lock:
            self._graphs[(user_id, context)] = {
                "nodes": copy.deepcopy(list(graph.get("nodes", []))),
                "edges": copy.deepcopy(list(graph.get("edges", []))),
            }

    async def fetch_graph(self, user_id: str, context: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, List[Dict[str, Any]]]:
        async with self._lock:
            graph = self._graphs.get((user_id, context))
        if graph is None:
            logger.debug("InMemoryGraphStore", f"No graph registered for {user_id}/{context}, returning empty graph")
            return {"nodes": [], "edges": []}
        return copy.deepcopy(graph)


class StructuralInsightGenerator:
    """Derives insights from the finished structure only; never mutates it."""

    async def generate_insights(self, structure: NeuralMapStructure, patterns: Sequence[EmergentPattern], options: Optional[Dict[str, Any]] = None) -> List[Insight]:
        metrics = structure.cognitive_metrics
        insights: List[Insight] = []
        if not structure.nodes:
            return insights

        insights.append(Insight(
            type="structural",
            description=f"The mind map has {metrics.layer_count} cognitive layers across {metrics.node_count} concepts.",
            confidence=0.9,
            details={"layer_distribution": list(metrics.layer_distribution)},
        ))
        insights.append(Insight(
            type="structural",
            description=f"{metrics.cluster_count} distinct concept clusters identified (average coherence {metrics.avg_cluster_coherence:.2f}).",
            confidence=0.85,
        ))
        insights.append(Insight(
            type="structural",
            description=f"Cognitive complexity score: {metrics.cognitive_complexity_score:.2f}, knowledge density {metrics.knowledge_density:.2f}.",
            confidence=0.8,
            details={"cognitive_complexity_score": metrics.cognitive_complexity_score},
        ))

        node_map = structure.node_map()

        def anchor_label(cluster) -> str:
            members = [node_map[i] for i in cluster.node_ids if i in node_map]
            return max(members, key=lambda n: n.relevance).label if members else cluster.id

        for cluster in structure.clusters:
            if len(cluster.node_ids) > 1 and cluster.coherence >= 0.7:
                insights.append(Insight(
                    type="semantic",
                    description=f"Cluster {cluster.id} forms a coherent theme around '{anchor_label(cluster)}'.",
                    confidence=round(float(cluster.coherence), 4),
                    details={"cluster_id": cluster.id, "size": len(cluster.node_ids)},
                ))

        # Cluster pairs with no connection between them are candidate gaps
        cluster_of = structure.cluster_of()
        linked = {tuple(sorted((cluster_of[c.source], cluster_of[c.target]))) for c in structure.connections
                  if cluster_of.get(c.source) != cluster_of.get(c.target)}
        clusters = structure.clusters
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                pair = tuple(sorted((clusters[i].id, clusters[j].id)))
                if pair in linked:
                    continue
                insights.append(Insight(
                    type="gap",
                    description=f"Potential unexplored area between {clusters[i].id} and {clusters[j].id}.",
                    confidence=0.75,
                    details={"suggested_bridging_concepts": [anchor_label(clusters[i]), anchor_label(clusters[j])]},
                ))

        for pattern in patterns:
            insights.append(Insight(
                type="emergent",
                description=pattern.description,
                confidence=pattern.confidence,
                details={"pattern_type": pattern.type, "node_ids": list(pattern.node_ids)},
            ))
        return insights


class RadialVisualizationAdapter:
    """Projects a structure into a concentric, layer-per-ring render payload."""

    def render(self, structure: NeuralMapStructure) -> Dict[str, Any]:
        cluster_index = {c.id: i for i, c in enumerate(structure.clusters)}
        cluster_of = structure.cluster_of()
        depth = max(structure.network_depth, 1)

        positions: Dict[str, Dict[str, float]] = {}
        for layer in structure.layers:
            count = max(len(layer.node_ids), 1)
            radius = (layer.depth + 1) / depth
            for i, node_id in enumerate(layer.node_ids):
                angle = 2 * math.pi * i / count
                positions[node_id] = {"x": round(radius * math.cos(angle), 6), "y": round(radius * math.sin(angle), 6)}

        return {
            "layout_type": "neural-radial",
            "color_mapping": {"scheme": "cluster", "range": [0, max(len(structure.clusters) - 1, 0)]},
            "layer_visualization": {"type": "concentric", "rings": len(structure.layers)},
            "cluster_visualization": {"highlight_method": "convex-hull", "opacity": 0.2},
            "edge_rendering": {"type": "curved", "width_scale": [1, 5], "opacity_range": [0.3, 1]},
            "nodes": [
                {
                    "id": n.id,
                    "label": n.label,
                    "layer": n.layer_index,
                    "color_index": cluster_index.get(cluster_of.get(n.id, ""), 0),
                    "size": round(1.0 + 4.0 * n.relevance, 4),
                    **positions.get(n.id, {"x": 0.0, "y": 0.0}),
                }
                for n in structure.nodes
            ],
            "edges": [
                {"source": c.source, "target": c.target, "width": round(min(max(c.weight, 1.0), 5.0), 4), "derived": c.derived}
                for c in structure.connections
            ],
        }
