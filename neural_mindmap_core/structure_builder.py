# neural_mindmap_core/structure_builder.py

"""
Turns a raw concept graph plus embeddings into a layered, clustered
NeuralMapStructure.

The pipeline is deterministic: identical inputs give identical structures, apart
from the generated map id and timestamp.
"""

import math
import numpy as np
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .custom_logger import logger
from .errors import ComputationError
from .geometry_manager import GeometryManager
from .map_structures import (
    Cluster, CognitiveMetrics, ConceptNode, Connection, Layer, NeuralMapStructure, new_map_id
)
from .network_model import NetworkModel


@dataclass
class ParsedGraph:
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)
    dropped_edges: int = 0
    self_loops: int = 0
    non_positive_edges: int = 0


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ComputationError(f"{what} must be a finite number, got {value!r}")
    return float(value)


def parse_raw_graph(raw_graph: Mapping[str, Any]) -> ParsedGraph:
    """
    Validate the ``{"nodes": [...], "edges": [...]}`` payload of a graph store.

    Malformed nodes raise ComputationError. Edges whose endpoints are unknown,
    self-loops and edges with non-positive weight are dropped and counted.
    Duplicate undirected edges collapse to one, keeping the maximum weight.
    """
    if not isinstance(raw_graph, Mapping):
        raise ComputationError(f"Raw graph must be a mapping, got {type(raw_graph).__name__}")
    raw_nodes = raw_graph.get("nodes") or []
    raw_edges = raw_graph.get("edges", raw_graph.get("connections")) or []
    if not isinstance(raw_nodes, list):
        raise ComputationError("Raw graph 'nodes' must be a list")
    if not isinstance(raw_edges, list):
        raise ComputationError("Raw graph 'edges' must be a list")

    parsed = ParsedGraph()
    seen = set()
    for position, raw in enumerate(raw_nodes):
        if not isinstance(raw, Mapping):
            raise ComputationError(f"Node at position {position} is not a mapping")
        node_id = raw.get("id")
        if node_id is None or str(node_id) == "":
            raise ComputationError(f"Node at position {position} has no id")
        node_id = str(node_id)
        if node_id in seen:
            raise ComputationError(f"Duplicate node id: {node_id}")
        seen.add(node_id)

        weight = _number(raw.get("weight", 1.0), f"Weight of node {node_id}")
        if weight < 0:
            raise ComputationError(f"Weight of node {node_id} must be >= 0, got {weight}")

        metadata = dict(raw.get("metadata") or {})
        if raw.get("community") is not None:
            metadata["community"] = raw["community"]
        parsed.nodes.append({
            "id": node_id,
            "label": str(raw.get("name") or raw.get("label") or node_id),
            "weight": weight,
            "embedding": raw.get("embedding"),
            "metadata": metadata,
        })

    merged: Dict[Tuple[str, str], Connection] = {}
    for raw in raw_edges:
        if not isinstance(raw, Mapping):
            parsed.dropped_edges += 1
            continue
        source, target = raw.get("source"), raw.get("target")
        if source is None or target is None or str(source) not in seen or str(target) not in seen:
            parsed.dropped_edges += 1
            continue
        source, target = str(source), str(target)
        if source == target:
            parsed.self_loops += 1
            continue
        weight = _number(raw.get("weight", 1.0), f"Weight of edge {source}-{target}")
        if weight <= 0:
            parsed.non_positive_edges += 1
            continue
        conn = Connection(source=source, target=target, weight=weight, statement=raw.get("statement"))
        existing = merged.get(conn.key)
        if existing is None:
            merged[conn.key] = conn
        elif weight > existing.weight:
            merged[conn.key] = replace(existing, weight=weight)
    parsed.connections = list(merged.values())
    return parsed


def cluster_nodes(nodes: Sequence[ConceptNode], geometry: GeometryManager, threshold: float) -> List[Cluster]:
    """
    Greedy single-pass clustering in node order.

    A node joins the cluster whose running centroid it is most similar to, provided
    the similarity is strictly greater than ``threshold``; on equal similarity the
    earliest-created cluster wins. Otherwise it seeds a new cluster.
    """
    members: List[List[ConceptNode]] = []
    centroids: List[np.ndarray] = []
    for node in nodes:
        best_index, best_similarity = None, threshold
        for index, centroid in enumerate(centroids):
            similarity = geometry.calculate_similarity(node.embedding, centroid)
            if similarity > best_similarity:
                best_index, best_similarity = index, similarity
        if best_index is None:
            members.append([node])
            centroids.append(geometry.normalize_embedding(node.embedding))
        else:
            members[best_index].append(node)
            centroids[best_index] = geometry.update_centroid(centroids[best_index], node.embedding, len(members[best_index]))

    return [
        Cluster(
            id=f"cluster-{i}",
            name=f"Cluster {i + 1}",
            node_ids=tuple(n.id for n in group),
            coherence=geometry.mean_pairwise_similarity([n.embedding for n in group]),
            centroid=centroids[i],
        )
        for i, group in enumerate(members)
    ]


def derive_connections(nodes: Sequence[ConceptNode],
                       clusters: Sequence[Cluster],
                       connections: Sequence[Connection],
                       geometry: GeometryManager,
                       threshold: float,
                       max_per_node: int) -> List[Connection]:
    """Similarity links between unconnected members of the same cluster, strongest first."""
    if max_per_node <= 0:
        return []
    node_map = {n.id: n for n in nodes}
    existing = {c.key for c in connections}
    per_node: Counter = Counter()
    derived: List[Connection] = []
    for cluster in clusters:
        ids = cluster.node_ids
        candidates = []
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                a, b = ids[i], ids[j]
                if (min(a, b), max(a, b)) in existing:
                    continue
                similarity = geometry.calculate_similarity(node_map[a].embedding, node_map[b].embedding)
                if similarity > threshold and similarity > 0:
                    candidates.append((similarity, a, b))
        candidates.sort(key=lambda t: -t[0])
        for similarity, a, b in candidates:
            if per_node[a] >= max_per_node or per_node[b] >= max_per_node:
                continue
            derived.append(Connection(source=a, target=b, weight=float(similarity), derived=True))
            per_node[a] += 1
            per_node[b] += 1
    return derived


def assign_layers(nodes: Sequence[ConceptNode], connections: Sequence[Connection], network_depth: int) -> Tuple[List[Layer], Dict[str, int], Dict[str, float]]:
    """
    Rank nodes by centrality ``(degree + 1) * weight`` (stable, descending) and slice
    the ranking into ``network_depth`` bands. Most central nodes land at depth 0.
    """
    degree: Counter = Counter()
    for conn in connections:
        degree[conn.source] += 1
        degree[conn.target] += 1
    centrality = {n.id: (degree[n.id] + 1) * n.weight for n in nodes}
    ranked = sorted(nodes, key=lambda n: -centrality[n.id])

    count = len(ranked)
    layer_of: Dict[str, int] = {}
    bands: List[List[str]] = [[] for _ in range(network_depth)]
    for rank, node in enumerate(ranked):
        depth = rank * network_depth // count
        layer_of[node.id] = depth
        bands[depth].append(node.id)

    layers = [Layer(depth=d, node_ids=tuple(ids)) for d, ids in enumerate(bands) if ids]
    return layers, layer_of, centrality


def betweenness_centrality(node_ids: Sequence[str], connections: Sequence[Connection]) -> Dict[str, float]:
    """Brandes' algorithm on the unweighted, undirected graph, normalized to [0, 1]."""
    adjacency: Dict[str, List[str]] = {v: [] for v in node_ids}
    for conn in connections:
        adjacency[conn.source].append(conn.target)
        adjacency[conn.target].append(conn.source)

    scores = dict.fromkeys(node_ids, 0.0)
    for s in node_ids:
        stack: List[str] = []
        predecessors: Dict[str, List[str]] = {v: [] for v in node_ids}
        sigma = dict.fromkeys(node_ids, 0)
        sigma[s] = 1
        distance = dict.fromkeys(node_ids, -1)
        distance[s] = 0
        queue = deque([s])
        while queue:
            v = queue.popleft()
            stack.append(v)
            for w in adjacency[v]:
                if distance[w] < 0:
                    distance[w] = distance[v] + 1
                    queue.append(w)
                if distance[w] == distance[v] + 1:
                    sigma[w] += sigma[v]
                    predecessors[w].append(v)
        delta = dict.fromkeys(node_ids, 0.0)
        while stack:
            w = stack.pop()
            for v in predecessors[w]:
                delta[v] += sigma[v] / sigma[w] * (1.0 + delta[w])
            if w != s:
                scores[w] += delta[w]

    n = len(node_ids)
    # Each undirected path is counted from both ends
    scale = 1.0 / ((n - 1) * (n - 2)) if n > 2 else 0.0
    return {v: float(min(max(score * scale, 0.0), 1.0)) for v, score in scores.items()}


def compute_metrics(nodes: Sequence[ConceptNode], connections: Sequence[Connection], clusters: Sequence[Cluster], layers: Sequence[Layer]) -> CognitiveMetrics:
    n, m = len(nodes), len(connections)
    avg_coherence = float(np.mean([c.coherence for c in clusters])) if clusters else 0.0
    complexity = 0.4 * avg_coherence + 0.3 * min(len(clusters) / 10.0, 1.0) + 0.3 * min(len(layers) / 5.0, 1.0)

    cluster_of = {node_id: c.id for c in clusters for node_id in c.node_ids}
    intra = sum(1 for c in connections if cluster_of.get(c.source) == cluster_of.get(c.target))

    return CognitiveMetrics(
        node_count=n,
        connection_count=m,
        cluster_count=len(clusters),
        layer_count=len(layers),
        avg_cluster_coherence=avg_coherence,
        knowledge_density=m / max(n, 1),
        cognitive_complexity_score=complexity if n else 0.0,
        density=m / (n * (n - 1) / 2.0) if n > 1 else 0.0,
        cohesion=intra / m if m else 0.0,
        layer_distribution=[len(layer.node_ids) / n for layer in layers] if n else [],
    )


class MapStructureBuilder:
    """Builds NeuralMapStructures; also re-derives clusters, layers and metrics for evolution and merge."""

    def __init__(self, derive_similarity_connections: bool = True, max_derived_connections_per_node: int = 5):
        self.derive_similarity_connections = derive_similarity_connections
        self.max_derived_connections_per_node = max_derived_connections_per_node
        self._geometries: Dict[int, GeometryManager] = {}

    def geometry_for(self, dimension: int) -> GeometryManager:
        geometry = self._geometries.get(dimension)
        if geometry is None:
            geometry = self._geometries[dimension] = GeometryManager(embedding_dim=dimension)
        return geometry

    def build(self,
              raw_graph: Mapping[str, Any],
              embeddings_by_node_id: Mapping[str, Any],
              network: NetworkModel,
              derive_similarity_connections: Optional[bool] = None,
              map_id: Optional[str] = None) -> NeuralMapStructure:
        """
        Build a structure from a raw graph.

        Args:
            raw_graph: ``{"nodes": [...], "edges": [...]}`` as returned by a graph store
            embeddings_by_node_id: vectors keyed by node id; a raw node's own
                ``embedding`` is used when the mapping has none for it
            network: parameters (dimension, depth, threshold) for this context

        Raises:
            ComputationError: malformed raw graph or a broken structural invariant
        """
        parsed = parse_raw_graph(raw_graph)
        geometry = self.geometry_for(network.embedding_dimension)

        nodes: List[ConceptNode] = []
        excluded: List[str] = []
        for raw in parsed.nodes:
            vector = embeddings_by_node_id.get(raw["id"])
            if vector is None:
                vector = raw["embedding"]
            prepared = geometry.prepare(vector, f"Embedding of {raw['id']}")
            if prepared is None:
                excluded.append(raw["id"])
                continue
            nodes.append(ConceptNode(
                id=raw["id"],
                label=raw["label"],
                embedding=prepared,
                weight=raw["weight"],
                metadata=raw["metadata"],
            ))

        kept = {n.id for n in nodes}
        connections = [c for c in parsed.connections if c.source in kept and c.target in kept]
        diagnostics: Dict[str, Any] = {
            "dropped_edges": parsed.dropped_edges + len(parsed.connections) - len(connections),
            "self_loops": parsed.self_loops,
            "non_positive_edges": parsed.non_positive_edges,
            "excluded_nodes": excluded,
        }
        if excluded:
            logger.warning("MapStructureBuilder", f"Excluded {len(excluded)} nodes without a usable embedding", {"node_ids": excluded[:10]})
        if diagnostics["dropped_edges"]:
            logger.debug("MapStructureBuilder", f"Dropped {diagnostics['dropped_edges']} edges with unknown endpoints")

        return self.restructure(
            nodes, connections, network,
            map_id=map_id or new_map_id(),
            derive_similarity_connections=derive_similarity_connections,
            diagnostics=diagnostics,
        )

    def restructure(self,
                    nodes: Sequence[ConceptNode],
                    connections: Sequence[Connection],
                    network: NetworkModel,
                    map_id: str,
                    derive_similarity_connections: Optional[bool] = None,
                    diagnostics: Optional[Dict[str, Any]] = None,
                    threshold: Optional[float] = None) -> NeuralMapStructure:
        """Recompute clusters, derived links, layers, centrality and metrics for a node set."""
        geometry = self.geometry_for(network.embedding_dimension)
        threshold = network.min_similarity_threshold if threshold is None else threshold
        derive = self.derive_similarity_connections if derive_similarity_connections is None else derive_similarity_connections

        nodes = list(nodes)
        connections = list(connections)
        ids = {n.id for n in nodes}
        dangling = [c.key for c in connections if c.source not in ids or c.target not in ids]
        if dangling:
            raise ComputationError(f"Map {map_id}: {len(dangling)} connections reference missing nodes, e.g. {dangling[0]}")
        clusters = cluster_nodes(nodes, geometry, threshold)
        if derive:
            connections.extend(derive_connections(nodes, clusters, connections, geometry, threshold, self.max_derived_connections_per_node))

        layers, layer_of, centrality = assign_layers(nodes, connections, network.network_depth)
        betweenness = betweenness_centrality([n.id for n in nodes], connections)
        max_centrality = max(centrality.values(), default=0.0)
        cluster_of = {node_id: c.id for c in clusters for node_id in c.node_ids}

        finished = [
            replace(
                node,
                community_id=cluster_of[node.id],
                layer_index=layer_of[node.id],
                betweenness=betweenness[node.id],
                relevance=centrality[node.id] / max_centrality if max_centrality > 0 else 0.0,
            )
            for node in nodes
        ]

        structure = NeuralMapStructure(
            id=map_id,
            nodes=finished,
            connections=connections,
            layers=layers,
            clusters=clusters,
            cognitive_metrics=compute_metrics(finished, connections, clusters, layers),
            network_depth=network.network_depth,
            embedding_dimension=network.embedding_dimension,
            diagnostics=dict(diagnostics or {}),
        )
        structure.check_invariants()

        logger.debug("MapStructureBuilder", f"Structured map {map_id}", {
            "nodes": len(finished),
            "connections": len(connections),
            "clusters": len(clusters),
            "layers": len(layers),
        })
        return structure
