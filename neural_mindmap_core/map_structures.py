# neural_mindmap_core/map_structures.py

import uuid
import numpy as np
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Tuple

from .custom_logger import logger
from .errors import ComputationError


def new_map_id(prefix: str = "map") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _vector_or_none(data: Any) -> Optional[np.ndarray]:
    if data is None:
        return None
    return np.asarray(data, dtype=np.float32)


@dataclass(frozen=True, eq=False)
class ConceptNode:
    """A concept in a mind map. Never mutated in place; use dataclasses.replace."""

    id: str
    label: str
    embedding: np.ndarray
    weight: float = 1.0
    community_id: str = ""
    betweenness: float = 0.0
    relevance: float = 0.0
    layer_index: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_embedding: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "label": self.label,
            "weight": self.weight,
            "community_id": self.community_id,
            "betweenness": self.betweenness,
            "relevance": self.relevance,
            "layer_index": self.layer_index,
            "metadata": dict(self.metadata),
        }
        if include_embedding:
            data["embedding"] = self.embedding.tolist() if self.embedding is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConceptNode":
        return cls(
            id=str(data["id"]),
            label=data.get("label", str(data["id"])),
            embedding=_vector_or_none(data.get("embedding")),
            weight=float(data.get("weight", 1.0)),
            community_id=data.get("community_id", ""),
            betweenness=float(data.get("betweenness", 0.0)),
            relevance=float(data.get("relevance", 0.0)),
            layer_index=int(data.get("layer_index", 0)),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass(frozen=True)
class Connection:
    """Undirected link between two concepts of the same map."""

    source: str
    target: str
    weight: float = 1.0
    statement: Optional[str] = None
    derived: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.target) if self.source <= self.target else (self.target, self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "weight": self.weight,
            "statement": self.statement,
            "derived": self.derived,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Connection":
        return cls(
            source=str(data["source"]),
            target=str(data["target"]),
            weight=float(data.get("weight", 1.0)),
            statement=data.get("statement"),
            derived=bool(data.get("derived", False)),
        )


@dataclass(frozen=True, eq=False)
class Cluster:
    id: str
    node_ids: Tuple[str, ...]
    coherence: float
    centroid: Optional[np.ndarray] = None
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "node_ids": list(self.node_ids),
            "coherence": self.coherence,
        }


@dataclass(frozen=True)
class Layer:
    depth: int
    node_ids: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": f"layer-{self.depth}", "depth": self.depth, "node_ids": list(self.node_ids)}


@dataclass
class CognitiveMetrics:
    node_count: int = 0
    connection_count: int = 0
    cluster_count: int = 0
    layer_count: int = 0
    avg_cluster_coherence: float = 0.0
    knowledge_density: float = 0.0
    cognitive_complexity_score: float = 0.0
    density: float = 0.0
    cohesion: float = 0.0
    layer_distribution: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_count": self.node_count,
            "connection_count": self.connection_count,
            "cluster_count": self.cluster_count,
            "layer_count": self.layer_count,
            "avg_cluster_coherence": self.avg_cluster_coherence,
            "knowledge_density": self.knowledge_density,
            "cognitive_complexity_score": self.cognitive_complexity_score,
            "density": self.density,
            "cohesion": self.cohesion,
            "layer_distribution": list(self.layer_distribution),
        }


@dataclass
class EvolutionMetrics:
    original_size: int
    new_size: int
    novelty: float
    added_nodes: int = 0
    pruned_nodes: int = 0
    added_connections: int = 0
    creativity_factor: float = 0.0
    generation: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_size": self.original_size,
            "new_size": self.new_size,
            "novelty": self.novelty,
            "added_nodes": self.added_nodes,
            "pruned_nodes": self.pruned_nodes,
            "added_connections": self.added_connections,
            "creativity_factor": self.creativity_factor,
            "generation": self.generation,
        }


@dataclass
class EmergentPattern:
    type: str
    description: str
    node_ids: List[str] = field(default_factory=list)
    confidence: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "description": self.description, "node_ids": list(self.node_ids), "confidence": self.confidence}


@dataclass
class Insight:
    type: str
    description: str
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "description": self.description, "confidence": self.confidence, "details": dict(self.details)}


@dataclass
class NeuralMapStructure:
    """A layered, clustered concept map. Owned by the ConceptMapStore once committed."""

    id: str
    nodes: List[ConceptNode] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)
    layers: List[Layer] = field(default_factory=list)
    clusters: List[Cluster] = field(default_factory=list)
    cognitive_metrics: CognitiveMetrics = field(default_factory=CognitiveMetrics)
    network_depth: int = 5
    embedding_dimension: int = 768
    evolution_metrics: Optional[EvolutionMetrics] = None
    emergent_patterns: List[EmergentPattern] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)
    visualization: Optional[Dict[str, Any]] = None
    merge_metrics: Optional[Dict[str, Any]] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def node_map(self) -> Dict[str, ConceptNode]:
        return {n.id: n for n in self.nodes}

    def get_node(self, node_id: str) -> Optional[ConceptNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def cluster_of(self) -> Dict[str, str]:
        return {node_id: c.id for c in self.clusters for node_id in c.node_ids}

    def check_invariants(self):
        """Raise ComputationError when a structural invariant does not hold."""
        ids = self.node_ids()
        id_set = set(ids)
        if len(id_set) != len(ids):
            raise ComputationError(f"Map {self.id} contains duplicate node ids")

        for node in self.nodes:
            if node.embedding is None or node.embedding.shape != (self.embedding_dimension,):
                raise ComputationError(f"Node {node.id} embedding does not match dimension {self.embedding_dimension}")
            if not 0 <= node.layer_index < self.network_depth:
                raise ComputationError(f"Node {node.id} layer {node.layer_index} outside [0, {self.network_depth})")

        for conn in self.connections:
            if conn.source not in id_set or conn.target not in id_set:
                raise ComputationError(f"Connection {conn.source}->{conn.target} references a missing node")
            if conn.source == conn.target:
                raise ComputationError(f"Self-loop on {conn.source}")
            if conn.weight <= 0:
                raise ComputationError(f"Connection {conn.source}->{conn.target} has non-positive weight")

        members = [node_id for c in self.clusters for node_id in c.node_ids]
        if len(members) != len(set(members)) or set(members) != id_set:
            raise ComputationError(f"Clusters of map {self.id} do not partition its nodes")

        layered = [node_id for layer in self.layers for node_id in layer.node_ids]
        if len(layered) != len(set(layered)) or set(layered) != id_set:
            raise ComputationError(f"Layers of map {self.id} do not partition its nodes")

    def to_dict(self, include_embeddings: bool = False) -> Dict[str, Any]:
        try:
            return {
                "id": self.id,
                "created_at": self.created_at.isoformat(),
                "network_depth": self.network_depth,
                "embedding_dimension": self.embedding_dimension,
                "nodes": [n.to_dict(include_embedding=include_embeddings) for n in self.nodes],
                "connections": [c.to_dict() for c in self.connections],
                "layers": [layer.to_dict() for layer in self.layers],
                "clusters": [c.to_dict() for c in self.clusters],
                "cognitive_metrics": self.cognitive_metrics.to_dict(),
                "evolution_metrics": self.evolution_metrics.to_dict() if self.evolution_metrics else None,
                "emergent_patterns": [p.to_dict() for p in self.emergent_patterns],
                "insights": [i.to_dict() for i in self.insights],
                "visualization": self.visualization,
                "merge_metrics": self.merge_metrics,
                "diagnostics": dict(self.diagnostics),
            }
        except Exception as e:
            logger.error("NeuralMapStructure", f"Error serializing mind map {self.id}: {str(e)}", exc_info=True)
            raise
