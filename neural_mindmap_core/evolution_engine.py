# neural_mindmap_core/evolution_engine.py

import hashlib
import math
import re
import numpy as np
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from .config import EvolveOptions, MindMapConfig
from .custom_logger import logger
from .map_structures import (
    ConceptNode, Connection, EmergentPattern, EvolutionMetrics, NeuralMapStructure
)
from .network_model import NetworkModel
from .structure_builder import MapStructureBuilder

_EVOLVED_ID = re.compile(r"^evolved-(.+)-g(\d+)$")

# Magnitude of the creativity-scaled perturbation applied to blended embeddings
PERTURBATION_SCALE = 0.5
# Floor for the weight of a novel concept's link to its parent
MIN_PARENT_LINK_WEIGHT = 0.1


def plan_novel_concept_count(node_count: int,
                             creativity_factor: float,
                             evolution_steps: int,
                             explicit: Optional[int] = None,
                             cap: int = 25) -> int:
    """How many novel concepts one evolution introduces. An explicit count always wins."""
    if explicit is not None:
        return int(explicit)
    planned = int(round(creativity_factor * evolution_steps * math.sqrt(max(node_count, 1))))
    return max(0, min(planned, cap))


def score_novelty(added_nodes: int, added_connections: int, pruned_nodes: int,
                  new_node_count: int, new_connection_count: int) -> float:
    """Share of the evolved map that is new or was removed, in [0, 1]."""
    denominator = new_node_count + new_connection_count + pruned_nodes
    if denominator <= 0:
        return 0.0
    return float(min(max((added_nodes + added_connections + pruned_nodes) / denominator, 0.0), 1.0))


def derive_evolved_id(baseline_id: str) -> str:
    """``map-x`` -> ``evolved-map-x-g1`` -> ``evolved-map-x-g2``."""
    match = _EVOLVED_ID.match(baseline_id)
    if match:
        return f"evolved-{match.group(1)}-g{int(match.group(2)) + 1}"
    return f"evolved-{baseline_id}-g1"


def generation_of(map_id: str) -> int:
    match = _EVOLVED_ID.match(map_id)
    return int(match.group(2)) if match else 0


def _seed(*parts: Union[str, int, float]) -> int:
    digest = hashlib.sha256(":".join(str(p) for p in parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "little")


def _jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def detect_emergent_patterns(baseline: NeuralMapStructure, evolved: NeuralMapStructure) -> List[EmergentPattern]:
    """
    Compare an evolved map against its baseline.

    Reports clusters made only of new concepts, multi-node clusters with little
    overlap (Jaccard < 0.5) with every baseline cluster, and new concepts that link
    two or more baseline clusters.
    """
    baseline_ids = set(baseline.node_ids())
    novel_ids = set(evolved.node_ids()) - baseline_ids
    baseline_clusters = [set(c.node_ids) for c in baseline.clusters]
    patterns: List[EmergentPattern] = []

    for cluster in evolved.clusters:
        members = set(cluster.node_ids)
        if members <= novel_ids:
            patterns.append(EmergentPattern(
                type="novel_concept_cluster",
                description=f"{cluster.id} consists entirely of newly introduced concepts",
                node_ids=list(cluster.node_ids),
                confidence=0.7,
            ))
            continue
        if len(members) < 2:
            continue
        best_overlap = max((_jaccard(members, previous) for previous in baseline_clusters), default=0.0)
        if best_overlap < 0.5:
            patterns.append(EmergentPattern(
                type="emergent_cluster",
                description=f"{cluster.id} groups concepts that were not clustered together before",
                node_ids=list(cluster.node_ids),
                confidence=round(max(0.5, 1.0 - best_overlap), 4),
            ))

    baseline_cluster_of = baseline.cluster_of()
    neighbours: Dict[str, Set[str]] = {}
    for conn in evolved.connections:
        neighbours.setdefault(conn.source, set()).add(conn.target)
        neighbours.setdefault(conn.target, set()).add(conn.source)
    for node_id in sorted(novel_ids):
        linked = sorted(n for n in neighbours.get(node_id, ()) if n in baseline_ids)
        reached = {baseline_cluster_of[n] for n in linked if n in baseline_cluster_of}
        if len(reached) >= 2:
            patterns.append(EmergentPattern(
                type="bridge",
                description=f"New concept {node_id} bridges {len(reached)} previously separate clusters",
                node_ids=[node_id] + linked,
                confidence=round(min(1.0, 0.5 + 0.1 * len(reached)), 4),
            ))
    return patterns


class EvolutionEngine:
    """Produces a new generation of a map under a creativity parameter."""

    def __init__(self, builder: MapStructureBuilder, config: Optional[MindMapConfig] = None):
        self.builder = builder
        self.config = config or MindMapConfig()

    def _prune(self, baseline: NeuralMapStructure, options: EvolveOptions) -> Tuple[List[ConceptNode], int]:
        survivors = []
        for node in baseline.nodes:
            protected = options.preserve_core_concepts and node.layer_index == 0
            if node.relevance < options.prune_below_relevance and not protected:
                continue
            survivors.append(node)
        return survivors, len(baseline.nodes) - len(survivors)

    def _novel_concepts(self, baseline: NeuralMapStructure, parents_pool: Sequence[ConceptNode],
                        count: int, creativity: float, generation: int) -> List[Tuple[ConceptNode, Tuple[ConceptNode, ...]]]:
        geometry = self.builder.geometry_for(baseline.embedding_dimension)
        ranked = sorted(parents_pool, key=lambda n: -n.relevance)
        taken = {n.id for n in baseline.nodes}
        created = []
        for k in range(count):
            if len(ranked) == 1:
                parents = (ranked[0],)
            else:
                parents = (ranked[k % len(ranked)], ranked[(k + 1) % len(ranked)])

            base = geometry.mean_embedding([p.embedding for p in parents])
            rng = np.random.default_rng(_seed(baseline.id, k, creativity))
            noise = geometry.normalize_embedding(rng.standard_normal(baseline.embedding_dimension).astype(np.float32))
            vector = geometry.prepare(base + creativity * PERTURBATION_SCALE * noise, f"Novel concept {k}")
            if vector is None:
                vector = base

            node_id = f"novel-g{generation}-{k + 1}"
            while node_id in taken:
                node_id += "'"
            taken.add(node_id)

            label = f"{parents[0].label} (variant)" if len(parents) == 1 else f"{parents[0].label} + {parents[1].label}"
            node = ConceptNode(
                id=node_id,
                label=label,
                embedding=vector,
                weight=float(np.mean([p.weight for p in parents])),
                metadata={
                    "novel": True,
                    "generation": generation,
                    "parents": [p.id for p in parents],
                    "creativity_factor": creativity,
                },
            )
            created.append((node, parents))
        return created

    def evolve(self,
               baseline: NeuralMapStructure,
               network: NetworkModel,
               options: Union[EvolveOptions, Dict[str, Any], None] = None) -> Tuple[NeuralMapStructure, List[EmergentPattern]]:
        """
        Evolve ``baseline`` into a new generation.

        Returns:
            The evolved structure (new id, ``evolution_metrics`` set) and the emergent
            patterns found when comparing it to the baseline. The baseline is not modified.

        Raises:
            ValidationError: creativity outside [0, 1] or non-positive evolution steps
            ComputationError: the evolved structure broke a structural invariant
        """
        options = EvolveOptions.from_value(options).resolved(self.config)
        creativity = float(options.creativity_factor)
        if network.embedding_dimension != baseline.embedding_dimension:
            logger.warning("EvolutionEngine", f"Network dimension {network.embedding_dimension} differs from map {baseline.id}; keeping the map's {baseline.embedding_dimension}")
            network = replace(network, embedding_dimension=baseline.embedding_dimension, centroids={})

        evolved_id = derive_evolved_id(baseline.id)
        generation = generation_of(evolved_id)
        geometry = self.builder.geometry_for(baseline.embedding_dimension)
        loosened = network.min_similarity_threshold * (1.0 - 0.5 * creativity)
        max_links = self.builder.max_derived_connections_per_node

        survivors, pruned = self._prune(baseline, options)
        surviving_ids = {n.id for n in survivors}
        connections = [c for c in baseline.connections if c.source in surviving_ids and c.target in surviving_ids]
        existing = {c.key for c in connections}

        novel_count = 0
        if options.introduce_novel_concepts and survivors:
            novel_count = plan_novel_concept_count(len(baseline.nodes), creativity, options.evolution_steps,
                                                   explicit=options.novel_concepts, cap=self.config.max_novel_concepts)

        nodes: List[ConceptNode] = list(survivors)
        for novel, parents in self._novel_concepts(baseline, survivors, novel_count, creativity, generation):
            for parent in parents:
                link = Connection(source=parent.id, target=novel.id,
                                  weight=max(geometry.calculate_similarity(parent.embedding, novel.embedding), MIN_PARENT_LINK_WEIGHT),
                                  statement="derived from parent concept")
                if link.key not in existing:
                    connections.append(link)
                    existing.add(link.key)

            candidates = []
            for other in nodes:
                key = (min(other.id, novel.id), max(other.id, novel.id))
                if key in existing:
                    continue
                similarity = geometry.calculate_similarity(other.embedding, novel.embedding)
                if similarity > loosened and similarity > 0:
                    candidates.append((similarity, other.id))
            candidates.sort(key=lambda t: -t[0])
            for similarity, other_id in candidates[:max_links]:
                link = Connection(source=other_id, target=novel.id, weight=float(similarity), derived=True)
                connections.append(link)
                existing.add(link.key)
            nodes.append(novel)

        # Associations between surviving concepts of different clusters
        if novel_count:
            cross = []
            for i in range(len(survivors)):
                for j in range(i + 1, len(survivors)):
                    a, b = survivors[i], survivors[j]
                    if a.community_id == b.community_id or (min(a.id, b.id), max(a.id, b.id)) in existing:
                        continue
                    similarity = geometry.calculate_similarity(a.embedding, b.embedding)
                    if similarity > loosened and similarity > 0:
                        cross.append((similarity, a.id, b.id))
            cross.sort(key=lambda t: -t[0])
            for similarity, a_id, b_id in cross[:novel_count]:
                link = Connection(source=a_id, target=b_id, weight=float(similarity), derived=True,
                                  statement="cross-cluster association")
                connections.append(link)
                existing.add(link.key)

        evolved = self.builder.restructure(
            nodes, connections, network,
            map_id=evolved_id,
            diagnostics={"baseline_id": baseline.id},
        )

        baseline_keys = {c.key for c in baseline.connections}
        added_connections = sum(1 for c in evolved.connections if c.key not in baseline_keys)
        evolved.evolution_metrics = EvolutionMetrics(
            original_size=len(baseline.nodes),
            new_size=len(evolved.nodes),
            novelty=score_novelty(novel_count, added_connections, pruned, len(evolved.nodes), len(evolved.connections)),
            added_nodes=novel_count,
            pruned_nodes=pruned,
            added_connections=added_connections,
            creativity_factor=creativity,
            generation=generation,
        )

        try:
            patterns = detect_emergent_patterns(baseline, evolved)
        except Exception as e:
            logger.error("EvolutionEngine", f"Emergent pattern detection failed for {evolved_id}: {str(e)}", exc_info=True)
            patterns = []
            evolved.diagnostics["pattern_detection_failed"] = True
        evolved.emergent_patterns = patterns

        logger.info("EvolutionEngine", f"Evolved {baseline.id} into {evolved_id}", evolved.evolution_metrics.to_dict())
        return evolved, patterns
