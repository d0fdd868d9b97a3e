# neural_mindmap_core/merge_engine.py

import numpy as np
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from .config import MergeOptions, MindMapConfig
from .custom_logger import logger
from .errors import ValidationError
from .map_structures import ConceptNode, Connection, NeuralMapStructure, new_map_id
from .network_model import NetworkModel
from .structure_builder import MapStructureBuilder


@dataclass
class _MergedRecord:
    id: str
    label: str
    weight: float
    relevance: float
    vectors: List[np.ndarray]
    embedding: np.ndarray
    metadata: Dict[str, Any]
    contexts: Set[str] = field(default_factory=set)
    sources: List[str] = field(default_factory=list)


class MergeEngine:
    """
    Combines several per-context maps into one.

    Nodes are visited in source order. Each node is compared with the merged nodes
    that came from other sources; the most similar one above the merge threshold
    absorbs it (equal similarity goes to the lowest node id). Everything else is
    carried over, prefixed with ``<context>:`` when its id is already taken.
    """

    def __init__(self, builder: MapStructureBuilder, config: Optional[MindMapConfig] = None):
        self.builder = builder
        self.config = config or MindMapConfig()

    def _best_match(self, vector: np.ndarray, context: str, records: Sequence[_MergedRecord], threshold: float, geometry) -> Optional[_MergedRecord]:
        best, best_similarity = None, threshold
        for record in records:
            if context in record.contexts:
                continue
            similarity = geometry.calculate_similarity(vector, record.embedding)
            if similarity <= threshold:
                continue
            if best is None or similarity > best_similarity or (similarity == best_similarity and record.id < best.id):
                best, best_similarity = record, similarity
        return best

    def merge(self,
              structures: Sequence[Tuple[str, NeuralMapStructure]],
              network: NetworkModel,
              options: Union[MergeOptions, Dict[str, Any], None] = None,
              map_id: Optional[str] = None) -> NeuralMapStructure:
        """
        Merge ``(context, structure)`` pairs into a new structure.

        Sources are read only. The result carries ``merge_metrics`` with the source
        contexts, the number of coalesced nodes and the number of connections that
        join nodes of different origin.
        """
        options = MergeOptions.from_value(options)
        contexts = [context for context, _ in structures]
        if len(set(contexts)) < 2:
            raise ValidationError("At least two context names are required for merging")
        threshold = self.config.effective_merge_threshold if options.similarity_threshold is None else options.similarity_threshold
        geometry = self.builder.geometry_for(network.embedding_dimension)

        records: List[_MergedRecord] = []
        by_id: Dict[str, _MergedRecord] = {}
        id_map: Dict[Tuple[str, str], str] = {}
        coalesced = 0
        skipped: List[str] = []

        for context, structure in structures:
            for node in structure.nodes:
                vector = geometry.prepare(node.embedding, f"Embedding of {context}:{node.id}")
                if vector is None:
                    skipped.append(f"{context}:{node.id}")
                    continue

                match = self._best_match(vector, context, records, threshold, geometry)
                if match is not None:
                    match.vectors.append(vector)
                    match.embedding = geometry.mean_embedding(match.vectors)
                    if node.relevance > match.relevance:
                        match.label = node.label
                    match.weight = max(match.weight, node.weight)
                    match.relevance = max(match.relevance, node.relevance)
                    match.contexts.add(context)
                    match.sources.append(f"{context}:{node.id}")
                    id_map[(context, node.id)] = match.id
                    coalesced += 1
                    continue

                merged_id = node.id
                if merged_id in by_id:
                    merged_id = f"{context}:{node.id}"
                    while merged_id in by_id:
                        merged_id += "'"
                record = _MergedRecord(
                    id=merged_id,
                    label=node.label,
                    weight=node.weight,
                    relevance=node.relevance,
                    vectors=[vector],
                    embedding=vector,
                    metadata=dict(node.metadata),
                    contexts={context},
                    sources=[f"{context}:{node.id}"],
                )
                records.append(record)
                by_id[merged_id] = record
                id_map[(context, node.id)] = merged_id

        merged_connections: Dict[Tuple[str, str], Connection] = {}
        for context, structure in structures:
            for conn in structure.connections:
                source = id_map.get((context, conn.source))
                target = id_map.get((context, conn.target))
                if source is None or target is None or source == target:
                    continue
                remapped = Connection(source=source, target=target, weight=conn.weight, statement=conn.statement, derived=conn.derived)
                existing = merged_connections.get(remapped.key)
                if existing is None:
                    merged_connections[remapped.key] = remapped
                elif remapped.weight > existing.weight:
                    merged_connections[remapped.key] = remapped

        nodes = [
            ConceptNode(
                id=r.id,
                label=r.label,
                embedding=r.embedding,
                weight=r.weight,
                relevance=r.relevance,
                metadata={**r.metadata, "source_contexts": sorted(r.contexts), "merged_from": list(r.sources)},
            )
            for r in records
        ]

        merged = self.builder.restructure(
            nodes, list(merged_connections.values()), network,
            map_id=map_id or new_map_id("merged"),
            diagnostics={"skipped_nodes": skipped} if skipped else None,
        )

        cross_context = sum(1 for c in merged.connections if by_id[c.source].contexts != by_id[c.target].contexts)
        merged.merge_metrics = {
            "source_contexts": contexts,
            "source_map_ids": [s.id for _, s in structures],
            "coalesced_nodes": coalesced,
            "cross_context_connections": cross_context,
            "similarity_threshold": threshold,
        }
        logger.info("MergeEngine", f"Merged {len(structures)} maps into {merged.id}", merged.merge_metrics)
        return merged
