# neural_mindmap_core/neural_mindmap_core.py

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .collaborators import (
    EmbeddingProvider, ExpansionJobSystem, GraphStore, HashingEmbeddingProvider, InMemoryGraphStore,
    InsightGenerator, RadialVisualizationAdapter, StructuralInsightGenerator, VisualizationAdapter
)
from .config import EvolveOptions, GenerateOptions, InsightOptions, MergeOptions, MindMapConfig
from .custom_logger import logger
from .embedding_cache import EmbeddingCache
from .errors import MindMapError, NotFoundError, UpstreamError, ValidationError
from .evolution_engine import EvolutionEngine
from .expansion_coordinator import ExpansionResult, GraphExpansionCoordinator
from .map_store import ConceptMapStore
from .map_structures import EmergentPattern, Insight, NeuralMapStructure
from .merge_engine import MergeEngine
from .metrics.merge_tracker import MergeTracker
from .network_model import NetworkModelManager
from .structure_builder import MapStructureBuilder

# Outbound event types
MIND_MAP_CREATED = "mind_map_created"
MIND_MAP_EVOLVED = "mind_map_evolved"
MIND_MAPS_MERGED = "mind_maps_merged"
INSIGHTS_EXTRACTED = "insights_extracted"


@dataclass
class MindMapEvent:
    type: str
    user_id: str
    context: str
    map_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "user_id": self.user_id,
            "context": self.context,
            "map_id": self.map_id,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
        }


def _check_name(name: str, value: Any):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")


class NeuralMindMapCore:
    """
    Neural Mind Map Engine.

    Generates layered, clustered concept maps from a user's concept graph, evolves
    them under a creativity parameter and merges maps of several contexts. Every
    write holds the per-(user, context) lock for its whole duration and commits only
    when every step succeeded.
    """

    def __init__(self,
                 config: Union[MindMapConfig, Dict[str, Any], None] = None,
                 embedding_provider: Optional[EmbeddingProvider] = None,
                 graph_store: Optional[GraphStore] = None,
                 expansion_jobs: Optional[ExpansionJobSystem] = None,
                 insight_generator: Optional[InsightGenerator] = None,
                 visualization_adapter: Optional[VisualizationAdapter] = None):
        self.config = MindMapConfig.coerce(config)
        logger.info("NeuralMindMapCore", "Initializing...", self.config.to_dict())
        self.start_time = time.time()

        # --- Collaborators ---
        self.embedding_provider = embedding_provider or HashingEmbeddingProvider(self.config.embedding_dimension)
        self.graph_store = graph_store or InMemoryGraphStore()
        self.insight_generator = insight_generator or StructuralInsightGenerator()
        self.visualization_adapter = visualization_adapter or RadialVisualizationAdapter()
        self.expansion = GraphExpansionCoordinator(
            expansion_jobs,
            poll_interval=self.config.expansion_poll_interval,
            default_timeout=self.config.expansion_timeout,
        ) if expansion_jobs is not None else None

        # --- Core Components ---
        self.store = ConceptMapStore()
        self.network_models = NetworkModelManager(self.config)
        self.embedding_cache = EmbeddingCache(
            max_size=self.config.embedding_cache_max_size,
            ttl_seconds=self.config.embedding_cache_ttl_seconds,
            batch_size=self.config.embedding_batch_size,
        )
        self.builder = MapStructureBuilder(
            derive_similarity_connections=self.config.derive_similarity_connections,
            max_derived_connections_per_node=self.config.max_derived_connections_per_node,
        )
        self.evolution_engine = EvolutionEngine(self.builder, self.config)
        self.merge_engine = MergeEngine(self.builder, self.config)
        self.merge_tracker = MergeTracker(self.config.merge_log_path) if self.config.merge_log_path else None

        # Outbound notifications; consumers read from this queue
        self.events: asyncio.Queue = asyncio.Queue(maxsize=self.config.event_queue_size)
        self.dropped_events = 0

        self.stats = {
            "generated": 0,
            "evolved": 0,
            "merged": 0,
            "insight_extractions": 0,
            "failures": 0,
        }

    # -------------------------------------------------------------- helpers

    def _emit(self, event_type: str, user_id: str, context: str, map_id: str, data: Optional[Dict[str, Any]] = None):
        event = MindMapEvent(type=event_type, user_id=user_id, context=context, map_id=map_id, data=data or {})
        try:
            self.events.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_events += 1
            logger.warning("NeuralMindMapCore", f"Event queue full, dropping {event_type} for {user_id}/{context}", {"dropped_total": self.dropped_events})

    async def _embed_batch(self, texts: List[str]) -> List[Any]:
        try:
            return list(await self.embedding_provider.embed(texts))
        except MindMapError:
            raise
        except Exception as e:
            logger.error("NeuralMindMapCore", f"Embedding provider failed: {str(e)}")
            raise UpstreamError(str(e), original=e) from e

    async def _embed_nodes(self, raw_graph: Any) -> Dict[str, Any]:
        """Embeddings for raw nodes that do not carry their own, keyed by node id."""
        if not isinstance(raw_graph, Mapping) or not isinstance(raw_graph.get("nodes"), list):
            return {}
        wanted = []
        for raw in raw_graph["nodes"]:
            if not isinstance(raw, Mapping) or raw.get("id") is None or raw.get("embedding") is not None:
                continue
            text = str(raw.get("name") or raw.get("label") or raw["id"])
            wanted.append((str(raw["id"]), text))
        if not wanted:
            return {}
        vectors = await self.embedding_cache.get_or_compute_many([text for _, text in wanted], self._embed_batch)
        return {node_id: vector for (node_id, _), vector in zip(wanted, vectors)}

    async def _fetch_graph(self, user_id: str, context: str, options: GenerateOptions) -> Any:
        try:
            return await self.graph_store.fetch_graph(user_id, context, dict(options.graph_options))
        except MindMapError:
            raise
        except Exception as e:
            logger.error("NeuralMindMapCore", f"Graph fetch failed for {user_id}/{context}: {str(e)}")
            raise UpstreamError(str(e), original=e) from e

    async def _run_expansion(self, user_id: str, context: str, options: GenerateOptions) -> ExpansionResult:
        if self.expansion is None:
            raise ValidationError("Knowledge expansion requested but no expansion job system is configured")
        job_id = await self.expansion.expand(user_id, context, {
            "depth": options.expansion_depth,
            "focus_concepts": list(options.focus_concepts),
            "preferred_model": options.preferred_model,
        })
        timeout = options.expansion_timeout if options.expansion_timeout is not None else self.config.expansion_timeout
        return await self.expansion.await_completion(job_id, timeout)

    async def _safe_insights(self, structure: NeuralMapStructure, patterns: Sequence[EmergentPattern]) -> List[Insight]:
        try:
            return list(await self.insight_generator.generate_insights(structure, patterns, {}))
        except Exception as e:
            logger.warning("NeuralMindMapCore", f"Insight generation failed for {structure.id}: {str(e)}")
            structure.diagnostics["insight_generation_failed"] = True
            return []

    def _safe_render(self, structure: NeuralMapStructure) -> Optional[Dict[str, Any]]:
        try:
            return self.visualization_adapter.render(structure)
        except Exception as e:
            logger.warning("NeuralMindMapCore", f"Visualization failed for {structure.id}: {str(e)}")
            structure.diagnostics["visualization_failed"] = True
            return None

    def _not_found(self, user_id: str, context: str) -> NotFoundError:
        return NotFoundError(f"No existing neural mind map found for user {user_id}, context {context}")

    # ----------------------------------------------------------- operations

    async def generate(self, user_id: str, context: str, options: Union[GenerateOptions, Dict[str, Any], None] = None) -> NeuralMapStructure:
        """
        Build a map from the context's concept graph and commit it.

        Optionally runs a knowledge expansion job first and waits for it (bounded by
        ``expansion_timeout``). Replaces any map stored at the same key.

        Raises:
            ValidationError, UpstreamError, MindMapTimeoutError, ComputationError
        """
        _check_name("user_id", user_id)
        _check_name("context", context)
        options = GenerateOptions.from_value(options)
        started = time.time()

        async with self.store.key_lock(user_id, context):
            try:
                expansion = await self._run_expansion(user_id, context, options) if options.expand_knowledge else None
                network = await self.network_models.get_or_build(user_id, context, options.network_overrides())
                raw_graph = await self._fetch_graph(user_id, context, options)
                embeddings = await self._embed_nodes(raw_graph)
                structure = self.builder.build(raw_graph, embeddings, network,
                                               derive_similarity_connections=options.derive_similarity_connections)
                if expansion is not None:
                    structure.diagnostics["expansion"] = {"job_id": expansion.job_id, "status": expansion.status}
                if options.include_meta_insights:
                    structure.insights = await self._safe_insights(structure, [])
                if options.include_visualization:
                    structure.visualization = self._safe_render(structure)
                await self.network_models.update_centroids(user_id, context, structure.clusters)
            except Exception as e:
                self.stats["failures"] += 1
                logger.error("NeuralMindMapCore", f"Failed to generate mind map for {user_id}/{context}: {str(e)}")
                raise
            self.store.put(user_id, context, structure)

        self.stats["generated"] += 1
        logger.info("NeuralMindMapCore", f"Generated mind map {structure.id} for {user_id}/{context}", {
            "nodes": structure.cognitive_metrics.node_count,
            "clusters": structure.cognitive_metrics.cluster_count,
            "layers": structure.cognitive_metrics.layer_count,
            "duration_s": round(time.time() - started, 3),
        })
        self._emit(MIND_MAP_CREATED, user_id, context, structure.id, {"metrics": structure.cognitive_metrics.to_dict()})
        return structure

    async def evolve(self, user_id: str, context: str, options: Union[EvolveOptions, Dict[str, Any], None] = None) -> NeuralMapStructure:
        """
        Evolve the stored map of (user_id, context) into its next generation and
        replace it in the store.

        Raises:
            NotFoundError: no map stored at the key (checked before anything else)
            ValidationError: creativity outside [0, 1] or invalid steps
        """
        _check_name("user_id", user_id)
        _check_name("context", context)

        async with self.store.key_lock(user_id, context):
            baseline = self.store.get(user_id, context)
            if baseline is None:
                raise self._not_found(user_id, context)
            options = EvolveOptions.from_value(options)
            try:
                network = await self.network_models.get_or_build(user_id, context)
                evolved, patterns = self.evolution_engine.evolve(baseline, network, options)
                if options.include_meta_insights:
                    evolved.insights = await self._safe_insights(evolved, patterns)
                if baseline.visualization is not None:
                    evolved.visualization = self._safe_render(evolved)
                await self.network_models.update_centroids(user_id, context, evolved.clusters)
            except Exception as e:
                self.stats["failures"] += 1
                logger.error("NeuralMindMapCore", f"Failed to evolve mind map for {user_id}/{context}: {str(e)}")
                raise
            self.store.put(user_id, context, evolved)

        self.stats["evolved"] += 1
        self._emit(MIND_MAP_EVOLVED, user_id, context, evolved.id, {
            "baseline_id": baseline.id,
            "evolution_metrics": evolved.evolution_metrics.to_dict(),
            "emergent_patterns": len(patterns),
        })
        return evolved

    async def merge(self,
                    user_id: str,
                    source_contexts: Sequence[str],
                    target_context: str,
                    options: Union[MergeOptions, Dict[str, Any], None] = None) -> NeuralMapStructure:
        """
        Merge the maps of ``source_contexts`` into one map stored under
        ``target_context``. Source maps are left untouched.

        Raises:
            ValidationError: fewer than two distinct contexts, a missing target context,
                or a target that is also a source
            NotFoundError: a source context has no stored map
        """
        _check_name("user_id", user_id)
        if isinstance(source_contexts, str) or source_contexts is None:
            raise ValidationError("At least two context names are required for merging")
        contexts = list(dict.fromkeys(source_contexts))
        if len(contexts) < 2:
            raise ValidationError("At least two context names are required for merging")
        for ctx in contexts:
            if not self.store.contains(user_id, ctx):
                raise NotFoundError(f"Mind map not found for context: {ctx}")
        _check_name("target_context", target_context)
        if target_context in contexts:
            raise ValidationError(f"Target context {target_context} is also a merge source")
        options = MergeOptions.from_value(options)

        async with self.store.key_lock(user_id, target_context):
            sources = []
            for ctx in contexts:
                structure = self.store.get(user_id, ctx)
                if structure is None:
                    raise NotFoundError(f"Mind map not found for context: {ctx}")
                sources.append((ctx, structure))
            try:
                network = await self.network_models.get_or_build(user_id, target_context)
                merged = self.merge_engine.merge(sources, network, options)
                merged.merge_metrics["target_context"] = target_context
                if options.include_visualization:
                    merged.visualization = self._safe_render(merged)
                await self.network_models.update_centroids(user_id, target_context, merged.clusters)
            except Exception as e:
                self.stats["failures"] += 1
                logger.error("NeuralMindMapCore", f"Failed to merge {contexts} into {user_id}/{target_context}: {str(e)}")
                raise
            self.store.put(user_id, target_context, merged)

            if self.merge_tracker is not None:
                try:
                    await self.merge_tracker.log_merge_event(
                        user_id=user_id,
                        source_contexts=contexts,
                        source_map_ids=merged.merge_metrics["source_map_ids"],
                        target_context=target_context,
                        merged_map_id=merged.id,
                        coalesced_nodes=merged.merge_metrics["coalesced_nodes"],
                        similarity_threshold=merged.merge_metrics["similarity_threshold"],
                    )
                except Exception as e:
                    logger.error("NeuralMindMapCore", f"Failed to record merge lineage for {merged.id}: {str(e)}")

        self.stats["merged"] += 1
        self._emit(MIND_MAPS_MERGED, user_id, target_context, merged.id, dict(merged.merge_metrics))
        return merged

    def get(self, user_id: str, context: str) -> Optional[NeuralMapStructure]:
        return self.store.get(user_id, context)

    async def extract_cognitive_insights(self, user_id: str, context: str,
                                         options: Union[InsightOptions, Dict[str, Any], None] = None) -> List[Insight]:
        """
        Regenerate insights for a stored map, keep those of the requested types with
        at least ``min_confidence`` (at most ``max_insights_per_type`` each, most
        confident first) and store them on the map.
        """
        _check_name("user_id", user_id)
        _check_name("context", context)
        options = InsightOptions.from_value(options)

        async with self.store.key_lock(user_id, context):
            structure = self.store.get(user_id, context)
            if structure is None:
                raise self._not_found(user_id, context)
            try:
                generated = await self.insight_generator.generate_insights(structure, structure.emergent_patterns, {
                    "insight_types": list(options.insight_types),
                    "min_confidence": options.min_confidence,
                })
            except MindMapError:
                raise
            except Exception as e:
                logger.error("NeuralMindMapCore", f"Insight extraction failed for {structure.id}: {str(e)}")
                raise UpstreamError(str(e), original=e) from e

            selected: List[Insight] = []
            for insight_type in options.insight_types:
                matching = [i for i in generated if i.type == insight_type and i.confidence >= options.min_confidence]
                matching.sort(key=lambda i: -i.confidence)
                selected.extend(matching[:options.max_insights_per_type])

            self.store.put(user_id, context, replace(structure, insights=selected))

        self.stats["insight_extractions"] += 1
        self._emit(INSIGHTS_EXTRACTED, user_id, context, structure.id, {"count": len(selected)})
        return selected

    async def invalidate_network(self, user_id: str, context: str) -> bool:
        """Drop the cached network model; the next operation rebuilds it from configuration."""
        return await self.network_models.invalidate(user_id, context)

    def handle_memory_pressure(self, level: str) -> Dict[str, Any]:
        dropped = self.embedding_cache.handle_memory_pressure(level)
        return {"level": level, "dropped_embeddings": dropped, "cache_size": len(self.embedding_cache)}

    def get_stats(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 3),
            "maps": len(self.store),
            "operations": dict(self.stats),
            "embedding_cache": self.embedding_cache.stats(),
            "network_models": self.network_models.stats(),
            "pending_expansions": len(self.expansion.pending_jobs()) if self.expansion else 0,
            "events_queued": self.events.qsize(),
            "events_dropped": self.dropped_events,
        }
