# neural_mindmap_core/__init__.py

"""
Neural Mind Map Core - layered, clustered concept maps
with creativity-driven evolution and cross-context merging.
"""

__version__ = "1.0.0"

# Core components
from .neural_mindmap_core import NeuralMindMapCore, MindMapEvent
from .config import MindMapConfig, GenerateOptions, EvolveOptions, MergeOptions, InsightOptions
from .errors import MindMapError, ValidationError, NotFoundError, UpstreamError, MindMapTimeoutError, ComputationError
from .map_structures import (
    ConceptNode, Connection, Cluster, Layer, CognitiveMetrics, EvolutionMetrics,
    EmergentPattern, Insight, NeuralMapStructure
)
from .geometry_manager import GeometryManager
from .embedding_cache import EmbeddingCache
from .network_model import NetworkModel, NetworkModelManager
from .expansion_coordinator import GraphExpansionCoordinator, ExpansionResult
from .structure_builder import MapStructureBuilder
from .evolution_engine import EvolutionEngine, plan_novel_concept_count, score_novelty, derive_evolved_id
from .merge_engine import MergeEngine
from .map_store import ConceptMapStore

__all__ = [
    "NeuralMindMapCore",
    "MindMapEvent",
    "MindMapConfig",
    "GenerateOptions",
    "EvolveOptions",
    "MergeOptions",
    "InsightOptions",
    "MindMapError",
    "ValidationError",
    "NotFoundError",
    "UpstreamError",
    "MindMapTimeoutError",
    "ComputationError",
    "ConceptNode",
    "Connection",
    "Cluster",
    "Layer",
    "CognitiveMetrics",
    "EvolutionMetrics",
    "EmergentPattern",
    "Insight",
    "NeuralMapStructure",
    "GeometryManager",
    "EmbeddingCache",
    "NetworkModel",
    "NetworkModelManager",
    "GraphExpansionCoordinator",
    "ExpansionResult",
    "MapStructureBuilder",
    "EvolutionEngine",
    "plan_novel_concept_count",
    "score_novelty",
    "derive_evolved_id",
    "MergeEngine",
    "ConceptMapStore",
]
