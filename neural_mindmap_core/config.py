# neural_mindmap_core/config.py

import os
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from .custom_logger import logger
from .errors import ValidationError

T = TypeVar("T")


def _known_kwargs(cls, data: Dict[str, Any], owner: str) -> Dict[str, Any]:
    """Keep only the keys ``cls`` declares; unknown keys are logged and ignored."""
    names = {f.name for f in fields(cls)}
    unknown = sorted(k for k in data if k not in names)
    if unknown:
        logger.warning(owner, "Ignoring unknown option keys", {"keys": unknown})
    return {k: v for k, v in data.items() if k in names}


def _check_unit_interval(name: str, value: float):
    if not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
        raise ValidationError(f"{name} must be a number in [0, 1], got {value!r}")


def _check_positive(name: str, value, allow_zero: bool = False):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}, got {value!r}")


def _check_count(name: str, value, allow_zero: bool = False):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    _check_positive(name, value, allow_zero)


@dataclass
class MindMapConfig:
    """Engine-wide configuration. Every recognised option and its default lives here."""

    embedding_dimension: int = 768
    min_similarity_threshold: float = 0.65
    network_depth: int = 5
    architecture: str = "transformer"

    # Evolution
    creativity_factor: float = 0.6
    evolution_steps: int = 3
    max_novel_concepts: int = 25

    # Merge; None means "use min_similarity_threshold"
    merge_similarity_threshold: Optional[float] = None
    merge_log_path: Optional[str] = None

    # Structure enrichment
    derive_similarity_connections: bool = True
    max_derived_connections_per_node: int = 5

    # Expansion
    expansion_timeout: float = 60.0
    expansion_poll_interval: float = 1.0

    # Embedding cache
    embedding_cache_max_size: int = 10000
    embedding_cache_ttl_seconds: float = 7 * 24 * 3600.0
    embedding_batch_size: int = 16

    # Outbound notifications
    event_queue_size: int = 1000

    def __post_init__(self):
        _check_count("embedding_dimension", self.embedding_dimension)
        _check_count("network_depth", self.network_depth)
        _check_unit_interval("min_similarity_threshold", self.min_similarity_threshold)
        _check_unit_interval("creativity_factor", self.creativity_factor)
        _check_count("evolution_steps", self.evolution_steps)
        _check_count("max_novel_concepts", self.max_novel_concepts, allow_zero=True)
        if self.merge_similarity_threshold is not None:
            _check_unit_interval("merge_similarity_threshold", self.merge_similarity_threshold)
        _check_count("max_derived_connections_per_node", self.max_derived_connections_per_node, allow_zero=True)
        _check_positive("expansion_timeout", self.expansion_timeout)
        _check_positive("expansion_poll_interval", self.expansion_poll_interval)
        _check_count("embedding_cache_max_size", self.embedding_cache_max_size)
        _check_positive("embedding_cache_ttl_seconds", self.embedding_cache_ttl_seconds)
        _check_count("embedding_batch_size", self.embedding_batch_size)
        _check_count("event_queue_size", self.event_queue_size)

    @property
    def effective_merge_threshold(self) -> float:
        if self.merge_similarity_threshold is None:
            return self.min_similarity_threshold
        return self.merge_similarity_threshold

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "MindMapConfig":
        return cls(**_known_kwargs(cls, dict(data or {}), "MindMapConfig"))

    @classmethod
    def from_env(cls, prefix: str = "MINDMAP_", environ: Optional[Dict[str, str]] = None) -> "MindMapConfig":
        """Build a config from ``<PREFIX><FIELD_NAME>`` environment variables."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            default = f.default
            try:
                if isinstance(default, bool):
                    values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
                elif isinstance(default, int):
                    values[f.name] = int(raw)
                elif isinstance(default, float) or f.name == "merge_similarity_threshold":
                    values[f.name] = float(raw)
                else:
                    values[f.name] = raw
            except ValueError as e:
                raise ValidationError(f"Invalid value for {prefix}{f.name.upper()}: {raw!r}") from e
        return cls(**values)

    @classmethod
    def coerce(cls, value: Union["MindMapConfig", Dict[str, Any], None]) -> "MindMapConfig":
        if isinstance(value, cls):
            return value
        return cls.from_dict(value)


class _OptionsMixin:
    @classmethod
    def from_value(cls: Type[T], value: Union[T, Dict[str, Any], None]) -> T:
        if isinstance(value, cls):
            return value
        if value is not None and not isinstance(value, dict):
            raise ValidationError(f"{cls.__name__} must be a mapping, got {type(value).__name__}")
        return cls(**_known_kwargs(cls, dict(value or {}), cls.__name__))


@dataclass
class GenerateOptions(_OptionsMixin):
    expand_knowledge: bool = False
    expansion_timeout: Optional[float] = None
    expansion_depth: Optional[int] = None
    focus_concepts: List[str] = field(default_factory=list)
    preferred_model: str = "balanced"
    include_meta_insights: bool = True
    include_visualization: bool = True
    similarity_threshold: Optional[float] = None
    network_depth: Optional[int] = None
    derive_similarity_connections: Optional[bool] = None
    graph_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.expansion_timeout is not None:
            _check_positive("expansion_timeout", self.expansion_timeout)
        if self.similarity_threshold is not None:
            _check_unit_interval("similarity_threshold", self.similarity_threshold)
        if self.network_depth is not None:
            _check_count("network_depth", self.network_depth)

    def network_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        if self.similarity_threshold is not None:
            overrides["min_similarity_threshold"] = self.similarity_threshold
        if self.network_depth is not None:
            overrides["network_depth"] = self.network_depth
        return overrides


@dataclass
class EvolveOptions(_OptionsMixin):
    creativity_factor: Optional[float] = None
    evolution_steps: Optional[int] = None
    # Exact number of novel concepts; None lets plan_novel_concept_count decide
    novel_concepts: Optional[int] = None
    preserve_core_concepts: bool = True
    introduce_novel_concepts: bool = True
    prune_below_relevance: float = 0.0
    include_meta_insights: bool = True

    def __post_init__(self):
        if self.creativity_factor is not None:
            _check_unit_interval("creativity_factor", self.creativity_factor)
        if self.evolution_steps is not None:
            _check_count("evolution_steps", self.evolution_steps)
        if self.novel_concepts is not None:
            _check_count("novel_concepts", self.novel_concepts, allow_zero=True)
        _check_unit_interval("prune_below_relevance", self.prune_below_relevance)

    def resolved(self, config: MindMapConfig) -> "EvolveOptions":
        """Fill unset values from the engine configuration."""
        return EvolveOptions(
            creativity_factor=config.creativity_factor if self.creativity_factor is None else self.creativity_factor,
            evolution_steps=config.evolution_steps if self.evolution_steps is None else self.evolution_steps,
            novel_concepts=self.novel_concepts,
            preserve_core_concepts=self.preserve_core_concepts,
            introduce_novel_concepts=self.introduce_novel_concepts,
            prune_below_relevance=self.prune_below_relevance,
            include_meta_insights=self.include_meta_insights,
        )


@dataclass
class MergeOptions(_OptionsMixin):
    similarity_threshold: Optional[float] = None
    include_visualization: bool = False

    def __post_init__(self):
        if self.similarity_threshold is not None:
            _check_unit_interval("similarity_threshold", self.similarity_threshold)


@dataclass
class InsightOptions(_OptionsMixin):
    insight_types: List[str] = field(default_factory=lambda: ["structural", "semantic", "emergent", "gap"])
    max_insights_per_type: int = 5
    min_confidence: float = 0.7

    def __post_init__(self):
        _check_count("max_insights_per_type", self.max_insights_per_type)
        _check_unit_interval("min_confidence", self.min_confidence)
