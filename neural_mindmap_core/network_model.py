# neural_mindmap_core/network_model.py

import asyncio
import numpy as np
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import MindMapConfig, _check_count, _check_unit_interval
from .custom_logger import logger
from .errors import ValidationError
from .map_structures import Cluster


@dataclass
class NetworkModel:
    """Per-(user, context) parameters used to build and evolve maps."""

    user_id: str
    context: str
    embedding_dimension: int
    network_depth: int
    min_similarity_threshold: float
    architecture: str = "transformer"
    # Learned state; not part of the model's value
    centroids: Dict[str, np.ndarray] = field(default_factory=dict, compare=False, repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "context": self.context,
            "embedding_dimension": self.embedding_dimension,
            "network_depth": self.network_depth,
            "min_similarity_threshold": self.min_similarity_threshold,
            "architecture": self.architecture,
            "centroid_count": len(self.centroids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


_OVERRIDABLE = ("embedding_dimension", "network_depth", "min_similarity_threshold", "architecture")


class NetworkModelManager:
    """
    Lazily builds and caches one NetworkModel per (user_id, context).

    Building is deterministic from the engine configuration plus any overrides
    passed on the call that builds the model; overrides on later calls are ignored
    until the model is invalidated.
    """

    def __init__(self, config: MindMapConfig):
        self.config = config
        self._models: Dict[Tuple[str, str], NetworkModel] = {}
        self._lock = asyncio.Lock()
        self.builds = 0

    def _build(self, user_id: str, context: str, overrides: Dict[str, Any]) -> NetworkModel:
        unknown = sorted(k for k in overrides if k not in _OVERRIDABLE)
        if unknown:
            raise ValidationError(f"Unknown network model overrides: {unknown}")
        params = {
            "embedding_dimension": self.config.embedding_dimension,
            "network_depth": self.config.network_depth,
            "min_similarity_threshold": self.config.min_similarity_threshold,
            "architecture": self.config.architecture,
        }
        params.update(overrides)
        _check_count("embedding_dimension", params["embedding_dimension"])
        _check_count("network_depth", params["network_depth"])
        _check_unit_interval("min_similarity_threshold", params["min_similarity_threshold"])
        self.builds += 1
        return NetworkModel(user_id=user_id, context=context, **params)

    async def get_or_build(self, user_id: str, context: str, overrides: Optional[Dict[str, Any]] = None) -> NetworkModel:
        key = (user_id, context)
        async with self._lock:
            model = self._models.get(key)
            if model is None:
                model = self._build(user_id, context, dict(overrides or {}))
                self._models[key] = model
                logger.info("NetworkModelManager", f"Built network model for {user_id}/{context}", {
                    "depth": model.network_depth,
                    "threshold": model.min_similarity_threshold,
                    "dimension": model.embedding_dimension,
                })
            elif overrides:
                logger.debug("NetworkModelManager", f"Model for {user_id}/{context} already built; ignoring overrides", {"overrides": overrides})
            return model

    def peek(self, user_id: str, context: str) -> Optional[NetworkModel]:
        return self._models.get((user_id, context))

    async def invalidate(self, user_id: str, context: str) -> bool:
        async with self._lock:
            removed = self._models.pop((user_id, context), None) is not None
        if removed:
            logger.info("NetworkModelManager", f"Invalidated network model for {user_id}/{context}")
        return removed

    async def invalidate_all(self) -> int:
        async with self._lock:
            count = len(self._models)
            self._models.clear()
        logger.info("NetworkModelManager", f"Invalidated {count} network models")
        return count

    async def update_centroids(self, user_id: str, context: str, clusters: Iterable[Cluster]) -> Optional[NetworkModel]:
        """Record learned cluster centroids on the cached model. The model's value is unchanged."""
        async with self._lock:
            model = self._models.get((user_id, context))
            if model is None:
                return None
            model.centroids = {c.id: c.centroid for c in clusters if c.centroid is not None}
            model.updated_at = datetime.now(timezone.utc)
            return model

    def keys(self) -> List[Tuple[str, str]]:
        return list(self._models.keys())

    def stats(self) -> Dict[str, Any]:
        return {"models": len(self._models), "builds": self.builds}
