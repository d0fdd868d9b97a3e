# neural_mindmap_core/geometry_manager.py

import numpy as np
import torch
from typing import Optional, Tuple, List, Union, Sequence

from .custom_logger import logger

VectorLike = Union[np.ndarray, List[float], torch.Tensor]


class GeometryManager:
    """Centralized handling of embedding validation, alignment and cosine similarity."""

    def __init__(self, embedding_dim: int = 768, alignment_strategy: str = 'pad'):
        self.embedding_dim = embedding_dim
        # 'pad' or 'truncate'; both fall back to the other when the size goes the wrong way
        self.alignment_strategy = alignment_strategy

        # Warning counters
        self.dim_mismatch_warnings = 0
        self.max_dim_mismatch_warnings = 10
        self.invalid_vector_warnings = 0
        self.max_invalid_vector_warnings = 10

        logger.debug("GeometryManager", "Initialized", {"embedding_dim": embedding_dim, "alignment_strategy": alignment_strategy})

    def _warn_invalid(self, message: str):
        if self.invalid_vector_warnings < self.max_invalid_vector_warnings:
            logger.warning("GeometryManager", message)
            self.invalid_vector_warnings += 1
            if self.invalid_vector_warnings == self.max_invalid_vector_warnings:
                logger.warning("GeometryManager", "Max invalid vector warnings reached, suppressing further warnings.")

    def validate_vector(self, vector: Optional[VectorLike], name: str = "Vector") -> Optional[np.ndarray]:
        """Convert to a 1-D float32 array. Returns None when the vector is unusable (None, NaN/Inf, empty, zero norm)."""
        if vector is None:
            return None

        if isinstance(vector, torch.Tensor):
            vector = vector.detach().cpu().numpy().astype(np.float32)
        elif isinstance(vector, np.ndarray):
            vector = vector.astype(np.float32, copy=False)
        else:
            try:
                vector = np.asarray(vector, dtype=np.float32)
            except (TypeError, ValueError) as e:
                self._warn_invalid(f"Failed to convert {name} to numpy array: {e}")
                return None

        vector = vector.reshape(-1) if vector.ndim > 1 and 1 in vector.shape else vector
        if vector.ndim != 1 or vector.shape[0] == 0:
            self._warn_invalid(f"{name} has unsupported shape {vector.shape}")
            return None

        if not np.isfinite(vector).all():
            self._warn_invalid(f"{name} contains NaN or Inf values")
            return None

        if float(np.linalg.norm(vector)) < 1e-9:
            self._warn_invalid(f"{name} is a zero vector")
            return None

        return vector

    def align_vector(self, vector: np.ndarray, name: str = "Vector") -> np.ndarray:
        """Pad or truncate a validated vector to the configured dimension."""
        dim = vector.shape[0]
        target_dim = self.embedding_dim
        if dim == target_dim:
            return vector

        if self.dim_mismatch_warnings < self.max_dim_mismatch_warnings:
            logger.warning("GeometryManager", f"{name} dimension mismatch: got {dim}, expected {target_dim}. Applying strategy: {self.alignment_strategy}")
            self.dim_mismatch_warnings += 1

        if dim > target_dim:
            return vector[:target_dim]
        return np.pad(vector, (0, target_dim - dim)).astype(np.float32)

    def prepare(self, vector: Optional[VectorLike], name: str = "Vector") -> Optional[np.ndarray]:
        """Validate, align and L2 normalize. None when not computable."""
        validated = self.validate_vector(vector, name)
        if validated is None:
            return None
        aligned = self.align_vector(validated, name)
        # Truncation can zero a vector out
        if float(np.linalg.norm(aligned)) < 1e-9:
            self._warn_invalid(f"{name} is a zero vector after alignment")
            return None
        return self.normalize_embedding(aligned)

    def align_vectors(self, vec_a: np.ndarray, vec_b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Bring two vectors to the same length (the configured dimension)."""
        return self.align_vector(vec_a, "Vector A"), self.align_vector(vec_b, "Vector B")

    def normalize_embedding(self, vector: np.ndarray) -> np.ndarray:
        """L2 normalize a vector."""
        norm = np.linalg.norm(vector)
        if norm < 1e-9:
            logger.debug("GeometryManager", "normalize_embedding received zero vector, returning as is.")
            return vector
        return (vector / norm).astype(np.float32)

    def calculate_similarity(self, vec_a: VectorLike, vec_b: VectorLike) -> float:
        """Cosine similarity in [-1.0, 1.0]; 0.0 when either vector is unusable."""
        a = self.validate_vector(vec_a, "Vector A for similarity")
        b = self.validate_vector(vec_b, "Vector B for similarity")
        if a is None or b is None:
            return 0.0
        if a.shape[0] != b.shape[0]:
            a, b = self.align_vectors(a, b)

        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)
        if norm_a < 1e-9 or norm_b < 1e-9:
            return 0.0
        similarity = float(np.dot(a, b) / (norm_a * norm_b))
        return float(np.clip(similarity, -1.0, 1.0))

    def update_centroid(self, centroid: Optional[np.ndarray], vector: np.ndarray, count: int) -> np.ndarray:
        """Running mean of normalized members; ``count`` includes the new member."""
        vector = self.normalize_embedding(vector)
        if centroid is None or count <= 1:
            return vector
        updated = ((count - 1) * centroid + vector) / float(count)
        return self.normalize_embedding(updated)

    def mean_embedding(self, vectors: Sequence[np.ndarray]) -> Optional[np.ndarray]:
        if not vectors:
            return None
        stacked = np.stack([self.normalize_embedding(v) for v in vectors])
        return self.normalize_embedding(stacked.mean(axis=0))

    def mean_pairwise_similarity(self, vectors: Sequence[np.ndarray]) -> float:
        """Mean cosine similarity over distinct pairs, clipped to [0, 1]. 1.0 for fewer than two vectors."""
        if len(vectors) < 2:
            return 1.0
        matrix = np.stack([self.normalize_embedding(v) for v in vectors])
        sims = matrix @ matrix.T
        n = len(vectors)
        upper = sims[np.triu_indices(n, k=1)]
        return float(np.clip(upper.mean(), 0.0, 1.0))
