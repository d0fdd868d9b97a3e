# neural_mindmap_core/api/client/client.py

import asyncio
import numpy as np
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from neural_mindmap_core.custom_logger import get_logger
from neural_mindmap_core.errors import UpstreamError
from neural_mindmap_core.geometry_manager import GeometryManager

logger = get_logger("neural_mindmap_core.api.client")


class EmbeddingServiceClient:
    """
    Embedding provider backed by an HTTP embedding service.

    The service exposes ``POST /generate_embedding`` taking ``{"text": ...}`` and
    answering ``{"success": bool, "embedding": [...], "error": ...}``.
    """

    def __init__(self, base_url: str = "http://localhost:5010", embedding_dim: int = 768,
                 max_concurrency: int = 8, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.geometry = GeometryManager(embedding_dim=embedding_dim)
        self.max_concurrency = max_concurrency
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None
        self._owns_session = False

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True

    async def close(self):
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None
        self._owns_session = False

    async def health_check(self) -> Dict[str, Any]:
        await self.connect()
        async with self.session.get(f"{self.base_url}/health") as response:
            return await response.json()

    async def generate_embedding(self, text: str) -> Dict[str, Any]:
        """Raw service response for one text."""
        await self.connect()
        async with self.session.post(f"{self.base_url}/generate_embedding", json={"text": text}) as response:
            if response.status >= 400:
                body = await response.text()
                raise UpstreamError(f"Embedding service returned HTTP {response.status}: {body[:200]}")
            return await response.json()

    async def _embed_one(self, text: str, semaphore: asyncio.Semaphore) -> Optional[np.ndarray]:
        async with semaphore:
            try:
                payload = await self.generate_embedding(text)
            except aiohttp.ClientError as e:
                logger.error("EmbeddingServiceClient", f"Request failed: {str(e)}")
                raise UpstreamError(f"Embedding service request failed: {str(e)}", original=e) from e
        if not payload.get("success", False):
            logger.warning("EmbeddingServiceClient", "Service could not embed text", {"error": payload.get("error"), "text": text[:50]})
            return None
        vector = self.geometry.validate_vector(payload.get("embedding"), "Service embedding")
        return self.geometry.align_vector(vector, "Service embedding") if vector is not None else None

    async def embed(self, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        return list(await asyncio.gather(*(self._embed_one(t, semaphore) for t in texts)))

    def similarity(self, a, b) -> float:
        return self.geometry.calculate_similarity(a, b)
