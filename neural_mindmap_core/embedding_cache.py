# neural_mindmap_core/embedding_cache.py

import asyncio
import json
import os
import shutil
import time
import uuid
import aiofiles
import numpy as np
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .custom_logger import logger
from .errors import UpstreamError, ValidationError

CACHE_FORMAT_VERSION = 1

ComputeFn = Callable[[], Awaitable[Optional[Sequence[float]]]]
BatchFn = Callable[[List[str]], Awaitable[Sequence[Optional[Sequence[float]]]]]


def _consume_exception(future: asyncio.Future):
    # Failures with no waiters must not surface as "exception was never retrieved"
    if not future.cancelled():
        future.exception()


class EmbeddingCache:
    """
    Memoizes concept text -> embedding vector with single-flight semantics.

    Concurrent callers asking for the same uncomputed key share one future, so the
    provider is invoked once. Failed computations are never cached; the error is
    delivered to every waiter. Entries expire after ``ttl_seconds`` and the least
    recently used entry is evicted once ``max_size`` is reached.
    """

    def __init__(self,
                 max_size: int = 10000,
                 ttl_seconds: float = 7 * 24 * 3600.0,
                 batch_size: int = 16,
                 clock: Callable[[], float] = time.time):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.batch_size = batch_size
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0
        self.computations = 0
        self.shared_waits = 0

        logger.debug("EmbeddingCache", "Initialized", {"max_size": max_size, "ttl_seconds": ttl_seconds, "batch_size": batch_size})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._peek(key) is not None

    def _expired(self, stored_at: float) -> bool:
        return self._clock() - stored_at > self.ttl_seconds

    def _peek(self, key: str) -> Optional[np.ndarray]:
        entry = self._entries.get(key)
        if entry is None or self._expired(entry[1]):
            return None
        return entry[0]

    def _lookup(self, key: str) -> Optional[np.ndarray]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        vector, stored_at = entry
        if self._expired(stored_at):
            del self._entries[key]
            self.expirations += 1
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return vector

    def _store(self, key: str, vector: Optional[Sequence[float]], stored_at: Optional[float] = None) -> Optional[np.ndarray]:
        if vector is None:
            return None
        array = np.array(vector, dtype=np.float32).reshape(-1)
        self._entries[key] = (array, self._clock() if stored_at is None else stored_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.evictions += 1
        return array

    def _claim(self, key: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._inflight[key] = future
        return future

    def _release(self, key: str, value: Optional[np.ndarray] = None, error: Optional[BaseException] = None):
        future = self._inflight.pop(key, None)
        if future is None or future.done():
            return
        if isinstance(error, asyncio.CancelledError):
            future.cancel()
        elif error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    async def get_or_compute(self, key: str, compute_fn: ComputeFn) -> Optional[np.ndarray]:
        """Return the cached vector for ``key`` or compute it once with ``compute_fn``."""
        cached = self._lookup(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            self.shared_waits += 1
            await asyncio.wait({pending})
            if not pending.cancelled():
                return pending.result()
            # Owner was cancelled, not this caller; compute again
            return await self.get_or_compute(key, compute_fn)

        self._claim(key)
        try:
            self.computations += 1
            value = self._store(key, await compute_fn())
        except BaseException as e:
            self._release(key, error=e)
            raise
        self._release(key, value=value)
        return value

    async def get_or_compute_many(self, keys: Sequence[str], batch_fn: BatchFn) -> List[Optional[np.ndarray]]:
        """
        Batch variant of get_or_compute.

        Keys that are neither cached nor in flight are computed with one ``batch_fn``
        call per ``batch_size`` chunk. Keys already being computed by another caller
        are awaited instead of recomputed.

        Returns:
            One entry per input key, ``None`` where the provider could not embed it.
        """
        results: Dict[str, Optional[np.ndarray]] = {}
        waiting: Dict[str, asyncio.Future] = {}
        to_compute: List[str] = []

        for key in dict.fromkeys(keys):
            cached = self._lookup(key)
            if cached is not None:
                results[key] = cached
            elif key in self._inflight:
                waiting[key] = self._inflight[key]
                self.shared_waits += 1
            else:
                self._claim(key)
                to_compute.append(key)

        remaining = list(to_compute)
        try:
            for start in range(0, len(to_compute), self.batch_size):
                chunk = to_compute[start:start + self.batch_size]
                self.computations += 1
                vectors = list(await batch_fn(chunk))
                if len(vectors) != len(chunk):
                    raise UpstreamError(f"Embedding provider returned {len(vectors)} vectors for {len(chunk)} texts")
                for key, vector in zip(chunk, vectors):
                    results[key] = self._store(key, vector)
                    self._release(key, value=results[key])
                remaining = to_compute[start + len(chunk):]
        except BaseException as e:
            for key in remaining:
                self._release(key, error=e)
            raise

        retry: List[str] = []
        for key, future in waiting.items():
            await asyncio.wait({future})
            if future.cancelled():
                retry.append(key)
            else:
                results[key] = future.result()
        if retry:
            results.update(zip(retry, await self.get_or_compute_many(retry, batch_fn)))

        return [results.get(key) for key in keys]

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info("EmbeddingCache", f"Cleared {count} cached embeddings")
        return count

    def purge_expired(self) -> int:
        expired = [k for k, (_, stored_at) in self._entries.items() if self._expired(stored_at)]
        for key in expired:
            del self._entries[key]
        self.expirations += len(expired)
        return len(expired)

    def handle_memory_pressure(self, level: str) -> int:
        """React to an external memory-pressure signal. Returns the number of entries dropped."""
        level = (level or "").lower()
        before = len(self._entries)
        self.purge_expired()
        if level == "moderate":
            target = self.max_size // 2
            while len(self._entries) > target:
                self._entries.popitem(last=False)
                self.evictions += 1
        elif level in ("high", "critical"):
            self._entries.clear()
        elif level not in ("low", "normal"):
            raise ValidationError(f"Unknown memory pressure level: {level!r}")
        dropped = before - len(self._entries)
        if dropped:
            logger.warning("EmbeddingCache", f"Memory pressure '{level}': dropped {dropped} entries", {"remaining": len(self._entries)})
        return dropped

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "computations": self.computations,
            "shared_waits": self.shared_waits,
            "in_flight": len(self._inflight),
        }

    async def export_cache(self, path: Union[str, Path], model_name: Optional[str] = None) -> int:
        """Write all live entries to a JSON file (atomic temp-file move). Returns the entry count."""
        target = Path(path)
        self.purge_expired()
        dimension = next((len(v) for v, _ in self._entries.values()), None)
        payload = {
            "version": CACHE_FORMAT_VERSION,
            "model_name": model_name,
            "dimension": dimension,
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "embeddings": [
                {"key": key, "vector": vector.tolist(), "stored_at": stored_at}
                for key, (vector, stored_at) in self._entries.items()
            ],
        }
        temp_path = target.with_suffix(f".{uuid.uuid4().hex[:8]}.tmp")
        try:
            if target.parent and not await asyncio.to_thread(os.path.exists, target.parent):
                await asyncio.to_thread(os.makedirs, target.parent, exist_ok=True)
            json_data = await asyncio.to_thread(json.dumps, payload)
            async with aiofiles.open(temp_path, "w") as f:
                await f.write(json_data)
                await f.flush()
            await asyncio.to_thread(shutil.move, str(temp_path), str(target))
        except Exception as e:
            logger.error("EmbeddingCache", f"Failed to export cache to {target}: {str(e)}", exc_info=True)
            if await asyncio.to_thread(os.path.exists, temp_path):
                await asyncio.to_thread(os.remove, temp_path)
            raise
        logger.info("EmbeddingCache", f"Exported {len(payload['embeddings'])} embeddings to {target}")
        return len(payload["embeddings"])

    async def import_cache(self, path: Union[str, Path], clear_existing: bool = False, validate_dimension: Optional[int] = None) -> int:
        """
        Load entries written by export_cache. Expired entries and vectors whose length
        differs from ``validate_dimension`` are skipped.

        Raises:
            ValidationError: the file is not a cache export, or its declared dimension
                does not match ``validate_dimension``.
        """
        async with aiofiles.open(path, "r") as f:
            content = await f.read()
        try:
            payload = await asyncio.to_thread(json.loads, content)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Cache file {path} is not valid JSON: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("embeddings"), list):
            raise ValidationError(f"Cache file {path} has no embeddings list")
        if payload.get("version") != CACHE_FORMAT_VERSION:
            raise ValidationError(f"Unsupported cache format version: {payload.get('version')!r}")
        declared = payload.get("dimension")
        if validate_dimension is not None and declared is not None and declared != validate_dimension:
            raise ValidationError(f"Cache dimension {declared} does not match expected {validate_dimension}")

        if clear_existing:
            self._entries.clear()

        imported = 0
        skipped = 0
        for item in payload["embeddings"]:
            try:
                key = str(item["key"])
                vector = item["vector"]
                stored_at = float(item.get("stored_at", self._clock()))
            except (KeyError, TypeError, ValueError):
                skipped += 1
                continue
            if self._expired(stored_at) or (validate_dimension is not None and len(vector) != validate_dimension):
                skipped += 1
                continue
            self._store(key, vector, stored_at=stored_at)
            imported += 1

        logger.info("EmbeddingCache", f"Imported {imported} embeddings from {path}", {"skipped": skipped})
        return imported
