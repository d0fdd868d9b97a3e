# neural_mindmap_core/map_store.py

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from .custom_logger import logger
from .map_structures import NeuralMapStructure

MapKey = Tuple[str, str]


class ConceptMapStore:
    """
    Owns the committed map for each (user_id, context).

    Reads never block. Writers serialize per key through ``key_lock``; no lock is
    shared between keys. A key's lock lives only while some writer holds or awaits it.
    """

    def __init__(self):
        self._maps: Dict[MapKey, NeuralMapStructure] = {}
        self._locks: Dict[MapKey, asyncio.Lock] = {}
        self._lock_users: Dict[MapKey, int] = {}

    def get(self, user_id: str, context: str) -> Optional[NeuralMapStructure]:
        return self._maps.get((user_id, context))

    def contains(self, user_id: str, context: str) -> bool:
        return (user_id, context) in self._maps

    def put(self, user_id: str, context: str, structure: NeuralMapStructure) -> Optional[NeuralMapStructure]:
        """Commit ``structure`` under the key, returning the map it replaced."""
        previous = self._maps.get((user_id, context))
        self._maps[(user_id, context)] = structure
        logger.debug("ConceptMapStore", f"Committed {structure.id} at {user_id}/{context}", {"replaced": previous.id if previous else None})
        return previous

    def remove(self, user_id: str, context: str) -> Optional[NeuralMapStructure]:
        return self._maps.pop((user_id, context), None)

    def keys(self, user_id: Optional[str] = None) -> List[MapKey]:
        return [k for k in self._maps if user_id is None or k[0] == user_id]

    def snapshot(self) -> Dict[MapKey, NeuralMapStructure]:
        return dict(self._maps)

    def __len__(self) -> int:
        return len(self._maps)

    def _lock_for(self, key: MapKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def key_lock(self, user_id: str, context: str) -> AsyncIterator[None]:
        key = (user_id, context)
        lock = self._lock_for(key)
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def lock_count(self) -> int:
        return len(self._locks)

    def is_locked(self, user_id: str, context: str) -> bool:
        lock = self._locks.get((user_id, context))
        return lock is not None and lock.locked()
