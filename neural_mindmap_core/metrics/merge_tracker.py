"""MergeTracker: append-only lineage log of mind map merges.

Each merge is recorded as one JSON line; the file is never rewritten, only rotated
when it grows past its limits.
"""

import json
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiofiles

from neural_mindmap_core.custom_logger import get_logger

logger = get_logger(__name__)


class MergeTracker:
    """Records which maps were merged into which, for later auditing."""

    def __init__(self, log_path: str, max_entries: int = 1000, max_size_mb: int = 100):
        """
        Args:
            log_path: Path to the JSONL merge log
            max_entries: Line count that triggers rotation
            max_size_mb: File size in MB that triggers rotation
        """
        self.log_path = log_path
        self.max_entries = max_entries
        self.max_size_bytes = max_size_mb * 1024 * 1024

        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.info("MergeTracker", "Initialized", {
            "log_path": log_path,
            "max_entries": max_entries,
            "max_size_mb": max_size_mb
        })

    async def log_merge_event(
        self,
        user_id: str,
        source_contexts: List[str],
        source_map_ids: List[str],
        target_context: str,
        merged_map_id: str,
        coalesced_nodes: int,
        similarity_threshold: float
    ) -> str:
        """Append a merge event.

        Returns:
            The generated merge_event_id
        """
        merge_event_id = f"merge_{uuid.uuid4()}"
        event = {
            "event_type": "mind_map_merge",
            "merge_event_id": merge_event_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            "source_contexts": list(source_contexts),
            "source_map_ids": list(source_map_ids),
            "target_context": target_context,
            "merged_map_id": merged_map_id,
            "coalesced_nodes": coalesced_nodes,
            "similarity_threshold": similarity_threshold
        }

        await self._append_event_to_log(event)

        logger.info("MergeTracker", "Logged merge event", {
            "merge_event_id": merge_event_id,
            "merged_map_id": merged_map_id
        })
        return merge_event_id

    async def _append_event_to_log(self, event: Dict[str, Any]) -> None:
        await self._check_and_rotate_log()
        try:
            async with aiofiles.open(self.log_path, "a") as f:
                await f.write(json.dumps(event) + "\n")
        except Exception as e:
            logger.error("MergeTracker", "Failed to write event to log", {
                "error": str(e),
                "event_type": event.get("event_type")
            }, exc_info=True)
            raise

    async def _check_and_rotate_log(self) -> None:
        if not os.path.exists(self.log_path):
            return
        try:
            if os.path.getsize(self.log_path) >= self.max_size_bytes:
                await self._rotate_log("size")
                return

            line_count = 0
            async with aiofiles.open(self.log_path, "r") as f:
                async for _ in f:
                    line_count += 1
            if line_count >= self.max_entries:
                await self._rotate_log("entry_count")
        except OSError as e:
            logger.error("MergeTracker", "Error checking for log rotation", {"error": str(e)}, exc_info=True)

    async def _rotate_log(self, reason: str) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        backup_path = f"{self.log_path}.{timestamp}.bak"
        os.rename(self.log_path, backup_path)
        logger.info("MergeTracker", "Rotated merge log", {
            "reason": reason,
            "backup_path": backup_path
        })

    async def read_log_entries(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent ``limit`` entries, oldest first. Malformed lines are skipped."""
        if not os.path.exists(self.log_path):
            return []
        entries = []
        async with aiofiles.open(self.log_path, "r") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("MergeTracker", "Invalid JSON in log file", {"line": line[:100]})
        return entries[-limit:]

    async def find_merge_events(
        self,
        user_id: Optional[str] = None,
        target_context: Optional[str] = None,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Merge events matching the filters, newest first."""
        events = [e for e in await self.read_log_entries(1000) if e.get("event_type") == "mind_map_merge"]
        if user_id is not None:
            events = [e for e in events if e.get("user_id") == user_id]
        if target_context is not None:
            events = [e for e in events if e.get("target_context") == target_context]
        events.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
        return events[:limit]
