"""
Persistence Backends

Key/value storage grouped into named collections. Values are JSON-compatible
dicts; the engine never depends on how a backend stores them.

SupabasePersistence keeps everything in one table:

    create table kv_store (
        collection text not null,
        key text not null,
        value jsonb not null,
        updated_at timestamptz default now(),
        primary key (collection, key)
    );
"""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Collection names shared by the engine components
SESSIONS = "tutor_sessions"
STUDY_PLANS = "study_plans"
PRACTICE_QUESTIONS = "practice_questions"
LEARNING_STYLES = "user_learning_styles"
OFFLINE_QUEUE = "offline_queue"


class Persistence:
    """Async key/value store interface."""

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, collection: str, key: str) -> None:
        raise NotImplementedError

    async def list_values(self, collection: str) -> List[Dict[str, Any]]:
        raise NotImplementedError


class InMemoryPersistence(Persistence):
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        value = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def delete(self, collection: str, key: str) -> None:
        self._collections.get(collection, {}).pop(key, None)

    async def list_values(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(v) for v in self._collections.get(collection, {}).values()]


class SupabasePersistence(Persistence):
    """
    Supabase-backed store.

    The supabase client is synchronous, so every call runs in a worker thread.
    Database errors are logged and the operation falls back to an in-memory
    copy so a flaky connection does not take the tutor down.
    """

    def __init__(self, supabase_client, table: str = "kv_store"):
        """
        Args:
            supabase_client: Supabase client instance
            table: Name of the key/value table
        """
        self.supabase = supabase_client
        self.table = table
        self._fallback = InMemoryPersistence()

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        pending = await self._fallback.get(collection, key)
        if pending is not None:
            return pending
        try:
            result = await asyncio.to_thread(
                lambda: self.supabase.table(self.table)
                .select("value")
                .eq("collection", collection)
                .eq("key", key)
                .execute()
            )
            if result.data:
                return result.data[0]["value"]
            return None
        except Exception as e:
            logger.warning(f"⚠️ [SupabasePersistence] Error loading {collection}/{key}: {e}")
            return None

    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(
                lambda: self.supabase.table(self.table)
                .upsert({"collection": collection, "key": key, "value": value})
                .execute()
            )
            # Anything cached during an outage is superseded
            await self._fallback.delete(collection, key)
        except Exception as e:
            logger.warning(f"⚠️ [SupabasePersistence] Error saving {collection}/{key}, keeping in memory: {e}")
            await self._fallback.put(collection, key, value)

    async def delete(self, collection: str, key: str) -> None:
        await self._fallback.delete(collection, key)
        try:
            await asyncio.to_thread(
                lambda: self.supabase.table(self.table)
                .delete()
                .eq("collection", collection)
                .eq("key", key)
                .execute()
            )
        except Exception as e:
            logger.warning(f"⚠️ [SupabasePersistence] Error deleting {collection}/{key}: {e}")

    async def list_values(self, collection: str) -> List[Dict[str, Any]]:
        pending = await self._fallback.list_values(collection)
        try:
            result = await asyncio.to_thread(
                lambda: self.supabase.table(self.table)
                .select("key, value")
                .eq("collection", collection)
                .execute()
            )
            values = {row["key"]: row["value"] for row in (result.data or [])}
        except Exception as e:
            logger.warning(f"⚠️ [SupabasePersistence] Error listing {collection}: {e}")
            return pending
        stored = list(values.values())
        # In-memory copies only exist for keys whose write failed; they are newer
        if pending:
            pending_ids = {v.get("id") for v in pending}
            stored = [v for v in stored if v.get("id") not in pending_ids] + pending
        return stored
