"""Last-generation timestamps per user, kept in the key-value store."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.core.errors import KeyValueStoreError
from app.core.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "insights:generated:"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationCache:
    """Freshness guard for insight generation.

    An entry is *fresh* for ``ttl_seconds`` after a generation. The timestamp
    itself is retained for ``retention_seconds`` so the transaction-count
    trigger can still count writes since the last run once freshness lapses.
    Store failures degrade to "no entry", which forces a recompute.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = 3600,
        retention_seconds: int = 40 * 24 * 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self._retention_seconds = max(retention_seconds, ttl_seconds)
        self._clock = clock

    async def get_last_generated(self, user_id: int) -> Optional[datetime]:
        try:
            raw = await self._store.get(f"{KEY_PREFIX}{user_id}")
        except KeyValueStoreError as exc:
            logger.warning("Generation cache read failed for user %s: %s", user_id, exc)
            return None
        if not raw:
            return None
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Discarding malformed generation cache entry for user %s", user_id)
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    async def is_fresh(self, user_id: int) -> bool:
        last_generated = await self.get_last_generated(user_id)
        if last_generated is None:
            return False
        return self._clock() - last_generated < self.ttl

    async def mark_generated(self, user_id: int, when: Optional[datetime] = None) -> None:
        moment = when or self._clock()
        try:
            await self._store.set(
                f"{KEY_PREFIX}{user_id}",
                moment.isoformat(),
                ttl=self._retention_seconds,
            )
        except KeyValueStoreError as exc:
            logger.warning("Generation cache write failed for user %s: %s", user_id, exc)

    async def invalidate(self, user_id: int) -> None:
        try:
            await self._store.delete(f"{KEY_PREFIX}{user_id}")
        except KeyValueStoreError as exc:
            logger.warning("Generation cache delete failed for user %s: %s", user_id, exc)
