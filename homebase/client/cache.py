"""
Query cache for fetched collections

Mutations invalidate cached collections instead of patching them, so the next
read always re-fetches from the API.
"""

import fnmatch
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

PROPOSALS_KEY_PREFIX = "proposals"
USER_KEY = "user"
USER_TTL = 60  # seconds


def proposals_key(contractor_id: Optional[str] = None, homeowner_id: Optional[str] = None) -> str:
    return f"{PROPOSALS_KEY_PREFIX}:{contractor_id or '-'}:{homeowner_id or '-'}"


class QueryCache:
    """In-memory cache keyed by query, with optional TTL"""

    def __init__(self, default_ttl: Optional[int] = None):
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[Any, Optional[float]]] = {}

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"❌ Cache MISS: {key}")
            return None

        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._entries[key]
            logger.debug(f"⌛ Cache EXPIRED: {key}")
            return None

        logger.debug(f"✅ Cache HIT: {key}")
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = ttl if ttl is not None else self.default_ttl
        expires_at = time.monotonic() + ttl if ttl else None
        self._entries[key] = (value, expires_at)
        logger.debug(f"✅ Cache SET: {key}")

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'proposals:*')"""
        keys = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug(f"✅ Cache DELETE pattern: {pattern} ({len(keys)} keys)")
        return len(keys)

    async def get_or_fetch(
        self, key: str, fetcher: Callable[[], Union[Awaitable[Any], Any]], ttl: Optional[int] = None
    ) -> Any:
        """Return the cached value, fetching and storing it on a miss"""
        value = self.get(key)
        if value is not None:
            return value

        value = fetcher()
        if inspect.isawaitable(value):
            value = await value
        self.set(key, value, ttl)
        return value

    def invalidate_proposals(self) -> int:
        """Drop every proposal collection along with the profile derived from them"""
        self.delete(USER_KEY)
        return self.delete_pattern(f"{PROPOSALS_KEY_PREFIX}:*")
