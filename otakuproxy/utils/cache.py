import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from otakuproxy.config.settings import settings
from otakuproxy.utils.logger import cache_logger

# ===========================
# Memory Cache Class
# ===========================
class MemoryCache:

    def __init__(self):
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, cache_key: str) -> Optional[Any]:
        item = self._store.get(cache_key)
        if item is None:
            cache_logger.debug(f"Miss: {cache_key}")
            return None

        expires_at, data = item
        if expires_at <= time.time():
            cache_logger.debug(f"Expired: {cache_key}")
            self._store.pop(cache_key, None)
            return None

        cache_logger.debug(f"Hit: {cache_key}")
        return data

    def set(self, cache_key: str, data: Any, ttl: int):
        self._store[cache_key] = (time.time() + ttl, data)
        cache_logger.debug(f"Saved: {cache_key} ({ttl}s)")

    def cleanup(self) -> int:
        current_time = time.time()
        expired = [key for key, (expires_at, _) in self._store.items() if expires_at <= current_time]
        for key in expired:
            self._store.pop(key, None)
        return len(expired)

    def clear(self):
        self._store.clear()

    async def get_or_set(self, cache_key: str, ttl: int, fetch: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(cache_key)
        if cached is not None:
            return cached

        fresh = await fetch()
        if fresh is not None:
            self.set(cache_key, fresh, ttl)
        return fresh


# ===========================
# Global Cache Instance
# ===========================
memory_cache = MemoryCache()


# ===========================
# Cleanup Expired Data
# ===========================
async def cleanup_expired_data():
    while True:
        try:
            deleted = memory_cache.cleanup()
            if deleted:
                cache_logger.debug(f"Cleanup: {deleted} entries")
        except Exception as e:
            cache_logger.error(f"Cleanup error: {type(e).__name__}")

        await asyncio.sleep(settings.CLEANUP_INTERVAL)
