"""Key/value cache interface and an in-process implementation."""

import fnmatch
import logging
import time
from typing import Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """String key/value store with per-key expiry (Redis-like)."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def keys(self, pattern: str) -> List[str]:
        ...


class InMemoryKeyValueStore:
    """Dictionary-backed store honouring TTLs and glob key patterns."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _expired(self, key: str) -> bool:
        _, expires_at = self._data[key]
        return expires_at is not None and self._clock() >= expires_at

    def _purge(self, key: str) -> None:
        if key in self._data and self._expired(key):
            del self._data[key]

    async def get(self, key: str) -> Optional[str]:
        self._purge(key)
        entry = self._data.get(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def keys(self, pattern: str) -> List[str]:
        for key in list(self._data):
            self._purge(key)
        return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None if it has no expiry."""
        self._purge(key)
        entry = self._data.get(key)
        if entry is None or entry[1] is None:
            return None
        return entry[1] - self._clock()
