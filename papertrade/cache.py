"""TTL cache for quotes, price histories and analyst data."""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CacheInterface(ABC):
    @abstractmethod
    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        """Value stored under `key` if younger than `ttl_seconds`."""

    @abstractmethod
    def get_stale(self, key: str) -> Optional[Any]:
        """Last value stored under `key`, however old."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


@dataclass
class _Entry:
    value: Any
    stored_at: float


class InMemoryCache(CacheInterface):
    """
    Process-local cache.

    Expiry is decided by the reader, so one entry can serve a short quote
    TTL and a longer fallback window. Expired entries stay until they are
    overwritten or evicted so providers can fall back on them when every
    upstream source fails. The oldest entries are evicted past `max_entries`.
    """

    def __init__(
        self,
        default_ttl: int = 600,
        time_func: Callable[[], float] = time.time,
        max_entries: int = 2048,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._time = time_func
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        entry = self._entries.get(key)
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds

        if entry is None or self._time() - entry.stored_at > ttl:
            self._misses += 1
            logger.debug("Cache miss: %s", key)
            return None

        self._hits += 1
        return entry.value

    def get_stale(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, stored_at=self._time())

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted: %s", evicted)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared: %d items removed", count)

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "hits": self._hits, "misses": self._misses}
