"""
Simple In-Memory Caching System
Process-local TTL cache backing the auth token and payment status lookups
"""

import time
import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class SimpleCache:
    """Key -> value store whose entries expire at a time fixed when written.

    Reads never extend an entry. Not shared between processes and not
    synchronized; the event loop is the only writer.
    """

    def __init__(self, default_ttl: float = 300, name: str = "cache"):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self.default_ttl = default_ttl
        self.name = name

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default

        expires_at, value = entry
        if expires_at <= time.time():
            del self._entries[key]
            logger.debug(f"CACHE_EXPIRED: {self.name}:{key}")
            return default
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = time.time()
        self._entries[key] = (now + (self.default_ttl if ttl is None else ttl), value)
        self._purge(now)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def ttl_remaining(self, key: str) -> Optional[float]:
        """Seconds until the entry expires, None when absent or expired"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry[0] - time.time()
        return remaining if remaining > 0 else None

    def _purge(self, now: float) -> None:
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
