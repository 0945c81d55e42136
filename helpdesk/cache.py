"""In-process TTL cache for hot read paths (ticket and article lookups).

Entries are plain JSON-ready dicts so a cached value can never leak a
SQLAlchemy instance bound to a closed session. Mutating endpoints delete the
affected keys; expiry is the safety net.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
import time
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

KEY_PREFIX = "helpdesk"
TICKET_TTL_SECONDS = float(os.getenv("CACHE_TTL_TICKETS", "300"))
ARTICLE_TTL_SECONDS = float(os.getenv("CACHE_TTL_ARTICLES", "900"))


def ticket_key(ticket_id: str) -> str:
    return f"{KEY_PREFIX}:ticket:{ticket_id}"


def article_key(article_id: str) -> str:
    return f"{KEY_PREFIX}:article:{article_id}"


TICKETS_PATTERN = ticket_key("*")
ARTICLES_PATTERN = article_key("*")


class TTLCache:
    def __init__(self, default_ttl: float = 300.0) -> None:
        self.default_ttl = default_ttl
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = time.monotonic() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = (expires_at, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob pattern such as `helpdesk:ticket:*`."""
        with self._lock:
            doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Cache invalidated %d key(s) for pattern %s", len(doomed), pattern)
        return len(doomed)

    def clear(self) -> None:
        """Drop every entry and reset the hit/miss counters."""
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def statistics(self) -> Dict[str, Any]:
        now = time.monotonic()
        with self._lock:
            hits, misses = self.hits, self.misses
            live = sum(1 for expires_at, _ in self._entries.values() if expires_at > now)
        lookups = hits + misses
        return {
            "total_hits": hits,
            "total_misses": misses,
            "hit_rate": round(hits / lookups * 100, 2) if lookups else 0.0,
            "total_keys": live,
        }

    def __len__(self) -> int:
        return len(self._entries)


cache = TTLCache()


__all__ = ["KEY_PREFIX", "TICKET_TTL_SECONDS", "ARTICLE_TTL_SECONDS", "ticket_key", "article_key", "TICKETS_PATTERN", "ARTICLES_PATTERN", "TTLCache", "cache"]
