"""
Process-lifetime cache for the user roster and reconciled feeds.

Entries never expire on their own. Callers invalidate them explicitly, e.g.
on logout, so data fetched under one identity is never served to another.
"""
import logging
from threading import Lock
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class FeedCache:
    """
    Thread-safe in-memory store keyed by cache name.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._lock = Lock()

    def get(self, name: str, default: Any = None) -> Any:
        """Get a cached value, or `default` when absent."""
        with self._lock:
            return self._entries.get(name, default)

    def set(self, name: str, value: Any) -> None:
        """Store a value under `name`, replacing any previous entry."""
        with self._lock:
            self._entries[name] = value

    def invalidate(self, name: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(name, None) is not None

    def clear(self) -> None:
        """Drop everything."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache cleared ({count} entries)")

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)
