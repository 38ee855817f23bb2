"""In-process TTL cache for upstream lookups."""

from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.config import settings


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Bounded, thread-safe cache with per-entry expiry.

    A disabled cache behaves as a permanent miss: reads return None and
    writes are dropped, so callers never branch on whether caching is on.
    """

    def __init__(self, default_ttl: int = 300, max_entries: int = 10000, enabled: bool = True) -> None:
        self.default_ttl = default_ttl
        self.max_entries = max(1, max_entries)
        self.enabled = enabled
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        if not self.enabled or value is None:
            return False
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = _Entry(value=copy.deepcopy(value), expires_at=time.monotonic() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"enabled": self.enabled, "entries": len(self._entries), "max_entries": self.max_entries}

    # Key helpers
    @staticmethod
    def scope_key(user_id: str) -> str:
        return f"profile:scope:{user_id}"

    @staticmethod
    def directory_key(role: str, college_id: str, department: Optional[str] = None) -> str:
        return f"auth:role:{college_id}:{role}:{department or '*'}"

    @staticmethod
    def user_key(user_id: str) -> str:
        return f"auth:user:{user_id}"


def build_cache() -> TTLCache:
    return TTLCache(
        default_ttl=settings.SCOPE_CACHE_TTL_SECONDS,
        max_entries=settings.CACHE_MAX_ENTRIES,
        enabled=not settings.CACHE_DISABLED,
    )


upstream_cache = build_cache()
