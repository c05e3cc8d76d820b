"""Owner-scoped, time-limited memo for progress snapshots."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple


def _normalize_owner(owner_id: str) -> str:
    normalized = owner_id.strip()
    if not normalized:
        raise ValueError("Owner id cannot be empty when caching progress.")
    return normalized


@dataclass
class _ProgressEntry:
    value: Any
    cached_at: float


class ProgressCache:
    """Process-local cache keyed by ``(owner, metric)`` with an explicit TTL.

    Entries expire after ``ttl_seconds``; the store's change notification
    calls :meth:`invalidate` so a mutation is never hidden behind a stale
    entry. Each invalidation bumps the owner's generation, and a ``set``
    carrying an older generation is dropped, so a snapshot computed before
    a concurrent write cannot be cached after it. A TTL of zero disables
    caching.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: Dict[Tuple[str, str], _ProgressEntry] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, owner_id: str, metric: str) -> Optional[Any]:
        key = (_normalize_owner(owner_id), metric)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.cached_at >= self._ttl:
                self._entries.pop(key, None)
                return None
            value = entry.value
        if hasattr(value, "model_copy"):
            return value.model_copy(deep=True)
        return copy.deepcopy(value)

    def generation(self, owner_id: str) -> int:
        owner = _normalize_owner(owner_id)
        with self._lock:
            return self._generations.get(owner, 0)

    def set(self, owner_id: str, metric: str, value: Any, *, generation: Optional[int] = None) -> bool:
        """Store ``value`` unless the owner was invalidated after ``generation`` was read."""
        if self._ttl <= 0:
            return False
        owner = _normalize_owner(owner_id)
        payload = value.model_copy(deep=True) if hasattr(value, "model_copy") else copy.deepcopy(value)
        with self._lock:
            if generation is not None and self._generations.get(owner, 0) != generation:
                return False
            self._entries[(owner, metric)] = _ProgressEntry(value=payload, cached_at=self._clock())
        return True

    def invalidate(self, owner_id: str) -> None:
        owner = _normalize_owner(owner_id)
        with self._lock:
            self._generations[owner] = self._generations.get(owner, 0) + 1
            for key in [key for key in self._entries if key[0] == owner]:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for owner in self._generations:
                self._generations[owner] += 1


__all__ = ["ProgressCache"]
