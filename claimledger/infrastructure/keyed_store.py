"""
Keyed TTL stores backing the process-local caches, the rate limiter and the
request deduplicator.

`InMemoryKeyedStore` is unsynchronized and scoped to one process, which caps
the limiter's guarantees to single-instance deployments. A shared store for
multi-instance deployments only has to implement `KeyedStore`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from claimledger.utils.clock import Clock, SystemClock


@runtime_checkable
class KeyedStore(Protocol):
    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None when absent/expired."""
        ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def expires_at(self, key: str) -> Optional[float]:
        ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class InMemoryKeyedStore:
    """
    Dict-backed store evicting lazily on read and in bulk via `purge_expired`.

    Keys written once and never read again (one per wallet for the limiter)
    are only reclaimed by the bulk purge, which runs every ``purge_every``
    writes.
    """

    def __init__(self, clock: Optional[Clock] = None, purge_every: int = 256) -> None:
        self._clock = clock or SystemClock()
        self._entries: Dict[str, _Entry] = {}
        self._purge_every = max(1, purge_every)
        self._writes = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock.now() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = _Entry(value=value, expires_at=self._clock.now() + ttl_seconds)
        self._writes += 1
        if self._writes >= self._purge_every:
            self._writes = 0
            self.purge_expired()

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def expires_at(self, key: str) -> Optional[float]:
        if self.get(key) is None:
            return None
        return self._entries[key].expires_at

    def purge_expired(self) -> int:
        now = self._clock.now()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["KeyedStore", "InMemoryKeyedStore"]
