"""
Per-wallet rate limiting and request deduplication for the claim endpoints.

Both are explicit components over an injected `KeyedStore` and `Clock`, built
once at startup. With the default in-memory store their guarantees hold for a
single process only.
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any, Dict, Optional

from claimledger.domain.errors import RateLimitedError
from claimledger.infrastructure.keyed_store import KeyedStore
from claimledger.utils.clock import Clock, SystemClock
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


class FixedWindowRateLimiter:
    """
    At most ``max_requests`` hits per key per ``window_seconds``.

    The window opens on the first hit for a key and closes ``window_seconds``
    later; rejected hits do not extend it.
    """

    def __init__(
        self,
        store: KeyedStore,
        window_seconds: float = 10.0,
        max_requests: int = 1,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._window_seconds = window_seconds
        self._max_requests = max_requests
        self._clock = clock or SystemClock()

    def check(self, key: str) -> None:
        """Count one hit for ``key``; raise `RateLimitedError` when over the limit."""
        full_key = f"ratelimit:{key}"
        count = self._store.get(full_key)
        if count is None:
            self._store.set(full_key, 1, self._window_seconds)
            return
        expires_at = self._store.expires_at(full_key) or self._clock.now()
        if count >= self._max_requests:
            retry_after = max(1, math.ceil(expires_at - self._clock.now()))
            log.warning("[RATE-LIMIT] Request rejected", extra={"key": key, "retry_after": retry_after})
            raise RateLimitedError(
                "Too many claim requests. Please wait before trying again.",
                retry_after=retry_after,
            )
        remaining = max(expires_at - self._clock.now(), 0.0)
        self._store.set(full_key, count + 1, remaining)


class RequestDeduplicator:
    """
    Remembers in-flight and completed requests keyed by (wallet, endpoint, payload).

    It only observes: matches are logged and counted, but callers always run
    the request normally, so a replayed settlement still reaches the
    idempotency check and fails the same way the first replay did.
    """

    def __init__(self, store: KeyedStore, ttl_seconds: float = 60.0) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self.hits = 0

    @staticmethod
    def request_key(wallet: str, endpoint: str, payload: Dict[str, Any]) -> str:
        body = json.dumps(payload, sort_keys=True, default=str)
        digest = hashlib.sha256(body.encode("utf-8")).hexdigest()
        return f"dedup:{wallet}:{endpoint}:{digest}"

    def observe(self, wallet: str, endpoint: str, payload: Dict[str, Any]) -> str:
        """Log an exact retry if one is seen and mark the request in flight."""
        key = self.request_key(wallet, endpoint, payload)
        previous = self._store.get(key)
        if previous is not None:
            self.hits += 1
            log.info(
                "[DEDUP] Duplicate request observed",
                extra={"wallet": wallet, "endpoint": endpoint, "previous_state": previous.get("state")},
            )
        else:
            self._store.set(key, {"state": "in_flight"}, self._ttl_seconds)
        return key

    def mark_completed(self, key: str, status_code: int) -> None:
        self._store.set(key, {"state": "completed", "status_code": status_code}, self._ttl_seconds)


__all__ = ["FixedWindowRateLimiter", "RequestDeduplicator"]
