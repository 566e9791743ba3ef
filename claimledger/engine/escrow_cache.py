"""
Short-TTL cache around escrow vested-amount reads.

One summary or claim computation can touch the same escrow-backed pool
several times; readings are reused for ``ttl_seconds`` (30 s by default).
Failed reads are never cached, so the next call retries the escrow.
"""

from __future__ import annotations

from claimledger.infrastructure.escrow_client import EscrowClient
from claimledger.infrastructure.keyed_store import KeyedStore


class EscrowVestedCache:
    def __init__(self, client: EscrowClient, store: KeyedStore, ttl_seconds: float = 30.0) -> None:
        self._client = client
        self._store = store
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(escrow_id: str) -> str:
        return f"escrow:vested:{escrow_id}"

    async def get_vested_amount(self, escrow_id: str) -> int:
        key = self._key(escrow_id)
        cached = self._store.get(key)
        if cached is not None:
            return cached
        value = await self._client.get_vested_amount(escrow_id)
        self._store.set(key, value, self._ttl_seconds)
        return value

    def invalidate(self, escrow_id: str) -> None:
        self._store.delete(self._key(escrow_id))


__all__ = ["EscrowVestedCache"]
