"""
Escrow-protocol client.

Escrow-backed pools stream their tokens from an on-chain escrow; its vested
amount is the authoritative unlock figure for the whole pool.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

import httpx

from claimledger.domain.errors import ExternalServiceError


@runtime_checkable
class EscrowClient(Protocol):
    async def get_vested_amount(self, escrow_id: str) -> int:
        """Vested amount of the escrow in token base units."""
        ...

    async def get_withdrawn_amount(self, escrow_id: str) -> int:
        ...


class HttpEscrowClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _stream(self, escrow_id: str) -> dict:
        try:
            response = await self._client.get(f"{self._base_url}/streams/{escrow_id}")
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Escrow API unreachable: {exc}", escrow_id=escrow_id) from exc
        if response.status_code == 404:
            raise ExternalServiceError("Escrow stream not found", escrow_id=escrow_id)
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Escrow API error ({response.status_code})", escrow_id=escrow_id
            )
        return response.json()

    async def get_vested_amount(self, escrow_id: str) -> int:
        stream = await self._stream(escrow_id)
        return int(stream["vestedAmount"])

    async def get_withdrawn_amount(self, escrow_id: str) -> int:
        stream = await self._stream(escrow_id)
        return int(stream["withdrawnAmount"])


__all__ = ["EscrowClient", "HttpEscrowClient"]
