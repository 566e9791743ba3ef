"""
Native-asset price quotes in USD.

Queries the Pyth Hermes latest-price endpoint first and falls back to the
CoinGecko simple-price endpoint. When both fail the caller gets an
`ExternalServiceError`; no hard-coded price is ever substituted.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol, runtime_checkable

import httpx

from claimledger.domain.errors import ExternalServiceError
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class PriceSource(Protocol):
    async def native_price_usd(self) -> Decimal:
        ...


class HttpPriceSource:
    def __init__(
        self,
        primary_url: str,
        fallback_url: str,
        feed_id: str,
        fallback_asset: str = "solana",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._primary_url = primary_url
        self._fallback_url = fallback_url
        self._feed_id = feed_id
        self._fallback_asset = fallback_asset
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _primary(self) -> Decimal:
        response = await self._client.get(self._primary_url, params={"ids[]": self._feed_id})
        response.raise_for_status()
        parsed = response.json()["parsed"][0]["price"]
        price = Decimal(parsed["price"]).scaleb(int(parsed["expo"]))
        return price

    async def _fallback(self) -> Decimal:
        response = await self._client.get(
            self._fallback_url, params={"ids": self._fallback_asset, "vs_currencies": "usd"}
        )
        response.raise_for_status()
        return Decimal(str(response.json()[self._fallback_asset]["usd"]))

    async def native_price_usd(self) -> Decimal:
        try:
            price = await self._primary()
            if price > 0:
                log.debug("Price from primary oracle", extra={"price_usd": str(price)})
                return price
            log.warning("Primary oracle returned a non-positive price, using fallback")
        except (httpx.HTTPError, KeyError, IndexError, ValueError, InvalidOperation) as exc:
            log.warning("Primary price oracle failed, using fallback", extra={"error": str(exc)})

        try:
            price = await self._fallback()
        except (httpx.HTTPError, KeyError, ValueError, InvalidOperation) as exc:
            raise ExternalServiceError(f"No price source available: {exc}") from exc
        if price <= 0:
            raise ExternalServiceError("Fallback price source returned a non-positive price")
        log.info("Price from fallback source", extra={"price_usd": str(price)})
        return price


__all__ = ["PriceSource", "HttpPriceSource"]
