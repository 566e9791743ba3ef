"""
Claim fee quoting and apportionment.

The claim fee is a fixed USD figure (persisted platform configuration) paid in
the native asset. `FeeQuoter` converts it at the current oracle price, caching
the quote briefly so bursts of Phase-A requests do not hammer the oracle.
`apportion_fee` splits the fee actually paid across breakdown entries for the
claim receipts.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import List, Optional, Sequence

from claimledger.domain.errors import ExternalServiceError
from claimledger.domain.models import BreakdownEntry, ClaimRecord, FeeQuote
from claimledger.infrastructure.keyed_store import KeyedStore
from claimledger.infrastructure.price_client import PriceSource
from claimledger.infrastructure.store import LedgerStore
from claimledger.utils.clock import Clock, SystemClock


def fee_in_base_units(fee_usd: Decimal, native_price_usd: Decimal, native_decimals: int) -> int:
    """floor(fee_usd / price * 10**native_decimals)"""
    if native_price_usd <= 0:
        raise ExternalServiceError("Native asset price must be positive", price=str(native_price_usd))
    raw = fee_usd / native_price_usd * (Decimal(10) ** native_decimals)
    return int(raw.to_integral_value(rounding=ROUND_DOWN))


class FeeQuoter:
    def __init__(
        self,
        price_source: PriceSource,
        store: LedgerStore,
        cache: KeyedStore,
        fee_account: str,
        native_decimals: int = 9,
        ttl_seconds: float = 10.0,
        clock: Optional[Clock] = None,
    ) -> None:
        self._price_source = price_source
        self._store = store
        self._cache = cache
        self._fee_account = fee_account
        self._native_decimals = native_decimals
        self._ttl_seconds = ttl_seconds
        self._clock = clock or SystemClock()

    async def quote(self) -> FeeQuote:
        config = await self._store.get_platform_config()
        key = f"fee:quote:{config.claim_fee_usd}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        price = await self._price_source.native_price_usd()
        quote = FeeQuote(
            fee_usd=config.claim_fee_usd,
            native_price_usd=price,
            amount=fee_in_base_units(config.claim_fee_usd, price, self._native_decimals),
            fee_account=self._fee_account,
            quoted_at=self._clock.now(),
        )
        self._cache.set(key, quote, self._ttl_seconds)
        return quote


def apportion_fee(total_fee: int, amounts: Sequence[int]) -> List[int]:
    """
    Split ``total_fee`` proportionally to ``amounts``.

    Each share is floored; the last entry absorbs the remainder so the shares
    always sum to ``total_fee`` exactly.
    """
    if not amounts:
        return []
    total = sum(amounts)
    if total <= 0 or total_fee <= 0:
        return [0] * len(amounts)
    shares = [total_fee * amount // total for amount in amounts[:-1]]
    shares.append(total_fee - sum(shares))
    return shares


def build_claim_records(
    wallet: str,
    breakdown: Sequence[BreakdownEntry],
    fee_paid: int,
    fee_tx_id: str,
    transfer_tx_id: str,
    claimed_at: datetime,
) -> List[ClaimRecord]:
    entries = [entry for entry in breakdown if entry.amount > 0]
    shares = apportion_fee(fee_paid, [entry.amount for entry in entries])
    return [
        ClaimRecord(
            wallet=wallet,
            allocation_id=entry.allocation_id,
            amount_claimed=entry.amount,
            fee_paid=share,
            transfer_tx_id=transfer_tx_id,
            fee_tx_id=fee_tx_id,
            claimed_at=claimed_at,
        )
        for entry, share in zip(entries, shares)
    ]


__all__ = ["FeeQuoter", "apportion_fee", "build_claim_records", "fee_in_base_units"]
