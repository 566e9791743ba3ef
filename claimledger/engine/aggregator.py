"""
Claimable aggregator.

For one wallet, computes per allocation
``claimable = max(0, vested - claimed - reserved)``, where ``reserved`` is what
pending or submitted settlements already hold on the allocation,
and sums the allocations that can be claimed right now (allocation active and
not cancelled, pool active, pool started). The wallet total is floored to the
display precision; that floored figure is the ceiling for any claim request.

Allocations in paused or not-yet-started pools are still reported (the summary
shows them) but never count towards ``total_available``. Allocations that are
cancelled, inactive, or in cancelled pools are omitted entirely.
"""

from __future__ import annotations

from typing import List, Optional

from claimledger.domain.models import AllocationBalance, PoolState, WalletBalance
from claimledger.domain.units import floor_to_display
from claimledger.engine.vesting import VestingCalculator
from claimledger.infrastructure.store import LedgerStore
from claimledger.utils.clock import Clock
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


class ClaimableAggregator:
    def __init__(
        self,
        store: LedgerStore,
        calculator: VestingCalculator,
        clock: Clock,
        token_decimals: int = 9,
        display_decimals: int = 2,
    ) -> None:
        self._store = store
        self._calculator = calculator
        self._clock = clock
        self._token_decimals = token_decimals
        self._display_decimals = display_decimals

    async def wallet_balance(
        self, wallet: str, pool_id: Optional[str] = None, now: Optional[float] = None
    ) -> WalletBalance:
        """
        Snapshot of ``wallet``'s vesting positions.

        Parameters
        ----------
        wallet : str
            Wallet address.
        pool_id : str, optional
            Restrict the snapshot to one pool.
        now : float, optional
            Evaluation instant; defaults to the injected clock.

        Returns
        -------
        WalletBalance
            Per-allocation balances (oldest allocation first) and wallet totals.
        """
        at = self._clock.now() if now is None else now
        rows = await self._store.list_wallet_allocations(wallet)
        rows = [
            (allocation, pool)
            for allocation, pool in rows
            if allocation.is_active
            and not allocation.is_cancelled
            and pool.state is not PoolState.CANCELLED
            and (pool_id is None or pool.id == pool_id)
        ]
        rows.sort(key=lambda pair: (pair[0].created_at, pair[0].id))
        ids = [a.id for a, _ in rows]
        claimed = await self._store.claimed_totals(ids)
        reserved = await self._store.reserved_totals(ids)

        balances: List[AllocationBalance] = []
        for allocation, pool in rows:
            reading = await self._calculator.vested(allocation.token_amount, pool, at)
            already = claimed.get(allocation.id, 0)
            held = reserved.get(allocation.id, 0)
            started = at >= pool.schedule.start
            balances.append(
                AllocationBalance(
                    allocation=allocation,
                    pool=pool,
                    vested=reading.amount,
                    claimed=already,
                    reserved=held,
                    claimable=max(0, reading.amount - already - held),
                    vested_fraction=float(reading.fraction),
                    source=reading.source,
                    claim_eligible=pool.state is PoolState.ACTIVE and started,
                )
            )

        raw_available = sum(b.claimable for b in balances if b.claim_eligible)
        total_available = floor_to_display(raw_available, self._token_decimals, self._display_decimals)
        log.debug(
            "Wallet balance computed",
            extra={
                "wallet": wallet,
                "allocations": len(balances),
                "raw_available": raw_available,
                "total_available": total_available,
            },
        )
        return WalletBalance(
            wallet=wallet,
            as_of=at,
            allocations=tuple(balances),
            total_available=total_available,
            raw_available=raw_available,
            total_claimed=sum(b.claimed for b in balances),
            total_locked=sum(b.locked for b in balances),
        )


__all__ = ["ClaimableAggregator"]
