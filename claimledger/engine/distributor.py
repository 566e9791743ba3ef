"""
FIFO distributor.

Splits a claim amount across a wallet's claimable allocations, oldest
allocation first. The output depends only on the balances and the target, so
Phase B can recompute it and compare with what Phase A handed out.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from claimledger.domain.errors import ValidationError
from claimledger.domain.models import AllocationBalance, BreakdownEntry


def distribute(
    target: int,
    balances: Sequence[AllocationBalance],
    total_available: int,
) -> Tuple[BreakdownEntry, ...]:
    """
    Split ``target`` base units across ``balances``.

    Parameters
    ----------
    target : int
        Amount to claim in base units.
    balances : sequence of AllocationBalance
        Candidate allocations; ineligible ones are skipped.
    total_available : int
        The floored wallet total the target is validated against.

    Raises
    ------
    ValidationError
        If ``target`` is not positive or exceeds ``total_available``.
    """
    if target > total_available:
        raise ValidationError(
            f"Requested amount {target} exceeds available balance {total_available}",
            requested=target,
            available=total_available,
        )
    if target <= 0:
        raise ValidationError("Claim amount must be positive", requested=target)

    ordered = sorted(
        (b for b in balances if b.claim_eligible and b.claimable > 0),
        key=lambda b: (b.allocation.created_at, b.allocation.id),
    )
    remaining = target
    breakdown: List[BreakdownEntry] = []
    for balance in ordered:
        if remaining == 0:
            break
        take = min(remaining, balance.claimable)
        remaining -= take
        breakdown.append(
            BreakdownEntry(
                pool_id=balance.pool.id,
                allocation_id=balance.allocation.id,
                amount=take,
                pool_name=balance.pool.name or None,
            )
        )

    if remaining:
        # total_available is floored from the same balances, so this means the
        # caller passed a total that does not belong to these balances.
        raise ValidationError(
            f"Requested amount {target} exceeds available balance {target - remaining}",
            requested=target,
            available=target - remaining,
        )
    return tuple(breakdown)


def same_breakdown(left: Sequence[BreakdownEntry], right: Sequence[BreakdownEntry]) -> bool:
    return [entry.key() for entry in left] == [entry.key() for entry in right]


__all__ = ["distribute", "same_breakdown"]
