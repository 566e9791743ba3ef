from __future__ import annotations

import random

import pytest

from claimledger.domain.errors import ValidationError
from claimledger.domain.models import AllocationBalance, VestingSource
from claimledger.engine.distributor import distribute, same_breakdown
from tests.fakes import T0, make_allocation, make_pool


def _balance(allocation_id: str, claimable: int, created_at: float, eligible: bool = True) -> AllocationBalance:
    pool = make_pool(f"pool-{allocation_id}", total=10_000)
    allocation = make_allocation(allocation_id, pool.id, 10_000, created_at=created_at)
    return AllocationBalance(
        allocation=allocation,
        pool=pool,
        vested=claimable,
        claimed=0,
        claimable=claimable,
        vested_fraction=0.5,
        source=VestingSource.SCHEDULE,
        claim_eligible=eligible,
    )


def test_oldest_allocation_is_drained_first() -> None:
    balances = [_balance("B", 20, T0 + 1), _balance("A", 5, T0)]

    breakdown = distribute(12, balances, total_available=25)

    assert [(e.allocation_id, e.amount) for e in breakdown] == [("A", 5), ("B", 7)]
    assert [e.pool_id for e in breakdown] == ["pool-A", "pool-B"]


def test_single_allocation_partial_claim() -> None:
    breakdown = distribute(10, [_balance("A", 25, T0)], total_available=25)

    assert [(e.allocation_id, e.amount) for e in breakdown] == [("A", 10)]


def test_sum_of_breakdown_equals_target() -> None:
    rng = random.Random(7)
    for _ in range(50):
        balances = [_balance(f"a{i}", rng.randint(0, 500), T0 + rng.randint(0, 1000)) for i in range(6)]
        total = sum(b.claimable for b in balances)
        if total == 0:
            continue
        target = rng.randint(1, total)

        breakdown = distribute(target, balances, total_available=total)

        assert sum(e.amount for e in breakdown) == target
        assert all(e.amount > 0 for e in breakdown)


def test_exceeding_available_is_rejected_with_both_figures() -> None:
    with pytest.raises(ValidationError) as excinfo:
        distribute(30, [_balance("A", 25, T0)], total_available=25)

    assert "exceeds available balance" in excinfo.value.message
    assert excinfo.value.context == {"requested": 30, "available": 25}


def test_zero_available_rejects_any_positive_amount() -> None:
    with pytest.raises(ValidationError, match="exceeds available balance"):
        distribute(1, [_balance("A", 0, T0)], total_available=0)


def test_non_positive_target_is_rejected() -> None:
    with pytest.raises(ValidationError):
        distribute(0, [_balance("A", 10, T0)], total_available=10)


def test_ineligible_allocations_are_skipped() -> None:
    balances = [_balance("paused", 50, T0, eligible=False), _balance("live", 10, T0 + 1)]

    breakdown = distribute(10, balances, total_available=10)

    assert [e.allocation_id for e in breakdown] == ["live"]


def test_distribution_is_deterministic_regardless_of_input_order() -> None:
    balances = [_balance(f"a{i}", 7 + i, T0 + (i % 3)) for i in range(8)]
    expected = distribute(40, balances, total_available=sum(b.claimable for b in balances))

    rng = random.Random(3)
    for _ in range(20):
        shuffled = balances[:]
        rng.shuffle(shuffled)
        assert same_breakdown(distribute(40, shuffled, total_available=sum(b.claimable for b in shuffled)), expected)


def test_total_below_sum_still_caps_target() -> None:
    balances = [_balance("A", 333, T0)]

    with pytest.raises(ValidationError):
        distribute(333, balances, total_available=330)
    assert sum(e.amount for e in distribute(330, balances, total_available=330)) == 330
