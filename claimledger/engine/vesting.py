"""
Vesting schedule calculator.

The time-based schedule is: nothing before the cliff, everything from the end
instant on, and a linear ramp from cliff to end in between. Escrow-backed pools
take their fraction from the escrow's vested amount instead, falling back to
the schedule when the escrow cannot be read.

Fractions are exact rationals and vested amounts are floored to whole base
units, so a displayed figure can never be rounded up past what has unlocked.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional

from claimledger.domain.models import Pool, VestingSchedule, VestingSource
from claimledger.engine.escrow_cache import EscrowVestedCache
from claimledger.utils.logging import get_logger

log = get_logger(__name__)

_ZERO = Fraction(0)
_ONE = Fraction(1)


def vested_fraction(now: float, schedule: VestingSchedule) -> Fraction:
    """Time-based vested fraction in [0, 1]; non-decreasing in ``now``."""
    if now < schedule.cliff:
        return _ZERO
    if now >= schedule.end:
        return _ONE
    return Fraction(now - schedule.cliff) / Fraction(schedule.end - schedule.cliff)


def escrow_fraction(escrow_vested: int, pool_total: int) -> Fraction:
    if pool_total <= 0:
        return _ZERO
    return min(_ONE, max(_ZERO, Fraction(escrow_vested, pool_total)))


def vested_amount(token_amount: int, fraction: Fraction) -> int:
    return math.floor(token_amount * fraction)


@dataclass(frozen=True)
class VestedReading:
    amount: int
    fraction: Fraction
    source: VestingSource


class VestingCalculator:
    """
    Computes vested amounts for allocations of a pool.

    Parameters
    ----------
    escrow_cache : EscrowVestedCache, optional
        Reader for escrow-backed pools. Without it every pool uses the schedule.
    """

    def __init__(self, escrow_cache: Optional[EscrowVestedCache] = None) -> None:
        self._escrow_cache = escrow_cache

    async def pool_fraction(self, pool: Pool, now: float) -> tuple[Fraction, VestingSource]:
        if pool.escrow_id and self._escrow_cache is not None:
            try:
                escrow_vested = await self._escrow_cache.get_vested_amount(pool.escrow_id)
            except Exception as exc:  # noqa: BLE001 - any escrow failure degrades to schedule math
                log.warning(
                    "[ESCROW] Vested read failed, falling back to schedule",
                    extra={"pool_id": pool.id, "escrow_id": pool.escrow_id, "error": str(exc)},
                )
                return vested_fraction(now, pool.schedule), VestingSource.ESCROW_FALLBACK
            return escrow_fraction(escrow_vested, pool.total_amount), VestingSource.ESCROW
        if pool.escrow_id:
            return vested_fraction(now, pool.schedule), VestingSource.ESCROW_FALLBACK
        return vested_fraction(now, pool.schedule), VestingSource.SCHEDULE

    async def vested(self, token_amount: int, pool: Pool, now: float) -> VestedReading:
        fraction, source = await self.pool_fraction(pool, now)
        return VestedReading(
            amount=vested_amount(token_amount, fraction), fraction=fraction, source=source
        )


__all__ = [
    "VestedReading",
    "VestingCalculator",
    "escrow_fraction",
    "vested_amount",
    "vested_fraction",
]
