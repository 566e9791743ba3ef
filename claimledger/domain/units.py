"""
Conversions between integer base units and decimal display units.

All amounts inside the engine are integers in base units. Display amounts
(what users type and see) are Decimals with ``decimals`` fractional digits.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

from claimledger.domain.errors import ValidationError


def to_base_units(amount: Union[Decimal, int, str, float], decimals: int) -> int:
    """
    Convert a display amount to base units, truncating sub-base-unit dust.

    Floats are converted through ``str`` so ``0.1`` means one tenth rather than
    its binary approximation.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")
    scaled = (value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def to_display(base_units: int, decimals: int) -> Decimal:
    return Decimal(base_units).scaleb(-decimals)


def floor_to_display(base_units: int, decimals: int, display_decimals: int) -> int:
    """
    Floor a base-unit amount to ``display_decimals`` places of the display unit.

    With 9 token decimals and 2 display decimals the result is a multiple of
    10**7 base units, never larger than the input.
    """
    if base_units <= 0:
        return 0
    step = 10 ** max(decimals - display_decimals, 0)
    return base_units - (base_units % step)


__all__ = ["to_base_units", "to_display", "floor_to_display"]
