"""Sanity predicates applied to every candidate order-book entry.

Rejection is routine (stale levels, unit mix-ups, field-order bugs in a
parser) and is never reported as an error.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

DEFAULT_MAX_PRICE_DEVIATION = 0.20
DEFAULT_MAX_CALCULATION_DEVIATION = 0.01
DEFAULT_MAX_NOTIONAL_USD = 100_000_000.0


@dataclass(frozen=True, slots=True)
class NotionalBounds:
    lower: float
    upper: float = DEFAULT_MAX_NOTIONAL_USD

    def __post_init__(self) -> None:
        if self.lower < 0 or self.upper < self.lower:
            raise ValueError(f"invalid notional bounds lower={self.lower} upper={self.upper}")


def price_within_tolerance(
    price: float,
    reference_price: float,
    max_deviation: float = DEFAULT_MAX_PRICE_DEVIATION,
) -> bool:
    if not reference_price > 0:
        return False
    deviation = abs(price - reference_price) / reference_price
    return deviation <= max_deviation


def notional_within_bounds(total: float, bounds: NotionalBounds) -> bool:
    return bounds.lower <= total <= bounds.upper


def calculation_consistent(
    price: float,
    quantity: float,
    total: float,
    max_deviation: float = DEFAULT_MAX_CALCULATION_DEVIATION,
) -> bool:
    expected = price * quantity
    if not expected > 0 or not math.isfinite(expected):
        return False
    return abs(expected - total) < max_deviation * expected


@dataclass(frozen=True, slots=True)
class EntryValidator:
    bounds: NotionalBounds
    max_price_deviation: float = DEFAULT_MAX_PRICE_DEVIATION
    max_calculation_deviation: float = DEFAULT_MAX_CALCULATION_DEVIATION

    def accepts(self, price: float, quantity: float, total: float, reference_price: float) -> bool:
        return (
            price_within_tolerance(price, reference_price, self.max_price_deviation)
            and notional_within_bounds(total, self.bounds)
            and calculation_consistent(price, quantity, total, self.max_calculation_deviation)
        )
