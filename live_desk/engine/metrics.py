"""
Derived book metrics.

Pure functions, no state. Every function returns None when its input is
undefined (empty side, missing best price): callers must be able to tell
"no data yet" from "zero spread".
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from ..types import BookLevel

_TWO = Decimal(2)
_BPS = Decimal(10000)


def best_bid(bids: Sequence[BookLevel]) -> Decimal | None:
    """Highest bid price, regardless of the order the levels arrive in."""
    return max((level.price for level in bids), default=None)


def best_ask(asks: Sequence[BookLevel]) -> Decimal | None:
    """Lowest ask price."""
    return min((level.price for level in asks), default=None)


def spread(bid: Decimal | None, ask: Decimal | None) -> Decimal | None:
    """best_ask - best_bid. Negative for a crossed book (reported, not fixed)."""
    if bid is None or ask is None:
        return None
    return ask - bid


def mid_price(bid: Decimal | None, ask: Decimal | None) -> Decimal | None:
    if bid is None or ask is None:
        return None
    return (bid + ask) / _TWO


def spread_bps(spread_value: Decimal | None, mid: Decimal | None) -> Decimal | None:
    """Spread in basis points of mid."""
    if spread_value is None or mid is None or mid <= 0:
        return None
    return spread_value / mid * _BPS


def is_crossed(bid: Decimal | None, ask: Decimal | None) -> bool:
    return bid is not None and ask is not None and bid > ask


def depth_normalization(bids: Sequence[BookLevel], asks: Sequence[BookLevel]) -> int:
    """Largest level quantity across both sides, floored at 1."""
    largest = max((level.quantity for level in (*bids, *asks)), default=0)
    return max(largest, 1)


def bar_width(quantity: int, depth: int) -> float:
    """Visual bar width in percent, clamped to [0, 100]."""
    if depth <= 0 or quantity <= 0:
        return 0.0
    return min(100.0, quantity / depth * 100.0)
