from decimal import Decimal
from typing import Callable

import pytest

from live_desk.engine.reconciler import Reconciler
from live_desk.types import BookLevel, Trade


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reconciler(clock: FakeClock) -> Reconciler:
    return Reconciler(tick_window=5, trade_retention=50, highlight_ttl=2.0, clock=clock)


@pytest.fixture
def level() -> Callable[..., BookLevel]:
    def _level(price: str, quantity: int, orders: int = 1) -> BookLevel:
        return BookLevel(Decimal(price), quantity, orders)

    return _level


@pytest.fixture
def make_trade() -> Callable[..., Trade]:
    def _trade(
        trade_id: int,
        price: str = "100.00",
        quantity: int = 10,
        buy_order_id: int = 1,
        sell_order_id: int = 2,
        timestamp: int | None = None,
    ) -> Trade:
        p = Decimal(price)
        return Trade(
            id=trade_id,
            buy_order_id=buy_order_id,
            sell_order_id=sell_order_id,
            symbol="AAPL",
            price=p,
            quantity=quantity,
            total_value=p * quantity,
            timestamp=timestamp if timestamp is not None else 1_700_000_000_000 + trade_id,
        )

    return _trade
