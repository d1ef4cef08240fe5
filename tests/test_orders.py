"""Unit tests for OrderLifecycleTracker."""

from decimal import Decimal

import pytest

from live_desk.engine.orders import OrderLifecycleTracker
from live_desk.errors import AlreadyTerminal, InvalidRequest
from live_desk.types import Order, OrderAck, OrderKind, OrderRequest, OrderStatus, Side


def _limit_buy(quantity: int = 100, price: str = "150.00", symbol: str = "AAPL") -> OrderRequest:
    return OrderRequest(symbol, Side.BUY, OrderKind.LIMIT, quantity, Decimal(price))


def _ack(pending: Order, order_id: int, filled: int, status: OrderStatus | None = None,
         immediate: int = 0) -> OrderAck:
    remaining = pending.requested_quantity - filled
    if status is None:
        status = OrderStatus.PARTIALLY_FILLED if 0 < filled < pending.requested_quantity else (
            OrderStatus.FILLED if remaining == 0 else OrderStatus.ACTIVE
        )
    return OrderAck(
        order=pending._replace(
            id=order_id,
            filled_quantity=filled,
            remaining_quantity=remaining,
            status=status,
        ),
        immediate_executions=immediate,
    )


@pytest.fixture
def tracker() -> OrderLifecycleTracker:
    return OrderLifecycleTracker(history_size=3, clock=lambda: 42.0)


class TestSubmit:
    def test_pending_materialised_immediately(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        assert pending.status is OrderStatus.PENDING
        assert pending.id is None
        assert pending.requested_quantity == 100
        assert pending.remaining_quantity == 100
        assert pending.filled_quantity == 0
        assert pending.submitted_at == 42.0
        assert tracker.orders() == (pending,)

    def test_handles_are_unique(self, tracker) -> None:
        a = tracker.submit(_limit_buy())
        b = tracker.submit(_limit_buy())
        assert a.client_id != b.client_id

    @pytest.mark.parametrize(
        "request_",
        [
            OrderRequest("", Side.BUY, OrderKind.LIMIT, 10, Decimal("1")),
            OrderRequest("   ", Side.BUY, OrderKind.LIMIT, 10, Decimal("1")),
            OrderRequest("AAPL", Side.BUY, OrderKind.LIMIT, 0, Decimal("1")),
            OrderRequest("AAPL", Side.SELL, OrderKind.LIMIT, -5, Decimal("1")),
            OrderRequest("AAPL", Side.BUY, OrderKind.LIMIT, 10, None),
            OrderRequest("AAPL", Side.BUY, OrderKind.LIMIT, 10, Decimal("0")),
            OrderRequest("AAPL", Side.BUY, OrderKind.MARKET, 10, Decimal("150")),
        ],
    )
    def test_invalid_requests_rejected_locally(self, tracker, request_) -> None:
        with pytest.raises(InvalidRequest):
            tracker.submit(request_)
        assert tracker.orders() == ()

    def test_market_order_has_no_price(self, tracker) -> None:
        order = tracker.submit(OrderRequest("AAPL", Side.SELL, OrderKind.MARKET, 10))
        assert order.price is None


class TestAcknowledge:
    def test_partial_fill_scenario(self, tracker) -> None:
        pending = tracker.submit(_limit_buy(100, "150.00"))
        order = tracker.acknowledge(_ack(pending, order_id=7, filled=40))

        assert order.id == 7
        assert order.status is OrderStatus.PARTIALLY_FILLED
        assert order.filled_quantity == 40
        assert order.remaining_quantity == 60
        assert order.filled_quantity + order.remaining_quantity == order.requested_quantity
        assert tracker.by_id(7) == order

    def test_no_fill_becomes_active(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        assert tracker.acknowledge(_ack(pending, 7, 0)).status is OrderStatus.ACTIVE

    def test_full_fill_moves_to_history(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        order = tracker.acknowledge(_ack(pending, 7, 100, immediate=2))
        assert order.status is OrderStatus.FILLED
        assert order.remaining_quantity == 0
        assert tracker.orders() == (order,)

    def test_correlates_by_echoed_handle(self, tracker) -> None:
        first = tracker.submit(_limit_buy(10))
        second = tracker.submit(_limit_buy(10))
        tracker.acknowledge(_ack(second, 9, 5))
        assert tracker.get(first.client_id).status is OrderStatus.PENDING
        assert tracker.get(second.client_id).id == 9

    def test_unknown_handle_adopted(self, tracker) -> None:
        foreign = Order(55, 999, "MSFT", Side.SELL, OrderKind.LIMIT, Decimal("10"),
                        10, 10, 0, OrderStatus.ACTIVE, 1.0)
        order = tracker.acknowledge(OrderAck(foreign, 0))
        assert order.id == 55
        assert order.status is OrderStatus.ACTIVE

    def test_reject_keeps_reason_verbatim(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        order = tracker.reject(pending.client_id, "Insufficient liquidity for MARKET order")
        assert order.status is OrderStatus.REJECTED
        assert order.message == "Insufficient liquidity for MARKET order"


class TestCancel:
    def test_cancel_terminal_raises_without_mutation(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        filled = tracker.acknowledge(_ack(pending, 7, 100))
        before = tracker.orders()

        with pytest.raises(AlreadyTerminal) as exc:
            tracker.begin_cancel(7)

        assert exc.value.status is OrderStatus.FILLED
        assert tracker.orders() == before
        assert tracker.by_id(7) == filled

    def test_cancel_active(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        tracker.acknowledge(_ack(pending, 7, 30))
        assert tracker.begin_cancel(7).status is OrderStatus.PARTIALLY_FILLED

        cancelled = tracker.confirm_cancel(7)
        assert cancelled.status is OrderStatus.CANCELLED
        assert cancelled.filled_quantity == 30

        with pytest.raises(AlreadyTerminal):
            tracker.begin_cancel(7)

    def test_cancel_unknown_order_passes_through(self, tracker) -> None:
        assert tracker.begin_cancel(12345) is None


class TestFills:
    def test_trades_advance_fills(self, tracker, make_trade) -> None:
        pending = tracker.submit(_limit_buy(100))
        tracker.acknowledge(_ack(pending, 7, 0))

        changed = tracker.apply_trades([make_trade(1, quantity=30, buy_order_id=7)])
        assert changed[0].filled_quantity == 30
        assert changed[0].status is OrderStatus.PARTIALLY_FILLED

        changed = tracker.apply_trades([make_trade(2, quantity=70, buy_order_id=7)])
        assert changed[0].status is OrderStatus.FILLED
        assert changed[0].remaining_quantity == 0

    def test_immediate_execution_not_double_counted(self, tracker, make_trade) -> None:
        pending = tracker.submit(_limit_buy(100))
        tracker.acknowledge(_ack(pending, 7, 40, immediate=1))

        # The immediate execution shows up later on the trade feed
        tracker.apply_trades([make_trade(1, quantity=40, buy_order_id=7)])
        assert tracker.by_id(7).filled_quantity == 40

        tracker.apply_trades([make_trade(2, quantity=10, sell_order_id=7, buy_order_id=3)])
        assert tracker.by_id(7).filled_quantity == 50

    def test_same_trade_counted_once(self, tracker, make_trade) -> None:
        pending = tracker.submit(_limit_buy(100))
        tracker.acknowledge(_ack(pending, 7, 0))
        trade = make_trade(1, quantity=30, buy_order_id=7)
        tracker.apply_trades([trade])
        assert tracker.apply_trades([trade]) == []
        assert tracker.by_id(7).filled_quantity == 30

    def test_reconcile_is_monotone(self, tracker) -> None:
        pending = tracker.submit(_limit_buy(100))
        acked = tracker.acknowledge(_ack(pending, 7, 60))

        # An older engine record must not roll fills back
        tracker.reconcile([acked._replace(filled_quantity=20, remaining_quantity=80,
                                          status=OrderStatus.PARTIALLY_FILLED)])
        assert tracker.by_id(7).filled_quantity == 60

        changed = tracker.reconcile([acked._replace(filled_quantity=100, remaining_quantity=0,
                                                    status=OrderStatus.FILLED)])
        assert changed[0].status is OrderStatus.FILLED

    def test_engine_cancel_honoured(self, tracker) -> None:
        pending = tracker.submit(_limit_buy(100))
        acked = tracker.acknowledge(_ack(pending, 7, 10))
        tracker.reconcile([acked._replace(status=OrderStatus.CANCELLED)])
        assert tracker.by_id(7).status is OrderStatus.CANCELLED

    def test_history_is_bounded(self, tracker) -> None:
        for order_id in range(1, 6):
            pending = tracker.submit(_limit_buy(10))
            tracker.acknowledge(_ack(pending, order_id, 10))

        history = tracker.orders()
        assert len(history) == 3
        assert [o.id for o in history] == [3, 4, 5]
        assert tracker.by_id(1) is None

    def test_trade_before_ack_counted_on_ack(self, tracker, make_trade) -> None:
        pending = tracker.submit(_limit_buy(100))

        # Execution reaches the trade feed before POST /orders returns
        tracker.apply_trades([make_trade(1, quantity=40, buy_order_id=7)])
        tracker.acknowledge(_ack(pending, 7, 40, immediate=1))
        assert tracker.by_id(7).filled_quantity == 40

        tracker.apply_trades([make_trade(2, quantity=20, buy_order_id=7)])
        order = tracker.by_id(7)
        assert order.filled_quantity == 60
        assert order.remaining_quantity == 40

    def test_trades_ahead_of_ack_raise_fill(self, tracker, make_trade) -> None:
        pending = tracker.submit(_limit_buy(100))
        tracker.apply_trades([
            make_trade(1, quantity=60, buy_order_id=7),
            make_trade(2, quantity=40, sell_order_id=7, buy_order_id=9),
        ])

        order = tracker.acknowledge(_ack(pending, 7, 60))

        assert order.status is OrderStatus.FILLED
        assert order.remaining_quantity == 0

    def test_recent_trade_memory_is_bounded(self, make_trade) -> None:
        tracker = OrderLifecycleTracker(recent_trades=2)
        pending = tracker.submit(_limit_buy(100))
        tracker.apply_trades([
            make_trade(1, quantity=30, buy_order_id=7),
            make_trade(2, quantity=1, buy_order_id=3),
            make_trade(3, quantity=1, buy_order_id=4),
        ])

        assert tracker.acknowledge(_ack(pending, 7, 0)).filled_quantity == 0


class TestCancelByHandle:
    def test_pending_order_cannot_be_cancelled(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        with pytest.raises(InvalidRequest):
            tracker.begin_cancel(client_id=pending.client_id)
        assert tracker.get(pending.client_id).status is OrderStatus.PENDING

    def test_acknowledged_order_by_handle(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        tracker.acknowledge(_ack(pending, 7, 0))
        assert tracker.begin_cancel(client_id=pending.client_id).id == 7

    def test_rejected_order_by_handle_is_terminal(self, tracker) -> None:
        pending = tracker.submit(_limit_buy())
        tracker.reject(pending.client_id, "Invalid price")
        with pytest.raises(AlreadyTerminal):
            tracker.begin_cancel(client_id=pending.client_id)

    def test_unknown_handle(self, tracker) -> None:
        with pytest.raises(InvalidRequest):
            tracker.begin_cancel(client_id=999)
