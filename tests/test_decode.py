"""Decoder tests: engine JSON shapes to typed records."""

from decimal import Decimal

import pytest

from live_desk.datafeed import decode
from live_desk.errors import DecodeError
from live_desk.types import BarTick, OrderKind, OrderStatus, QuoteTick, Side, TradeTick


def _book(bids, asks) -> dict:
    return {"orderbook": {"bids": bids, "asks": asks}}


class TestBook:
    def test_levels_sorted_best_first(self) -> None:
        bids, asks = decode.decode_book(_book(
            [{"price": 99.5, "quantity": 30, "orders": 2}, {"price": 100.0, "quantity": 50, "orders": 1}],
            [{"price": 101.0, "quantity": 5, "orders": 1}, {"price": 100.5, "quantity": 20, "orders": 1}],
        ))
        assert [lv.price for lv in bids] == [Decimal("100.0"), Decimal("99.5")]
        assert [lv.price for lv in asks] == [Decimal("100.5"), Decimal("101.0")]

    def test_float_prices_keep_their_decimal_text(self) -> None:
        bids, _ = decode.decode_book(_book([{"price": 100.1, "quantity": 1, "orders": 1}], []))
        assert bids[0].price == Decimal("100.1")

    def test_null_side_is_empty(self) -> None:
        bids, asks = decode.decode_book(_book(None, []))
        assert bids == () and asks == ()

    def test_duplicate_price_rejected(self) -> None:
        with pytest.raises(DecodeError):
            decode.decode_book(_book(
                [{"price": 100, "quantity": 1, "orders": 1}, {"price": 100.0, "quantity": 2, "orders": 1}],
                [],
            ))

    def test_negative_quantity_rejected(self) -> None:
        with pytest.raises(DecodeError):
            decode.decode_book(_book([], [{"price": 100, "quantity": -1, "orders": 1}]))

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"orderbook": []},
            {"orderbook": {"bids": "nope", "asks": []}},
            _book([{"quantity": 1}], []),
            _book([{"price": "abc", "quantity": 1}], []),
            _book([{"price": 1, "quantity": 1.5}], []),
        ],
    )
    def test_malformed(self, body) -> None:
        with pytest.raises(DecodeError):
            decode.decode_book(body)


class TestTicks:
    def test_all_kinds(self) -> None:
        ticks = decode.decode_ticks({"ticks": [
            {"type": "trade", "symbol": "AAPL", "timestamp": 1, "trade_price": 150.5, "trade_size": 100},
            {"type": "QUOTE", "symbol": "AAPL", "timestamp": 2, "bid_price": 150.4, "bid_size": 10,
             "ask_price": 150.6, "ask_size": 12},
            {"type": "bar", "symbol": "AAPL", "timestamp": 3, "open": 150, "high": 151, "low": 149,
             "close": 150.5, "volume": 1000},
        ]})
        assert isinstance(ticks[0], TradeTick)
        assert ticks[0].price == Decimal("150.5")
        assert isinstance(ticks[1], QuoteTick)
        assert ticks[1].ask_size == 12
        assert isinstance(ticks[2], BarTick)
        assert ticks[2].volume == 1000

    def test_unknown_kind(self) -> None:
        with pytest.raises(DecodeError):
            decode.decode_ticks({"ticks": [{"type": "halt", "symbol": "AAPL", "timestamp": 1}]})


class TestTrades:
    def test_total_value_recomputed(self) -> None:
        (trade,) = decode.decode_trades({"trades": [{
            "trade_id": 9, "buy_order_id": 1, "sell_order_id": 2, "symbol": "AAPL",
            "price": 100.25, "quantity": 4, "total_value": 999, "timestamp": 1_700_000_000_000,
        }]})
        assert trade.id == 9
        assert trade.total_value == Decimal("401.00")


class TestOrders:
    def _raw(self, **overrides) -> dict:
        raw = {
            "id": 7, "client_id": 3, "symbol": "AAPL", "side": "BUY", "type": "LIMIT",
            "price": 150.0, "quantity": 100, "remaining_quantity": 60, "filled_quantity": 40,
            "status": "PARTIALLY_FILLED", "timestamp": 1_700_000_000_000,
        }
        raw.update(overrides)
        return raw

    def test_ack(self) -> None:
        ack = decode.decode_order_ack({"order": self._raw(), "immediate_executions": 1})
        order = ack.order
        assert (order.id, order.client_id) == (7, 3)
        assert order.side is Side.BUY
        assert order.kind is OrderKind.LIMIT
        assert order.status is OrderStatus.PARTIALLY_FILLED
        assert order.submitted_at == 1_700_000_000.0
        assert ack.immediate_executions == 1

    def test_market_order_has_no_price(self) -> None:
        order = decode.decode_order(self._raw(type="MARKET", price=0))
        assert order.price is None

    def test_inconsistent_quantities(self) -> None:
        with pytest.raises(DecodeError):
            decode.decode_order_ack({"order": self._raw(filled_quantity=50)})

    def test_unknown_status(self) -> None:
        with pytest.raises(DecodeError):
            decode.decode_order_ack({"order": self._raw(status="EXPIRED")})


class TestStatusAndAggregates:
    def test_status(self) -> None:
        report = decode.decode_status({"connected": False, "subscribed_symbols": ["AAPL"]})
        assert report.connected is False
        assert report.subscribed_symbols == ("AAPL",)

    def test_status_connected_must_be_bool(self) -> None:
        with pytest.raises(DecodeError):
            decode.decode_status({"connected": "yes", "subscribed_symbols": []})

    def test_market_zero_best_price_means_empty_side(self) -> None:
        summary = decode.decode_market({
            "symbol": "AAPL", "best_bid": 100.0, "best_ask": 0, "spread": 0,
            "total_active_orders": 3, "total_trades": 10,
        })
        assert summary.best_bid == Decimal("100.0")
        assert summary.best_ask is None
        assert summary.spread is None
        assert summary.last_trade_stats is None

    def test_statistics(self) -> None:
        stats = decode.decode_statistics({
            "orderbook": {"bid_levels": 2, "ask_levels": 1, "bid_orders": 3, "ask_orders": 1,
                          "total_orders": 4, "total_trades": 5},
            "market_data": {"best_bid": 100.0, "best_ask": 100.5},
            "trades": {"total_trades": 5, "total_volume": 50, "total_value": 5000.0,
                       "avg_price": 100.0, "min_price": 99.0, "max_price": 101.0},
        })
        assert stats.orderbook.total_orders == 4
        assert stats.market_data.spread == Decimal("0.5")
        assert stats.trades.last_trade_time is None
