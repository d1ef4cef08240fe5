"""
Decoders for trading-engine JSON documents.

Each decode_* takes the parsed body (dict) and returns typed records. Anything
that does not match the expected shape raises DecodeError; callers never see
KeyError/TypeError from a malformed response.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, TypeVar

from ..errors import DecodeError
from ..types import (
    BarTick,
    BookLevel,
    BookStats,
    MarketSummary,
    Order,
    OrderAck,
    OrderKind,
    OrderStatus,
    QuoteStats,
    QuoteTick,
    Side,
    Statistics,
    StatusReport,
    Tick,
    TickKind,
    Trade,
    TradeStats,
    TradeTick,
)
from ..engine import metrics

T = TypeVar("T")


def to_decimal(value: Any) -> Decimal:
    """Numbers go through str() so 100.1 stays 100.1 rather than its binary expansion."""
    if isinstance(value, bool) or value is None:
        raise DecodeError(f"Expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise DecodeError(f"Expected a number, got {value!r}") from e


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else to_decimal(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"Expected an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise DecodeError(f"Expected an integer, got {value!r}")
    return int(value)


def _guard(fn: Callable[[Any], T], data: Any, what: str) -> T:
    """Run a decoder, mapping shape errors to DecodeError."""
    try:
        return fn(data)
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise DecodeError(f"Malformed {what}: {e!r}") from e


def _field(data: dict, name: str) -> Any:
    if not isinstance(data, dict):
        raise DecodeError(f"Expected an object, got {type(data).__name__}")
    if name not in data:
        raise DecodeError(f"Missing field '{name}'")
    return data[name]


def _list_field(data: dict, name: str) -> list:
    value = _field(data, name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"Field '{name}' is not a list")
    return value


# ---------------------------------------------------------------------------
# Order book
# ---------------------------------------------------------------------------


def _decode_levels(raw: Iterable[dict], descending: bool, side: str) -> tuple[BookLevel, ...]:
    levels: dict[Decimal, BookLevel] = {}
    for entry in raw:
        level = BookLevel(
            price=to_decimal(entry["price"]),
            quantity=_to_int(entry["quantity"]),
            order_count=_to_int(entry.get("orders", 0)),
        )
        if level.quantity < 0 or level.order_count < 0:
            raise DecodeError(f"Negative size at {side} {level.price}")
        if level.price in levels:
            raise DecodeError(f"Duplicate {side} level at {level.price}")
        levels[level.price] = level
    return tuple(sorted(levels.values(), key=lambda lv: lv.price, reverse=descending))


def decode_book(body: dict) -> tuple[tuple[BookLevel, ...], tuple[BookLevel, ...]]:
    """
    Decode GET /orderbook.

    Expected format: {orderbook: {bids: [{price, quantity, orders}], asks: [...], ...}}

    Returns (bids, asks). The engine's own best_bid/best_ask/spread are not
    trusted; the reconciler recomputes them from the levels.
    """
    def _decode(body: dict) -> tuple[tuple[BookLevel, ...], tuple[BookLevel, ...]]:
        book = _field(body, "orderbook")
        bids = _decode_levels(_list_field(book, "bids"), descending=True, side="bid")
        asks = _decode_levels(_list_field(book, "asks"), descending=False, side="ask")
        return bids, asks

    return _guard(_decode, body, "order book")


# ---------------------------------------------------------------------------
# Ticks
# ---------------------------------------------------------------------------


def decode_tick(raw: dict) -> Tick:
    kind = TickKind(str(raw["type"]).lower())
    symbol = str(raw["symbol"])
    timestamp = _to_int(raw["timestamp"])
    if kind is TickKind.TRADE:
        return TradeTick(symbol, timestamp, to_decimal(raw["trade_price"]), _to_int(raw["trade_size"]))
    if kind is TickKind.QUOTE:
        return QuoteTick(
            symbol,
            timestamp,
            bid_price=to_decimal(raw["bid_price"]),
            bid_size=_to_int(raw["bid_size"]),
            ask_price=to_decimal(raw["ask_price"]),
            ask_size=_to_int(raw["ask_size"]),
        )
    return BarTick(
        symbol,
        timestamp,
        open=to_decimal(raw["open"]),
        high=to_decimal(raw["high"]),
        low=to_decimal(raw["low"]),
        close=to_decimal(raw["close"]),
        volume=_to_int(raw["volume"]),
    )


def decode_ticks(body: dict) -> tuple[Tick, ...]:
    """Decode GET /market/data: {ticks: [...]}, oldest first."""
    return _guard(lambda b: tuple(decode_tick(t) for t in _list_field(b, "ticks")), body, "tick window")


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


def decode_trade(raw: dict) -> Trade:
    price = to_decimal(raw["price"])
    quantity = _to_int(raw["quantity"])
    return Trade(
        id=_to_int(raw["trade_id"]),
        buy_order_id=_to_int(raw["buy_order_id"]),
        sell_order_id=_to_int(raw["sell_order_id"]),
        symbol=str(raw["symbol"]),
        price=price,
        quantity=quantity,
        total_value=price * quantity,
        timestamp=_to_int(raw["timestamp"]),
    )


def decode_trades(body: dict) -> tuple[Trade, ...]:
    """Decode GET /trades: {trades: [...]}, oldest first."""
    return _guard(lambda b: tuple(decode_trade(t) for t in _list_field(b, "trades")), body, "trade log")


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def decode_order(raw: dict) -> Order:
    kind = OrderKind(raw["type"])
    requested = _to_int(raw["quantity"])
    remaining = _to_int(raw.get("remaining_quantity", requested))
    filled = _to_int(raw.get("filled_quantity", requested - remaining))
    if filled + remaining != requested:
        raise DecodeError(
            f"Order {raw.get('id')}: filled {filled} + remaining {remaining} != {requested}"
        )
    return Order(
        id=_to_int(raw["id"]),
        client_id=_to_int(raw["client_id"]),
        symbol=str(raw["symbol"]),
        side=Side(raw["side"]),
        kind=kind,
        price=_optional_decimal(raw.get("price")) if kind is OrderKind.LIMIT else None,
        requested_quantity=requested,
        remaining_quantity=remaining,
        filled_quantity=filled,
        status=OrderStatus(raw.get("status", OrderStatus.ACTIVE.value)),
        submitted_at=_to_int(raw.get("timestamp", 0)) / 1000.0,
    )


def decode_order_ack(body: dict) -> OrderAck:
    """Decode POST /orders: {order, immediate_executions}."""
    return _guard(
        lambda b: OrderAck(decode_order(b["order"]), _to_int(b.get("immediate_executions", 0))),
        body,
        "order acknowledgement",
    )


# ---------------------------------------------------------------------------
# Status and aggregates
# ---------------------------------------------------------------------------


def decode_status(body: dict) -> StatusReport:
    """Decode GET /market/status: {connected, subscribed_symbols}."""
    def _decode(b: dict) -> StatusReport:
        connected = _field(b, "connected")
        if not isinstance(connected, bool):
            raise DecodeError(f"'connected' is not a boolean: {connected!r}")
        symbols = tuple(str(s) for s in _list_field(b, "subscribed_symbols"))
        return StatusReport(connected, symbols)

    return _guard(_decode, body, "status report")


def _decode_trade_stats(raw: dict) -> TradeStats:
    last = raw.get("last_trade_time")
    return TradeStats(
        total_trades=_to_int(raw.get("total_trades", 0)),
        total_volume=_to_int(raw.get("total_volume", 0)),
        total_value=to_decimal(raw.get("total_value", 0)),
        avg_price=to_decimal(raw.get("avg_price", 0)),
        min_price=to_decimal(raw.get("min_price", 0)),
        max_price=to_decimal(raw.get("max_price", 0)),
        last_trade_time=None if last is None else _to_int(last),
    )


def _best_price(value: Any) -> Decimal | None:
    # The engine reports 0 for an empty side
    price = _optional_decimal(value)
    return price if price else None


def decode_market(body: dict) -> MarketSummary:
    """Decode GET /market."""
    def _decode(b: dict) -> MarketSummary:
        bid = _best_price(b.get("best_bid"))
        ask = _best_price(b.get("best_ask"))
        stats = b.get("last_trade_stats")
        return MarketSummary(
            symbol=str(b.get("symbol", "")),
            best_bid=bid,
            best_ask=ask,
            spread=metrics.spread(bid, ask),
            mid_price=metrics.mid_price(bid, ask),
            total_active_orders=_to_int(_field(b, "total_active_orders")),
            total_trades=_to_int(_field(b, "total_trades")),
            last_trade_stats=None if stats is None else _decode_trade_stats(stats),
        )

    return _guard(_decode, body, "market summary")


def decode_statistics(body: dict) -> Statistics:
    """Decode GET /statistics: {orderbook, market_data, trades}."""
    def _decode(b: dict) -> Statistics:
        book = _field(b, "orderbook")
        quote = _field(b, "market_data")
        bid = _best_price(quote.get("best_bid"))
        ask = _best_price(quote.get("best_ask"))
        return Statistics(
            orderbook=BookStats(
                bid_levels=_to_int(book.get("bid_levels", 0)),
                ask_levels=_to_int(book.get("ask_levels", 0)),
                bid_orders=_to_int(book.get("bid_orders", 0)),
                ask_orders=_to_int(book.get("ask_orders", 0)),
                total_orders=_to_int(book.get("total_orders", 0)),
                total_trades=_to_int(book.get("total_trades", 0)),
            ),
            market_data=QuoteStats(bid, ask, metrics.spread(bid, ask)),
            trades=_decode_trade_stats(_field(b, "trades")),
        )

    return _guard(_decode, body, "statistics")
