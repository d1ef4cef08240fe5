"""
Data types for Live Desk.

Notes:
- NamedTuple everywhere: view models are published and replaced, never mutated
- Prices are Decimal (spread of 100.50 - 100.00 must be exactly 0.50)
- Quantities are plain ints, as the trading engine reports them
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, NamedTuple, Union


class FeedId(str, Enum):
    """Independent data sources polled from the trading engine."""

    MARKET = "market"
    TICKS = "ticks"
    STATUS = "status"
    BOOK = "book"
    TRADES = "trades"
    STATISTICS = "statistics"
    ORDERS = "orders"  # Published by the order tracker, not polled


class ErrorKind(str, Enum):
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    DECODE = "decode"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderKind(str, Enum):
    LIMIT = "LIMIT"
    MARKET = "MARKET"


class OrderStatus(str, Enum):
    """Order lifecycle states. Transitions only move forward in RANK."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


TERMINAL_STATUSES = frozenset(
    {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED}
)

_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.ACTIVE: 1,
    OrderStatus.PARTIALLY_FILLED: 2,
    OrderStatus.FILLED: 3,
    OrderStatus.CANCELLED: 3,
    OrderStatus.REJECTED: 3,
}


class TickKind(str, Enum):
    TRADE = "trade"
    QUOTE = "quote"
    BAR = "bar"


class SubscriptionPhase(str, Enum):
    UNSUBSCRIBED = "UNSUBSCRIBED"
    PENDING_SUBSCRIBE = "PENDING_SUBSCRIBE"
    SUBSCRIBED = "SUBSCRIBED"
    PENDING_UNSUBSCRIBE = "PENDING_UNSUBSCRIBE"


# ---------------------------------------------------------------------------
# Order book
# ---------------------------------------------------------------------------


class BookLevel(NamedTuple):
    """Single price level on one side of the book."""
    price: Decimal
    quantity: int
    order_count: int


class BookSnapshot(NamedTuple):
    """
    Full-depth book as reconciled for display.

    best_bid/best_ask/spread/mid_price are None when a side is empty:
    "no data yet" is not the same as a zero spread.
    """
    bids: tuple[BookLevel, ...]   # Descending by price (best bid first)
    asks: tuple[BookLevel, ...]   # Ascending by price (best ask first)
    best_bid: Decimal | None
    best_ask: Decimal | None
    spread: Decimal | None
    mid_price: Decimal | None
    depth: int                    # Normalisation factor for bar widths, >= 1
    crossed: bool                 # best_bid > best_ask, flagged not fixed


# ---------------------------------------------------------------------------
# Market ticks
# ---------------------------------------------------------------------------


class TradeTick(NamedTuple):
    symbol: str
    timestamp: int
    price: Decimal
    size: int

    kind = TickKind.TRADE

    @property
    def key(self) -> tuple[str, int, TickKind]:
        return (self.symbol, self.timestamp, self.kind)


class QuoteTick(NamedTuple):
    symbol: str
    timestamp: int
    bid_price: Decimal
    bid_size: int
    ask_price: Decimal
    ask_size: int

    kind = TickKind.QUOTE

    @property
    def key(self) -> tuple[str, int, TickKind]:
        return (self.symbol, self.timestamp, self.kind)


class BarTick(NamedTuple):
    symbol: str
    timestamp: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int

    kind = TickKind.BAR

    @property
    def key(self) -> tuple[str, int, TickKind]:
        return (self.symbol, self.timestamp, self.kind)


Tick = Union[TradeTick, QuoteTick, BarTick]


# ---------------------------------------------------------------------------
# Trades and orders
# ---------------------------------------------------------------------------


class Trade(NamedTuple):
    """Executed trade. Immutable once observed."""
    id: int
    buy_order_id: int
    sell_order_id: int
    symbol: str
    price: Decimal
    quantity: int
    total_value: Decimal   # price * quantity
    timestamp: int


class OrderRequest(NamedTuple):
    """What the user asked for, before the engine has seen it."""
    symbol: str
    side: Side
    kind: OrderKind
    quantity: int
    price: Decimal | None = None


class Order(NamedTuple):
    """
    Local projection of an order.

    id is None until the engine acknowledges the submission; client_id is the
    handle the engine echoes back, used to correlate the two.
    Invariant: filled_quantity + remaining_quantity == requested_quantity.
    """
    id: int | None
    client_id: int
    symbol: str
    side: Side
    kind: OrderKind
    price: Decimal | None
    requested_quantity: int
    remaining_quantity: int
    filled_quantity: int
    status: OrderStatus
    submitted_at: float
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def fill_percentage(self) -> float:
        if self.requested_quantity <= 0:
            return 0.0
        return self.filled_quantity / self.requested_quantity * 100.0


class OrderAck(NamedTuple):
    """Engine response to POST /orders."""
    order: Order
    immediate_executions: int


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class TradeStats(NamedTuple):
    total_trades: int
    total_volume: int
    total_value: Decimal
    avg_price: Decimal
    min_price: Decimal
    max_price: Decimal
    last_trade_time: int | None


class MarketSummary(NamedTuple):
    symbol: str
    best_bid: Decimal | None
    best_ask: Decimal | None
    spread: Decimal | None
    mid_price: Decimal | None
    total_active_orders: int
    total_trades: int
    last_trade_stats: TradeStats | None


class BookStats(NamedTuple):
    bid_levels: int
    ask_levels: int
    bid_orders: int
    ask_orders: int
    total_orders: int
    total_trades: int


class QuoteStats(NamedTuple):
    best_bid: Decimal | None
    best_ask: Decimal | None
    spread: Decimal | None


class Statistics(NamedTuple):
    orderbook: BookStats
    market_data: QuoteStats
    trades: TradeStats


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class StatusReport(NamedTuple):
    """Connection status as the engine reports it."""
    connected: bool
    subscribed_symbols: tuple[str, ...]


class SubscriptionStatus(NamedTuple):
    """Local subscription state, reconciled against StatusReport polls."""
    connected: bool
    active_symbols: frozenset[str]
    phases: tuple[tuple[str, SubscriptionPhase], ...]


# ---------------------------------------------------------------------------
# View models
# ---------------------------------------------------------------------------


class ChangeSet(NamedTuple):
    """
    Delta between two successive view models.

    Drives transient highlight rendering: a renderer emphasises `added` and
    `updated` entries until `expires_at` (time.monotonic() clock).
    """
    added: tuple[Any, ...] = ()
    removed: tuple[Any, ...] = ()
    updated: tuple[Any, ...] = ()
    expires_at: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.updated)

    def is_active(self, now: float) -> bool:
        return not self.is_empty and now < self.expires_at


EMPTY_CHANGES = ChangeSet()


class ViewModel(NamedTuple):
    """
    Immutable per-feed snapshot consumed by rendering.

    A new one is published every reconciliation cycle. When the latest fetch
    failed, `data` is carried over from the last good cycle and `stale` is set.
    """
    feed: FeedId
    data: Any
    changes: ChangeSet
    stale: bool
    error: ErrorKind | None
    failures: int         # Consecutive failed cycles
    generation: int
    updated_at: float     # time.monotonic() of the last successful reconcile
