"""
Order lifecycle tracker.

Local projection of the orders this desk submitted, for optimistic UI:
an order exists (PENDING) the moment it is submitted, and is reconciled into
its engine-confirmed state when the acknowledgement arrives.

Rules:
1. Correlation is by the client_id echoed back by the engine, never by
   matching symbol/price/quantity
2. Status only moves forward (OrderStatus.rank); fills only grow
3. Terminal orders move to a bounded history so "recently filled" renders
   before it is evicted
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import OrderedDict, deque
from typing import Callable, Iterable

from ..errors import AlreadyTerminal, InvalidRequest
from ..types import Order, OrderAck, OrderKind, OrderRequest, OrderStatus, Trade

logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 50
# Trades remembered for orders not yet acknowledged (an execution can reach
# the trade feed before the POST /orders response)
DEFAULT_RECENT_TRADES = 500


def _status_for_fills(filled: int, remaining: int) -> OrderStatus:
    if remaining <= 0:
        return OrderStatus.FILLED
    if filled > 0:
        return OrderStatus.PARTIALLY_FILLED
    return OrderStatus.ACTIVE


def validate_request(request: OrderRequest) -> None:
    """Raise InvalidRequest for anything the engine would have to reject anyway."""
    if not request.symbol or not request.symbol.strip():
        raise InvalidRequest("Symbol must not be empty")
    if request.quantity <= 0:
        raise InvalidRequest(f"Quantity must be positive, got {request.quantity}")
    if request.kind is OrderKind.LIMIT:
        if request.price is None or request.price <= 0:
            raise InvalidRequest("Limit orders need a positive price")
    elif request.price is not None:
        raise InvalidRequest("Market orders must not carry a price")


class OrderLifecycleTracker:
    """
    Owns every order this desk knows about.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY,
        clock: Callable[[], float] = time.time,
        first_client_id: int = 1,
        recent_trades: int = DEFAULT_RECENT_TRADES,
    ) -> None:
        self._clock = clock
        self._handles = itertools.count(first_client_id)

        # Live orders by client handle, insertion ordered (oldest first)
        self._live: dict[int, Order] = {}
        # Terminal orders, oldest evicted first
        self._history: deque[Order] = deque(maxlen=history_size)
        # Engine id -> client handle, for cancels and trade fills
        self._by_id: dict[int, int] = {}
        # Per-order trade ids already counted, with their quantities
        self._fills: dict[int, dict[int, int]] = {}
        # Recent trades by id, oldest first; replayed into orders acknowledged late
        self._recent: OrderedDict[int, Trade] = OrderedDict()
        self._recent_limit = recent_trades

    # -- Queries ----------------------------------------------------------------

    def orders(self) -> tuple[Order, ...]:
        """Live orders, then recent terminal ones (newest last)."""
        return tuple(self._live.values()) + tuple(self._history)

    def get(self, client_id: int) -> Order | None:
        order = self._live.get(client_id)
        if order is not None:
            return order
        for past in self._history:
            if past.client_id == client_id:
                return past
        return None

    def by_id(self, order_id: int) -> Order | None:
        client_id = self._by_id.get(order_id)
        return None if client_id is None else self.get(client_id)

    # -- Submission -------------------------------------------------------------

    def submit(self, request: OrderRequest) -> Order:
        """
        Materialise a PENDING order immediately.

        Raises:
            InvalidRequest: If the request fails local validation
        """
        validate_request(request)
        client_id = next(self._handles)
        order = Order(
            id=None,
            client_id=client_id,
            symbol=request.symbol.strip(),
            side=request.side,
            kind=request.kind,
            price=request.price if request.kind is OrderKind.LIMIT else None,
            requested_quantity=request.quantity,
            remaining_quantity=request.quantity,
            filled_quantity=0,
            status=OrderStatus.PENDING,
            submitted_at=self._clock(),
        )
        self._live[client_id] = order
        return order

    def acknowledge(self, ack: OrderAck) -> Order:
        """
        Fold the engine's acknowledgement into the pending order it echoes.

        An ack for a handle we never issued is adopted as-is; the engine is
        authoritative about what exists. Trades for the order that reached the
        trade feed before the ack are counted now.
        """
        confirmed = ack.order
        local = self.get(confirmed.client_id)
        if local is None:
            logger.info("Adopting unknown order %s (client %s)", confirmed.id, confirmed.client_id)
            local = confirmed._replace(status=OrderStatus.PENDING, filled_quantity=0,
                                       remaining_quantity=confirmed.requested_quantity)
            self._live[confirmed.client_id] = local

        if local.is_terminal or confirmed.id is None:
            return local
        if ack.immediate_executions:
            logger.info("Order %s: %d immediate execution(s)", confirmed.id, ack.immediate_executions)

        self._by_id[confirmed.id] = confirmed.client_id
        self._store(local._replace(id=confirmed.id))
        fills = self._fills.setdefault(confirmed.client_id, {})
        for trade in self._recent.values():
            if confirmed.id in (trade.buy_order_id, trade.sell_order_id):
                fills.setdefault(trade.id, trade.quantity)

        self.reconcile([confirmed])
        return self.get(confirmed.client_id)

    def reject(self, client_id: int, message: str) -> Order | None:
        """PENDING -> REJECTED, keeping the engine's reason verbatim."""
        order = self._live.get(client_id)
        if order is None or order.status is not OrderStatus.PENDING:
            return None
        return self._store(order._replace(status=OrderStatus.REJECTED, message=message))

    # -- Cancellation -----------------------------------------------------------

    def begin_cancel(self, order_id: int | None = None, *, client_id: int | None = None) -> Order | None:
        """
        Check a cancel before it is sent. Nothing is mutated here.

        The order is addressed by engine id, or by client handle for orders
        the engine has not acknowledged yet. Returns the local order, or None
        for an engine id this desk never saw (the engine decides).

        Raises:
            AlreadyTerminal: Order is filled/cancelled/rejected, so a stale
                click cannot revive terminal bookkeeping
            InvalidRequest: Order is still PENDING (no engine id to cancel),
                or the client handle is unknown
        """
        if client_id is not None:
            order = self.get(client_id)
            if order is None:
                raise InvalidRequest(f"No order with client handle {client_id}")
        elif order_id is not None:
            order = self.by_id(order_id)
            if order is None:
                return None
        else:
            raise ValueError("begin_cancel needs an order id or a client handle")

        if order.is_terminal:
            raise AlreadyTerminal(order.id if order.id is not None else order.client_id, order.status)
        if order.status is OrderStatus.PENDING:
            raise InvalidRequest(f"Order (client {order.client_id}) is not acknowledged yet")
        return order

    def confirm_cancel(self, order_id: int) -> Order | None:
        order = self.by_id(order_id)
        if order is None or order.is_terminal:
            return order
        return self._store(order._replace(status=OrderStatus.CANCELLED))

    # -- Reconciliation ------------------------------------------------------------

    def reconcile(self, observed: Iterable[Order]) -> list[Order]:
        """
        Update tracked orders from authoritative engine records.

        The engine has no order listing, so its records are the orders echoed
        in POST /orders responses. Records for orders this desk does not
        track are ignored. Fills recorded from the trade feed are kept if
        they run ahead of the record.
        """
        changed: list[Order] = []
        for record in observed:
            if record.id is None:
                continue
            local = self.by_id(record.id)
            if local is None or local.is_terminal:
                continue
            filled = max(record.filled_quantity, self._traded(local.client_id))
            updated = self._advance(local, filled, record.status)
            if updated != local:
                changed.append(updated)
        return changed

    def apply_trades(self, trades: Iterable[Trade]) -> list[Order]:
        """
        Apply fills seen on the trade feed to the orders they executed.

        Pass the full trade log each cycle: trade ids already counted are
        skipped. Each order's fill is max(known fill, sum of counted trades),
        so an immediate execution already reflected in the acknowledgement is
        not counted twice when its trade shows up on the feed.
        """
        touched: set[int] = set()
        for trade in trades:
            self._remember(trade)
            for order_id in (trade.buy_order_id, trade.sell_order_id):
                client_id = self._by_id.get(order_id)
                if client_id is None or client_id not in self._live:
                    continue
                fills = self._fills.setdefault(client_id, {})
                if trade.id not in fills:
                    fills[trade.id] = trade.quantity
                    touched.add(client_id)

        changed: list[Order] = []
        for client_id in touched:
            local = self._live[client_id]
            updated = self._advance(local, self._traded(client_id), None)
            if updated != local:
                changed.append(updated)
        return changed

    # -- Internals ----------------------------------------------------------------

    def _traded(self, client_id: int) -> int:
        return sum(self._fills.get(client_id, {}).values())

    def _remember(self, trade: Trade) -> None:
        if trade.id in self._recent:
            return
        self._recent[trade.id] = trade
        while len(self._recent) > self._recent_limit:
            self._recent.popitem(last=False)

    def _advance(self, order: Order, filled: int, status: OrderStatus | None) -> Order:
        """Move `order` forward only: fills never shrink, status never regresses."""
        if status is OrderStatus.FILLED:
            filled = order.requested_quantity
        filled = min(max(filled, order.filled_quantity), order.requested_quantity)
        remaining = order.requested_quantity - filled
        target = _status_for_fills(filled, remaining)
        if status is not None and status.is_terminal and remaining > 0:
            # Engine says cancelled/rejected: take its word
            target = status
        if target.rank < order.status.rank:
            target = order.status

        updated = order._replace(
            filled_quantity=filled,
            remaining_quantity=remaining,
            status=target,
        )
        return self._store(updated)

    def _store(self, order: Order) -> Order:
        if order.is_terminal:
            if self._live.pop(order.client_id, None) is not None:
                self._fills.pop(order.client_id, None)
                if len(self._history) == self._history.maxlen:
                    evicted = self._history[0]
                    if evicted.id is not None:
                        self._by_id.pop(evicted.id, None)
                self._history.append(order)
                logger.info("Order %s %s", order.id, order.status.value)
        else:
            self._live[order.client_id] = order
        return order
