"""
Snapshot reconciliation engine.

Turns (previous view model, fresh snapshot) into the next view model with a
change-set. Never mutates the previous view: every result is a new
NamedTuple, so a renderer holding the old one is never torn.

Matching is by natural key, never by position:
- book levels by (side, price)
- ticks by (symbol, timestamp, kind)
- trades by id
- orders by client handle

Retention windows (ticks, trades) are hard bounds. Whatever the engine sends,
the reconciler holds O(window) entries, evicting oldest first.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable, Hashable, Iterable, Sequence, TypeVar

from . import metrics
from ..errors import FetchError
from ..types import (
    EMPTY_CHANGES,
    BookLevel,
    BookSnapshot,
    ChangeSet,
    FeedId,
    Order,
    Side,
    SubscriptionStatus,
    Tick,
    Trade,
    ViewModel,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TICK_WINDOW = 20
DEFAULT_TRADE_RETENTION = 50
DEFAULT_HIGHLIGHT_TTL = 2.0


def _diff_keyed(
    previous: dict[Hashable, T],
    current: dict[Hashable, T],
    changed: Callable[[T, T], bool],
) -> tuple[list[tuple[Hashable, T]], list[Hashable], list[tuple[Hashable, T]]]:
    """(added, removed keys, updated) between two keyed collections."""
    added = [(k, v) for k, v in current.items() if k not in previous]
    removed = [k for k in previous if k not in current]
    updated = [
        (k, v) for k, v in current.items()
        if k in previous and changed(previous[k], v)
    ]
    return added, removed, updated


def _retain(
    previous: Sequence[T],
    incoming: Iterable[T],
    key: Callable[[T], Hashable],
    limit: int,
) -> tuple[T, ...]:
    """
    Append unseen entries to `previous` in arrival order, keep the newest `limit`.

    FIFO under the bound: eviction always takes the oldest retained entry.
    """
    seen = {key(item) for item in previous}
    window: deque[T] = deque(previous, maxlen=limit)
    for item in incoming:
        k = key(item)
        if k in seen:
            continue  # Duplicate (within the snapshot or already retained)
        seen.add(k)
        window.append(item)
    return tuple(window)


def _tail(items: Sequence[T], key: Callable[[T], Hashable], limit: int) -> list[T]:
    """Last `limit` distinct entries of a chronological snapshot."""
    seen: set[Hashable] = set()
    out: list[T] = []
    for item in reversed(items):
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        out.append(item)
        if len(out) >= limit:
            break
    out.reverse()
    return out


class Reconciler:
    """
    Stateless merge rules, parameterised by retention and highlight TTL.

    All state lives in the ViewModels passed in and returned.
    """

    __slots__ = ('tick_window', 'trade_retention', 'highlight_ttl', 'clock')

    def __init__(
        self,
        tick_window: int = DEFAULT_TICK_WINDOW,
        trade_retention: int = DEFAULT_TRADE_RETENTION,
        highlight_ttl: float = DEFAULT_HIGHLIGHT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tick_window < 1 or trade_retention < 1:
            raise ValueError("retention windows must be at least 1")
        self.tick_window = tick_window
        self.trade_retention = trade_retention
        self.highlight_ttl = highlight_ttl
        self.clock = clock

    # -- Helpers ------------------------------------------------------------

    def _publish(
        self,
        feed: FeedId,
        previous: ViewModel | None,
        data: Any,
        added: Iterable[Any] = (),
        removed: Iterable[Any] = (),
        updated: Iterable[Any] = (),
    ) -> ViewModel:
        now = self.clock()
        changes = ChangeSet(
            added=tuple(added),
            removed=tuple(removed),
            updated=tuple(updated),
            expires_at=now + self.highlight_ttl,
        )
        if changes.is_empty:
            changes = EMPTY_CHANGES
        return ViewModel(
            feed=feed,
            data=data,
            changes=changes,
            stale=False,
            error=None,
            failures=0,
            generation=previous.generation + 1 if previous is not None else 1,
            updated_at=now,
        )

    # -- Dispatch -------------------------------------------------------------

    def reconcile(self, feed: FeedId, previous: ViewModel | None, snapshot: Any) -> ViewModel:
        """Merge a fresh snapshot for `feed` into the next view model."""
        if feed is FeedId.BOOK:
            bids, asks = snapshot
            return self.reconcile_book(previous, bids, asks)
        if feed is FeedId.TICKS:
            return self.reconcile_ticks(previous, snapshot)
        if feed is FeedId.TRADES:
            return self.reconcile_trades(previous, snapshot)
        if feed is FeedId.STATUS:
            return self.reconcile_status(previous, snapshot)
        if feed is FeedId.ORDERS:
            return self.reconcile_orders(previous, snapshot)
        return self.reconcile_fields(feed, previous, snapshot)

    def reconcile_failure(
        self,
        feed: FeedId,
        previous: ViewModel | None,
        error: FetchError,
    ) -> ViewModel:
        """
        Carry the last good view over, flagged stale.

        Data and change-set are untouched: one failed poll must never blank
        the display.
        """
        if previous is None:
            return ViewModel(
                feed=feed,
                data=None,
                changes=EMPTY_CHANGES,
                stale=True,
                error=error.kind,
                failures=1,
                generation=0,
                updated_at=self.clock(),
            )
        return previous._replace(
            stale=True,
            error=error.kind,
            failures=previous.failures + 1,
        )

    # -- Book -------------------------------------------------------------------

    def reconcile_book(
        self,
        previous: ViewModel | None,
        bids: Sequence[BookLevel],
        asks: Sequence[BookLevel],
    ) -> ViewModel:
        """
        Full-depth replace. Levels are keyed by (side, price); only a quantity
        change counts as an update.
        """
        bids = tuple(sorted(bids, key=lambda lv: lv.price, reverse=True))
        asks = tuple(sorted(asks, key=lambda lv: lv.price))

        bid = metrics.best_bid(bids)
        ask = metrics.best_ask(asks)
        crossed = metrics.is_crossed(bid, ask)
        if crossed:
            logger.warning("Crossed book: best bid %s > best ask %s", bid, ask)

        book = BookSnapshot(
            bids=bids,
            asks=asks,
            best_bid=bid,
            best_ask=ask,
            spread=metrics.spread(bid, ask),
            mid_price=metrics.mid_price(bid, ask),
            depth=metrics.depth_normalization(bids, asks),
            crossed=crossed,
        )

        before = _book_index(previous.data) if previous is not None and previous.data is not None else {}
        after = _book_index(book)
        added, removed, updated = _diff_keyed(
            before, after, lambda old, new: old.quantity != new.quantity
        )
        return self._publish(
            FeedId.BOOK,
            previous,
            book,
            added=((side, level) for (side, _), level in added),
            removed=removed,
            updated=((side, level) for (side, _), level in updated),
        )

    # -- Ticks ------------------------------------------------------------------

    def reconcile_ticks(self, previous: ViewModel | None, ticks: Sequence[Tick]) -> ViewModel:
        """
        Keep the most recent `tick_window` distinct ticks.

        Timestamps may repeat or go backwards; identity is the full
        (symbol, timestamp, kind) key, so neither case re-adds or crashes.
        """
        prior: tuple[Tick, ...] = previous.data if previous is not None and previous.data else ()
        retained = _retain(
            prior, _tail(ticks, _tick_key, self.tick_window), _tick_key, self.tick_window
        )
        return self._keyed_publish(FeedId.TICKS, previous, prior, retained, _tick_key)

    # -- Trades -----------------------------------------------------------------

    def reconcile_trades(self, previous: ViewModel | None, trades: Sequence[Trade]) -> ViewModel:
        """Retain at most `trade_retention` trades keyed by id, oldest evicted first."""
        prior: tuple[Trade, ...] = previous.data if previous is not None and previous.data else ()
        retained = _retain(
            prior, _tail(trades, _trade_key, self.trade_retention), _trade_key, self.trade_retention
        )
        return self._keyed_publish(FeedId.TRADES, previous, prior, retained, _trade_key)

    def _keyed_publish(
        self,
        feed: FeedId,
        previous: ViewModel | None,
        prior: Sequence[T],
        retained: tuple[T, ...],
        key: Callable[[T], Hashable],
    ) -> ViewModel:
        prior_keys = {key(item) for item in prior}
        retained_keys = {key(item) for item in retained}
        return self._publish(
            feed,
            previous,
            retained,
            added=(item for item in retained if key(item) not in prior_keys),
            removed=(k for k in (key(item) for item in prior) if k not in retained_keys),
        )

    # -- Orders -----------------------------------------------------------------

    def reconcile_orders(self, previous: ViewModel | None, orders: Sequence[Order]) -> ViewModel:
        before = {o.client_id: o for o in previous.data} if previous is not None and previous.data else {}
        after = {o.client_id: o for o in orders}
        added, removed, updated = _diff_keyed(before, after, lambda old, new: old != new)
        return self._publish(
            FeedId.ORDERS,
            previous,
            tuple(orders),
            added=(o for _, o in added),
            removed=removed,
            updated=(o for _, o in updated),
        )

    # -- Status -----------------------------------------------------------------

    def reconcile_status(self, previous: ViewModel | None, status: SubscriptionStatus) -> ViewModel:
        """`added`/`removed` are symbols that became active / inactive."""
        prior: SubscriptionStatus | None = previous.data if previous is not None else None
        before = prior.active_symbols if prior is not None else frozenset()
        updated = []
        if prior is not None and prior.connected != status.connected:
            updated.append("connected")
        return self._publish(
            FeedId.STATUS,
            previous,
            status,
            added=sorted(status.active_symbols - before),
            removed=sorted(before - status.active_symbols),
            updated=updated,
        )

    # -- Aggregates (market summary, statistics) --------------------------------

    def reconcile_fields(self, feed: FeedId, previous: ViewModel | None, data: Any) -> ViewModel:
        """Whole-record replace; `updated` names the top-level fields that changed."""
        prior = previous.data if previous is not None else None
        if prior is None or type(prior) is not type(data):
            return self._publish(feed, previous, data, added=(data,))
        changed = [
            name for name in data._fields
            if getattr(prior, name) != getattr(data, name)
        ]
        return self._publish(feed, previous, data, updated=changed)


def _book_index(book: BookSnapshot) -> dict[tuple[Side, Any], BookLevel]:
    index: dict[tuple[Side, Any], BookLevel] = {}
    for level in book.bids:
        index[(Side.BUY, level.price)] = level
    for level in book.asks:
        index[(Side.SELL, level.price)] = level
    return index


def _tick_key(tick: Tick) -> Hashable:
    return tick.key


def _trade_key(trade: Trade) -> Hashable:
    return trade.id
