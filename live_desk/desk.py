"""
Trading desk orchestration.

Handles:
1. One polling loop per engine feed (market, ticks, status, book, trades, statistics)
2. Reconciling each result into a fresh ViewModel and publishing it
3. Commands: subscribe/unsubscribe, submit order, cancel order

Publishing = replacing the feed's slot in `views` with a new immutable value
and pushing it onto `snapshot_queue` for the UI. Reconciliation is
synchronous; the only awaits are network calls, so one feed's cycle never
interleaves with itself.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import DeskConfig
from .datafeed.client import FeedClient
from .datafeed.scheduler import PollingScheduler
from .engine.orders import OrderLifecycleTracker
from .engine.reconciler import Reconciler
from .engine.subscriptions import SubscriptionManager
from .errors import FetchError, HttpError
from .types import FeedId, Order, OrderRequest, ViewModel

logger = logging.getLogger(__name__)

POLLED_FEEDS = (
    FeedId.MARKET,
    FeedId.TICKS,
    FeedId.STATUS,
    FeedId.BOOK,
    FeedId.TRADES,
    FeedId.STATISTICS,
)


class TradingDesk:
    """
    Live view of the simulated trading engine.

    Usage:
        async with FeedClient(config.base_url, config.book_levels) as client:
            desk = TradingDesk(client, config)
            desk.start()
            ...
            book_view = desk.view(FeedId.BOOK)
            ...
            await desk.stop()
    """

    def __init__(
        self,
        client: FeedClient,
        config: DeskConfig | None = None,
        scheduler: PollingScheduler | None = None,
        reconciler: Reconciler | None = None,
    ) -> None:
        self.config = config or DeskConfig()
        self.client = client
        self.scheduler = scheduler or PollingScheduler()
        retention = self.config.retention
        self.reconciler = reconciler or Reconciler(
            tick_window=retention.tick_window,
            trade_retention=retention.trade_retention,
            highlight_ttl=retention.highlight_ttl,
        )
        self.subscriptions = SubscriptionManager(
            client.subscribe,
            failure_threshold=self.config.status_failure_threshold,
        )
        self.orders = OrderLifecycleTracker(history_size=retention.order_history)

        self._views: dict[FeedId, ViewModel] = {}
        # Output queue for UI; drop oldest when the consumer falls behind
        self.snapshot_queue: asyncio.Queue[ViewModel] = asyncio.Queue(maxsize=self.config.queue_size)

    # -- Views ------------------------------------------------------------------

    def view(self, feed: FeedId) -> ViewModel | None:
        """Latest published view for `feed` (None before the first cycle)."""
        return self._views.get(feed)

    @property
    def views(self) -> dict[FeedId, ViewModel]:
        return dict(self._views)

    def _publish(self, view: ViewModel) -> None:
        self._views[view.feed] = view
        try:
            self.snapshot_queue.put_nowait(view)
        except asyncio.QueueFull:
            self.snapshot_queue.get_nowait()
            self.snapshot_queue.put_nowait(view)

    # -- Polling ----------------------------------------------------------------

    def start(self) -> None:
        """Schedule every feed at its configured cadence."""
        for feed in POLLED_FEEDS:
            self.scheduler.start(
                feed,
                self.config.intervals.for_feed(feed),
                lambda feed=feed: self.poll(feed),
                lambda outcome, feed=feed: self.apply(feed, outcome),
            )
        logger.info("Polling %s at %s", ", ".join(f.value for f in POLLED_FEEDS), self.client.base_url)

    async def stop(self) -> None:
        await self.scheduler.stop_all()

    async def poll(self, feed: FeedId) -> Any:
        """One fetch. A FetchError is returned, not raised, so it can be reconciled."""
        try:
            return await self.client.fetch(feed)
        except FetchError as e:
            return e

    def apply(self, feed: FeedId, outcome: Any) -> ViewModel:
        """Reconcile one poll outcome (snapshot or FetchError) and publish the result."""
        previous = self._views.get(feed)

        if isinstance(outcome, FetchError):
            if not (previous is not None and previous.stale):
                logger.warning("%s feed stale: %s", feed.value, outcome)
            view = self.reconciler.reconcile_failure(feed, previous, outcome)
            if feed is FeedId.STATUS:
                status = self.subscriptions.record_failure(outcome)
                if view.data is not None:
                    view = view._replace(data=status)
            self._publish(view)
            return view

        if feed is FeedId.STATUS:
            outcome = self.subscriptions.reconcile(outcome)

        view = self.reconciler.reconcile(feed, previous, outcome)
        self._publish(view)

        if feed is FeedId.TRADES:
            # Whole log: a fill can fall outside the retained window
            if self.orders.apply_trades(outcome):
                self._publish_orders()
        return view

    def _publish_orders(self) -> None:
        self._publish(
            self.reconciler.reconcile_orders(self._views.get(FeedId.ORDERS), self.orders.orders())
        )

    def _publish_status(self) -> None:
        self._publish(
            self.reconciler.reconcile_status(self._views.get(FeedId.STATUS), self.subscriptions.status())
        )

    # -- Commands ---------------------------------------------------------------

    async def subscribe(self, symbol: str, trades: bool = True, quotes: bool = True, bars: bool = False) -> None:
        """
        Raises:
            InvalidRequest: Rejected locally, nothing sent
            FetchError: Engine refused (HttpError.message is its reason) or unreachable
        """
        try:
            await self.subscriptions.subscribe(symbol, trades, quotes, bars)
        finally:
            self._publish_status()

    def unsubscribe(self, symbol: str) -> None:
        self.subscriptions.unsubscribe(symbol)
        self._publish_status()

    async def submit_order(self, request: OrderRequest) -> Order:
        """
        Submit an order; a PENDING order is published before the request goes out.

        Raises:
            InvalidRequest: Rejected locally, nothing sent
            FetchError: Engine refused or unreachable; the order is REJECTED
                locally with the engine's reason verbatim
        """
        pending = self.orders.submit(request)
        self._publish_orders()
        try:
            ack = await self.client.submit_order(pending.client_id, request)
        except FetchError as e:
            reason = e.message if isinstance(e, HttpError) else str(e)
            self.orders.reject(pending.client_id, reason)
            self._publish_orders()
            logger.warning("Order %s rejected: %s", pending.client_id, reason)
            raise

        order = self.orders.acknowledge(ack)
        self._publish_orders()
        return order

    async def cancel_order(self, order_id: int | None = None, *, client_id: int | None = None) -> Order | None:
        """
        Cancel by engine id, or by client handle as shown for a local order.

        Raises:
            AlreadyTerminal: Local state already filled/cancelled/rejected; nothing sent
            InvalidRequest: Order not acknowledged yet, or unknown handle; nothing sent
            FetchError: Engine refused (HttpError.message is its reason) or unreachable
        """
        local = self.orders.begin_cancel(order_id, client_id=client_id)
        if order_id is None:
            order_id = local.id
        await self.client.cancel_order(order_id)
        order = self.orders.confirm_cancel(order_id)
        self._publish_orders()
        return order
