"""Per-symbol subscription state machine, reconciled against engine status polls."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from ..errors import FetchError, InvalidRequest
from ..types import StatusReport, SubscriptionPhase, SubscriptionStatus

logger = logging.getLogger(__name__)

Phase = SubscriptionPhase

SubscribeCall = Callable[[str, bool, bool, bool], Awaitable[None]]

DEFAULT_FAILURE_THRESHOLD = 3


class SubscriptionManager:
    """
    Tracks which symbols the desk is subscribed to.

    Lifecycle per symbol:
        UNSUBSCRIBED -> PENDING_SUBSCRIBE -> SUBSCRIBED -> PENDING_UNSUBSCRIBE -> UNSUBSCRIBED

    Local intent is reconciled with what the engine reports on each status
    poll: symbols the engine reports but we never asked for are adopted
    (client restarted), and symbols we think are live but the engine has
    dropped for more than one poll are demoted (server-side eviction).
    """

    def __init__(
        self,
        send: SubscribeCall,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
    ) -> None:
        """
        Args:
            send: Coroutine issuing the subscribe request (FeedClient.subscribe)
            failure_threshold: Consecutive failed status polls before
                `connected` is forced to False
        """
        self._send = send
        self.failure_threshold = failure_threshold
        self._phases: dict[str, SubscriptionPhase] = {}
        self._misses: dict[str, int] = {}
        # Unsubscribed locally but the engine may still be reporting them
        self._released: set[str] = set()
        self._connected = False
        self._failures = 0

    # -- Queries ----------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def phase(self, symbol: str) -> SubscriptionPhase:
        return self._phases.get(symbol, Phase.UNSUBSCRIBED)

    def status(self) -> SubscriptionStatus:
        return SubscriptionStatus(
            connected=self._connected,
            active_symbols=frozenset(
                s for s, p in self._phases.items() if p is Phase.SUBSCRIBED
            ),
            phases=tuple(sorted(self._phases.items())),
        )

    # -- Commands ---------------------------------------------------------------

    async def subscribe(self, symbol: str, trades: bool, quotes: bool, bars: bool) -> None:
        """
        Subscribe to market data for `symbol`.

        Raises:
            InvalidRequest: Blank symbol, no data type selected, or a request
                for this symbol already pending
            FetchError: Engine refused or was unreachable; the symbol is back
                to UNSUBSCRIBED and HttpError.message holds the engine's reason
        """
        symbol = symbol.strip() if symbol else ""
        if not symbol:
            raise InvalidRequest("Symbol must not be empty")
        if not (trades or quotes or bars):
            raise InvalidRequest("Select at least one of trades, quotes or bars")

        current = self.phase(symbol)
        if current is Phase.PENDING_SUBSCRIBE:
            raise InvalidRequest(f"Subscription to {symbol} already in progress")
        if current is Phase.SUBSCRIBED:
            logger.info("Already subscribed to %s; re-sending request", symbol)

        self._phases[symbol] = Phase.PENDING_SUBSCRIBE
        try:
            await self._send(symbol, trades, quotes, bars)
        except FetchError as e:
            self._phases[symbol] = Phase.UNSUBSCRIBED
            logger.warning("Subscribe %s failed: %s", symbol, e.message)
            raise

        self._phases[symbol] = Phase.SUBSCRIBED
        self._misses.pop(symbol, None)
        self._released.discard(symbol)
        logger.info("Subscribed to %s (trades=%s quotes=%s bars=%s)", symbol, trades, quotes, bars)

    def unsubscribe(self, symbol: str) -> None:
        """
        Release `symbol`. Completes to UNSUBSCRIBED on the next status reconcile.

        The engine's REST contract has no unsubscribe call, so this is local
        intent only; while the engine keeps reporting the symbol it is not
        re-adopted.
        """
        if self.phase(symbol) is not Phase.SUBSCRIBED:
            raise InvalidRequest(f"Not subscribed to {symbol}")
        self._phases[symbol] = Phase.PENDING_UNSUBSCRIBE
        self._released.add(symbol)

    # -- Reconciliation ---------------------------------------------------------

    def reconcile(self, report: StatusReport) -> SubscriptionStatus:
        """Merge an engine status poll into local state."""
        self._failures = 0
        self._connected = report.connected
        reported = set(report.subscribed_symbols)

        # Released symbols stay released until the engine forgets them
        self._released &= reported

        for symbol, phase in list(self._phases.items()):
            if phase is Phase.PENDING_UNSUBSCRIBE:
                self._phases[symbol] = Phase.UNSUBSCRIBED
            elif phase is Phase.SUBSCRIBED:
                if symbol in reported:
                    self._misses.pop(symbol, None)
                    continue
                misses = self._misses.get(symbol, 0) + 1
                if misses > 1:
                    logger.warning("Engine no longer reports %s; marking unsubscribed", symbol)
                    self._phases[symbol] = Phase.UNSUBSCRIBED
                    self._misses.pop(symbol, None)
                else:
                    self._misses[symbol] = misses

        for symbol in reported - self._released:
            if self.phase(symbol) is Phase.UNSUBSCRIBED:
                logger.info("Adopting engine-side subscription to %s", symbol)
                self._phases[symbol] = Phase.SUBSCRIBED

        # Keep the table bounded to symbols we have an opinion about
        for symbol in [s for s, p in self._phases.items() if p is Phase.UNSUBSCRIBED]:
            del self._phases[symbol]

        return self.status()

    def record_failure(self, error: FetchError) -> SubscriptionStatus:
        """A status poll failed. Enough in a row and we call it disconnected."""
        self._failures += 1
        if self._failures >= self.failure_threshold and self._connected:
            logger.warning(
                "Status poll failed %d times in a row (%s); marking disconnected",
                self._failures, error.kind.value,
            )
            self._connected = False
        return self.status()
