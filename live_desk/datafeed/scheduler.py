"""
Per-feed polling timers on the asyncio event loop.

Each feed gets a ticker task that fires every `interval` seconds. A tick
starts one `work()` invocation unless the previous one is still running, in
which case the tick is skipped rather than queued: a slow engine sees at most
one outstanding request per feed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[Any]]
ResultHandler = Callable[[Any], None]


class _FeedTimer:
    """Book-keeping for one started feed. A restart creates a fresh timer."""

    __slots__ = (
        'feed_id', 'interval', 'work', 'on_result',
        'stopped', 'ticker', 'in_flight', 'skipped', 'cycles',
    )

    def __init__(
        self,
        feed_id: Hashable,
        interval: float,
        work: Work,
        on_result: ResultHandler | None,
    ) -> None:
        self.feed_id = feed_id
        self.interval = interval
        self.work = work
        self.on_result = on_result
        self.stopped = False
        self.ticker: asyncio.Task | None = None
        self.in_flight: asyncio.Task | None = None
        self.skipped = 0
        self.cycles = 0


class PollingScheduler:
    """
    Runs independent polling loops, one per feed.

    Thread-safety: NOT thread-safe. All calls must come from the loop thread.
    """

    def __init__(self) -> None:
        self._timers: dict[Hashable, _FeedTimer] = {}

    def start(
        self,
        feed_id: Hashable,
        interval: float,
        work: Work,
        on_result: ResultHandler | None = None,
    ) -> None:
        """
        Begin invoking `work` every `interval` seconds, starting now.

        `on_result` receives each completed result, unless the feed was stopped
        (or restarted) while that invocation was in flight. Restarting a feed
        with a call still in flight delays the first new invocation until that
        call finishes, so the feed never has two requests out.
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        previous = self._timers.get(feed_id)
        if previous is not None:
            self.stop(feed_id)

        timer = _FeedTimer(feed_id, interval, work, on_result)
        if previous is not None and previous.in_flight is not None and not previous.in_flight.done():
            # Still one call out for this feed; the new run waits for it
            timer.in_flight = previous.in_flight
        timer.ticker = asyncio.get_running_loop().create_task(
            self._tick(timer), name=f"poll:{feed_id}"
        )
        self._timers[feed_id] = timer
        logger.debug("Started polling %s every %.2fs", feed_id, interval)

    def stop(self, feed_id: Hashable) -> None:
        """
        Stop polling `feed_id`. Idempotent.

        No new invocation begins after this returns. An invocation already in
        flight runs to completion, but its result is dropped.
        """
        timer = self._timers.pop(feed_id, None)
        if timer is None:
            return
        timer.stopped = True
        if timer.ticker is not None:
            timer.ticker.cancel()
        logger.debug("Stopped polling %s", feed_id)

    async def stop_all(self) -> None:
        """Stop every feed and cancel in-flight work (shutdown)."""
        timers = list(self._timers.values())
        for timer in timers:
            self.stop(timer.feed_id)

        pending = [
            task
            for timer in timers
            for task in (timer.ticker, timer.in_flight)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def running(self, feed_id: Hashable) -> bool:
        return feed_id in self._timers

    def in_flight(self, feed_id: Hashable) -> bool:
        timer = self._timers.get(feed_id)
        return timer is not None and timer.in_flight is not None and not timer.in_flight.done()

    def skipped(self, feed_id: Hashable) -> int:
        """Ticks skipped because the previous cycle was still running."""
        timer = self._timers.get(feed_id)
        return timer.skipped if timer is not None else 0

    @property
    def feeds(self) -> list[Hashable]:
        return list(self._timers)

    async def _tick(self, timer: _FeedTimer) -> None:
        loop = asyncio.get_running_loop()
        if timer.in_flight is not None and not timer.in_flight.done():
            await asyncio.wait((timer.in_flight,))
        while not timer.stopped:
            if timer.in_flight is None or timer.in_flight.done():
                timer.in_flight = loop.create_task(self._invoke(timer))
            else:
                timer.skipped += 1
                logger.debug("Skipping %s tick: previous cycle still running", timer.feed_id)
            await asyncio.sleep(timer.interval)

    async def _invoke(self, timer: _FeedTimer) -> None:
        try:
            result = await timer.work()
        except asyncio.CancelledError:
            raise
        except Exception:
            # Confined to this cycle; the next tick tries again
            logger.exception("Poll cycle for %s failed", timer.feed_id)
            return

        timer.cycles += 1
        if timer.stopped:
            logger.debug("Discarding %s result: feed stopped mid-flight", timer.feed_id)
            return
        if timer.on_result is not None:
            try:
                timer.on_result(result)
            except Exception:
                logger.exception("Result handler for %s failed", timer.feed_id)
