"""Unit tests for SubscriptionManager."""

from unittest.mock import AsyncMock

import pytest

from live_desk.engine.subscriptions import SubscriptionManager
from live_desk.errors import HttpError, InvalidRequest, NetworkError
from live_desk.types import StatusReport, SubscriptionPhase


def _report(*symbols: str, connected: bool = True) -> StatusReport:
    return StatusReport(connected, tuple(symbols))


@pytest.mark.asyncio
async def test_subscribe_scenario() -> None:
    """UNSUBSCRIBED -> PENDING_SUBSCRIBE -> SUBSCRIBED, kept by reports, demoted after 2 misses."""
    seen_phases = []

    async def send(symbol: str, trades: bool, quotes: bool, bars: bool) -> None:
        seen_phases.append(manager.phase(symbol))

    manager = SubscriptionManager(send)
    assert manager.phase("AAPL") is SubscriptionPhase.UNSUBSCRIBED

    await manager.subscribe("AAPL", trades=True, quotes=False, bars=False)

    assert seen_phases == [SubscriptionPhase.PENDING_SUBSCRIBE]
    assert manager.phase("AAPL") is SubscriptionPhase.SUBSCRIBED

    manager.reconcile(_report("AAPL"))
    assert manager.phase("AAPL") is SubscriptionPhase.SUBSCRIBED

    manager.reconcile(_report())
    assert manager.phase("AAPL") is SubscriptionPhase.SUBSCRIBED

    status = manager.reconcile(_report())
    assert manager.phase("AAPL") is SubscriptionPhase.UNSUBSCRIBED
    assert "AAPL" not in status.active_symbols


@pytest.mark.asyncio
async def test_single_miss_then_seen_resets() -> None:
    manager = SubscriptionManager(AsyncMock())
    await manager.subscribe("AAPL", True, False, False)

    manager.reconcile(_report())
    manager.reconcile(_report("AAPL"))
    manager.reconcile(_report())
    assert manager.phase("AAPL") is SubscriptionPhase.SUBSCRIBED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "symbol,flags",
    [
        ("", (True, False, False)),
        ("   ", (True, True, True)),
        ("AAPL", (False, False, False)),
    ],
)
async def test_invalid_subscribe(symbol, flags) -> None:
    send = AsyncMock()
    manager = SubscriptionManager(send)

    with pytest.raises(InvalidRequest):
        await manager.subscribe(symbol, *flags)

    send.assert_not_awaited()
    assert manager.status().phases == ()


@pytest.mark.asyncio
async def test_subscribe_failure_reverts_with_verbatim_reason() -> None:
    send = AsyncMock(side_effect=HttpError(400, "Symbol XYZ not supported by feed"))
    manager = SubscriptionManager(send)

    with pytest.raises(HttpError) as exc:
        await manager.subscribe("XYZ", True, False, False)

    assert exc.value.message == "Symbol XYZ not supported by feed"
    assert manager.phase("XYZ") is SubscriptionPhase.UNSUBSCRIBED


@pytest.mark.asyncio
async def test_subscribe_network_failure_reverts() -> None:
    manager = SubscriptionManager(AsyncMock(side_effect=NetworkError("refused")))
    with pytest.raises(NetworkError):
        await manager.subscribe("AAPL", True, False, False)
    assert manager.phase("AAPL") is SubscriptionPhase.UNSUBSCRIBED


def test_server_reported_symbol_adopted() -> None:
    manager = SubscriptionManager(AsyncMock())
    status = manager.reconcile(_report("MSFT", "TSLA"))
    assert status.active_symbols == frozenset({"MSFT", "TSLA"})
    assert status.connected


@pytest.mark.asyncio
async def test_unsubscribe_completes_on_next_reconcile() -> None:
    manager = SubscriptionManager(AsyncMock())
    await manager.subscribe("AAPL", True, False, False)

    manager.unsubscribe("AAPL")
    assert manager.phase("AAPL") is SubscriptionPhase.PENDING_UNSUBSCRIBE
    assert "AAPL" not in manager.status().active_symbols

    # Engine still reports it: released symbols are not re-adopted
    manager.reconcile(_report("AAPL"))
    assert manager.phase("AAPL") is SubscriptionPhase.UNSUBSCRIBED
    manager.reconcile(_report("AAPL"))
    assert manager.phase("AAPL") is SubscriptionPhase.UNSUBSCRIBED

    # Once the engine forgets it, a later report adopts it again
    manager.reconcile(_report())
    manager.reconcile(_report("AAPL"))
    assert manager.phase("AAPL") is SubscriptionPhase.SUBSCRIBED


def test_unsubscribe_requires_subscription() -> None:
    manager = SubscriptionManager(AsyncMock())
    with pytest.raises(InvalidRequest):
        manager.unsubscribe("AAPL")


def test_three_status_failures_disconnect() -> None:
    manager = SubscriptionManager(AsyncMock(), failure_threshold=3)
    manager.reconcile(_report("AAPL"))
    assert manager.connected

    manager.record_failure(NetworkError("down"))
    manager.record_failure(NetworkError("down"))
    assert manager.connected
    status = manager.record_failure(NetworkError("down"))
    assert not status.connected
    assert manager.consecutive_failures == 3

    manager.reconcile(_report("AAPL"))
    assert manager.connected
    assert manager.consecutive_failures == 0


def test_failure_streak_broken_by_success() -> None:
    manager = SubscriptionManager(AsyncMock(), failure_threshold=3)
    manager.reconcile(_report())
    manager.record_failure(NetworkError("down"))
    manager.record_failure(NetworkError("down"))
    manager.reconcile(_report())
    manager.record_failure(NetworkError("down"))
    assert manager.connected
