"""
Trading desk TUI using Textual.

Displays:
- Top: status bar (connection, best bid/ask, spread, stale markers)
- Left: book ladder with depth bars scaled by the book's normalisation factor,
  tick window below it
- Right: recent trades, orders and engine statistics, new rows highlighted
  while their change-set is active
- Bottom: command line for orders, cancels and subscriptions (see commands.py)

Notes:
- Panels only read published ViewModels; the command line is the one path
  that calls into the desk
- Highlight timing comes from ChangeSet.expires_at, so a fresh poll arriving
  early simply replaces the highlight instead of racing a clear timer
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from rich.console import RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Input, Static

from . import commands
from ..engine import metrics
from ..errors import DeskError
from ..types import FeedId, QuoteTick, Side, TradeTick

if TYPE_CHECKING:
    from ..desk import TradingDesk
    from ..types import BookLevel, BookSnapshot, Order, Statistics, Tick, Trade, ViewModel

# Color scheme (dark theme)
BID_COLOR = "#22c55e"      # Green
ASK_COLOR = "#ef4444"      # Red
HEADER_COLOR = "#94a3b8"
HIGHLIGHT_BG = "#334155"
STALE_COLOR = "#f59e0b"    # Amber
BAR_BG = "#1e293b"
BAR_WIDTH = 16


def format_qty(qty: int) -> str:
    """Format quantity for display."""
    if qty >= 1_000_000:
        return f"{qty/1_000_000:.1f}M"
    if qty >= 1000:
        return f"{qty/1000:.1f}K"
    return str(qty)


def format_price(price) -> str:
    return "--" if price is None else f"{price:.2f}"


def make_bar(quantity: int, depth: int, width: int, color: str) -> Text:
    """Horizontal block bar, `bar_width` percent of `width` cells."""
    fill = int(metrics.bar_width(quantity, depth) / 100.0 * width)
    return Text("█" * fill + " " * (width - fill), style=Style(color=color, bgcolor=BAR_BG))


def _stale_suffix(view: ViewModel | None) -> Text:
    if view is None or not view.stale:
        return Text("")
    return Text(f"  [stale: {view.error.value if view.error else '?'}]", style=STALE_COLOR)


class _ViewWidget(Static):
    """Static that re-renders whenever a new view model for its feed arrives."""

    def __init__(self, *, id: str | None = None) -> None:
        super().__init__(id=id)
        self._view: ViewModel | None = None

    def on_mount(self) -> None:
        # Re-render so highlights fade once their change-set expires
        self.set_interval(0.5, self.refresh)

    def update_view(self, view: ViewModel) -> None:
        self._view = view
        self.refresh()


class BookLadder(_ViewWidget):
    """Asks on top (descending), bids below, depth bars on each side."""

    def render(self) -> RenderableType:
        view = self._view
        if view is None or view.data is None:
            return Text("Waiting for book..." if view is None else "No book data", style="dim")

        book: BookSnapshot = view.data
        now = time.monotonic()
        emphasised: set[tuple[Side, object]] = set()
        if view.changes.is_active(now):
            emphasised = {(side, level.price) for side, level in (*view.changes.added, *view.changes.updated)}

        table = Table(show_header=True, header_style=HEADER_COLOR, box=None,
                      padding=(0, 1), collapse_padding=True, title=_book_title(view))
        table.add_column("Orders", justify="right", width=6)
        table.add_column("Bid", justify="right", width=8)
        table.add_column("", justify="right", width=BAR_WIDTH, no_wrap=True)
        table.add_column("Price", justify="center", width=10)
        table.add_column("", justify="left", width=BAR_WIDTH, no_wrap=True)
        table.add_column("Ask", justify="left", width=8)

        def row(side: Side, level: BookLevel) -> None:
            color = BID_COLOR if side is Side.BUY else ASK_COLOR
            style = Style(bgcolor=HIGHLIGHT_BG) if (side, level.price) in emphasised else None
            bar = make_bar(level.quantity, book.depth, BAR_WIDTH, color)
            qty = Text(format_qty(level.quantity), style=color)
            if side is Side.BUY:
                cells = (str(level.order_count), qty, bar, Text(format_price(level.price), style=color), "", "")
            else:
                cells = ("", "", "", Text(format_price(level.price), style=color), bar, qty)
            table.add_row(*cells, style=style)

        for level in reversed(book.asks):
            row(Side.SELL, level)
        for level in book.bids:
            row(Side.BUY, level)
        return table


def _book_title(view: ViewModel) -> Text:
    book: BookSnapshot = view.data
    title = Text(f"Spread {format_price(book.spread)}  Mid {format_price(book.mid_price)}")
    if book.crossed:
        title.append("  CROSSED", style="bold " + ASK_COLOR)
    title.append_text(_stale_suffix(view))
    return title


class TradeTape(_ViewWidget):
    """Most recent trades first."""

    ROWS = 15

    def render(self) -> RenderableType:
        view = self._view
        if view is None or not view.data:
            return Text("No trades yet", style="dim")

        now = time.monotonic()
        fresh = {t.id for t in view.changes.added} if view.changes.is_active(now) else set()

        table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1),
                      title=Text("Recent trades").append_text(_stale_suffix(view)))
        table.add_column("#", justify="right")
        table.add_column("Symbol")
        table.add_column("Price", justify="right")
        table.add_column("Qty", justify="right")
        table.add_column("Value", justify="right")

        trades: tuple[Trade, ...] = view.data
        for trade in reversed(trades[-self.ROWS:]):
            table.add_row(
                str(trade.id),
                trade.symbol,
                format_price(trade.price),
                format_qty(trade.quantity),
                format_price(trade.total_value),
                style=Style(bgcolor=HIGHLIGHT_BG, bold=True) if trade.id in fresh else None,
            )
        return table


def _describe_tick(tick: Tick) -> Text:
    if isinstance(tick, TradeTick):
        return Text(f"{format_qty(tick.size)} @ {format_price(tick.price)}")
    if isinstance(tick, QuoteTick):
        text = Text(f"{format_qty(tick.bid_size)} ")
        text.append(format_price(tick.bid_price), style=BID_COLOR)
        text.append(" / ")
        text.append(format_price(tick.ask_price), style=ASK_COLOR)
        text.append(f" {format_qty(tick.ask_size)}")
        return text
    return Text(
        f"O {format_price(tick.open)} H {format_price(tick.high)} "
        f"L {format_price(tick.low)} C {format_price(tick.close)} V {format_qty(tick.volume)}"
    )


class TickStrip(_ViewWidget):
    """Bounded tick window, newest first."""

    def render(self) -> RenderableType:
        view = self._view
        if view is None or not view.data:
            return Text("No ticks yet", style="dim")

        fresh = {t.key for t in view.changes.added} if view.changes.is_active(time.monotonic()) else set()

        table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1),
                      title=Text("Ticks").append_text(_stale_suffix(view)))
        table.add_column("Symbol")
        table.add_column("Type")
        table.add_column("Detail")

        ticks: tuple[Tick, ...] = view.data
        for tick in reversed(ticks):
            table.add_row(
                tick.symbol,
                tick.kind.value,
                _describe_tick(tick),
                style=Style(bgcolor=HIGHLIGHT_BG) if tick.key in fresh else None,
            )
        return table


class OrderList(_ViewWidget):
    """Orders submitted from this desk, including recently finished ones."""

    def render(self) -> RenderableType:
        view = self._view
        if view is None or not view.data:
            return Text("No orders", style="dim")

        table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1),
                      title="Orders")
        table.add_column("Id", justify="right")
        table.add_column("Side")
        table.add_column("Symbol")
        table.add_column("Price", justify="right")
        table.add_column("Filled", justify="right")
        table.add_column("Status")

        orders: tuple[Order, ...] = view.data
        for order in orders:
            color = BID_COLOR if order.side is Side.BUY else ASK_COLOR
            table.add_row(
                str(order.id) if order.id is not None else f"c{order.client_id}",
                Text(order.side.value, style=color),
                order.symbol,
                format_price(order.price) if order.price is not None else "MKT",
                f"{order.filled_quantity}/{order.requested_quantity}",
                order.message or order.status.value,
            )
        return table


def statistics_rows(stats: Statistics) -> list[tuple[str, str]]:
    book, quotes, trades = stats.orderbook, stats.market_data, stats.trades
    return [
        ("Bid levels / orders", f"{book.bid_levels} / {book.bid_orders}"),
        ("Ask levels / orders", f"{book.ask_levels} / {book.ask_orders}"),
        ("Resting orders", str(book.total_orders)),
        ("Best bid / ask", f"{format_price(quotes.best_bid)} / {format_price(quotes.best_ask)}"),
        ("Quote spread", format_price(quotes.spread)),
        ("Trades", str(trades.total_trades)),
        ("Volume", format_qty(trades.total_volume)),
        ("Value", format_price(trades.total_value)),
        ("Avg price", format_price(trades.avg_price)),
        ("Range", f"{format_price(trades.min_price)} - {format_price(trades.max_price)}"),
    ]


class StatisticsPanel(_ViewWidget):
    """Engine-wide book, quote and trade aggregates."""

    def render(self) -> RenderableType:
        view = self._view
        if view is None or view.data is None:
            return Text("No statistics yet", style="dim")

        table = Table(show_header=False, box=None, padding=(0, 1),
                      title=Text("Statistics").append_text(_stale_suffix(view)))
        table.add_column(style=HEADER_COLOR)
        table.add_column(justify="right")
        for label, value in statistics_rows(view.data):
            table.add_row(label, value)
        return table


class StatusBar(Static):
    """Connection state, top of book and stale markers."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._market: ViewModel | None = None
        self._status: ViewModel | None = None

    def update_view(self, view: ViewModel) -> None:
        if view.feed is FeedId.MARKET:
            self._market = view
        elif view.feed is FeedId.STATUS:
            self._status = view
        self.refresh()

    def render(self) -> RenderableType:
        result = Text()
        status = self._status.data if self._status is not None else None
        if status is None:
            result.append(" CONNECTING ", style="bold white on #475569")
        elif status.connected:
            result.append(" CONNECTED ", style="bold white on #15803d")
        else:
            result.append(" DISCONNECTED ", style="bold white on #b91c1c")
        if status is not None and status.active_symbols:
            result.append("  " + ", ".join(sorted(status.active_symbols)), style="cyan")

        market = self._market.data if self._market is not None else None
        if market is not None:
            result.append("  │  Bid: ", style="dim")
            result.append(format_price(market.best_bid), style=BID_COLOR)
            result.append("  Ask: ", style="dim")
            result.append(format_price(market.best_ask), style=ASK_COLOR)
            result.append("  Spread: ", style="dim")
            result.append(format_price(market.spread), style="yellow")
            result.append(f"  Orders: {market.total_active_orders}  Trades: {market.total_trades}", style="dim")
        result.append_text(_stale_suffix(self._market))
        return result


class DeskApp(App):
    """Main Live Desk application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #book {
        width: 60%;
        padding: 1 2;
    }

    #side {
        width: 40%;
        padding: 1 2;
    }

    #command {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("o", "focus_command", "Order / cancel"),
        ("escape", "blur_command", "Back"),
    ]

    def __init__(self, desk: TradingDesk) -> None:
        super().__init__()
        self.desk = desk
        self.snapshot_queue = desk.snapshot_queue
        self._status_bar = StatusBar()
        self._book = BookLadder(id="ladder")
        self._ticks = TickStrip(id="ticks")
        self._trades = TradeTape(id="trades")
        self._orders = OrderList(id="orders")
        self._stats = StatisticsPanel(id="stats")
        self._command = Input(
            placeholder="buy AAPL 100 150.25 | sell AAPL 50 | cancel 7 | sub MSFT | unsub MSFT",
            id="command",
        )

    def compose(self) -> ComposeResult:
        yield self._status_bar
        yield Horizontal(
            Vertical(self._book, self._ticks, id="book"),
            Vertical(self._trades, self._orders, self._stats, id="side"),
        )
        yield self._command
        yield Footer()

    async def on_mount(self) -> None:
        """Start the view-model consumer task."""
        self.run_worker(self._consume_views(), exclusive=True)

    def action_focus_command(self) -> None:
        self._command.focus()

    def action_blur_command(self) -> None:
        self.set_focus(None)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if text:
            self.run_worker(self._run_command(text), group="commands")

    async def _run_command(self, text: str) -> None:
        try:
            message = await commands.execute(self.desk, commands.parse_command(text))
        except DeskError as e:
            self.notify(e.message, title=text, severity="error")
            return
        self.notify(message, title=text)

    def route(self, view: ViewModel) -> None:
        if view.feed in (FeedId.MARKET, FeedId.STATUS):
            self._status_bar.update_view(view)
        elif view.feed is FeedId.BOOK:
            self._book.update_view(view)
        elif view.feed is FeedId.TICKS:
            self._ticks.update_view(view)
        elif view.feed is FeedId.TRADES:
            self._trades.update_view(view)
        elif view.feed is FeedId.ORDERS:
            self._orders.update_view(view)
        elif view.feed is FeedId.STATISTICS:
            self._stats.update_view(view)

    async def _consume_views(self) -> None:
        while True:
            try:
                view = await asyncio.wait_for(self.snapshot_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            self.route(view)


async def run_ui(desk: TradingDesk) -> None:
    """Run the TUI application."""
    app = DeskApp(desk)
    await app.run_async()
