"""
Command line typed into the desk's input box.

Grammar:
    buy SYMBOL QTY [PRICE]     LIMIT with a price, MARKET without
    sell SYMBOL QTY [PRICE]
    cancel ID                  engine order id
    cancel cN                  client handle, as shown for local orders
    sub SYMBOL [trades] [quotes] [bars]   default: trades quotes
    unsub SYMBOL

Parsing failures raise InvalidRequest, the same as desk-side validation, so
the UI reports both the same way.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, NamedTuple

from ..errors import InvalidRequest
from ..types import OrderKind, OrderRequest, Side

if TYPE_CHECKING:
    from ..desk import TradingDesk

_SUB_FLAGS = ("trades", "quotes", "bars")


class Command(NamedTuple):
    verb: str                              # order | cancel | subscribe | unsubscribe
    order: OrderRequest | None = None
    order_id: int | None = None
    client_id: int | None = None
    symbol: str | None = None
    feeds: tuple[bool, bool, bool] = (True, True, False)


def _quantity(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise InvalidRequest(f"Quantity must be a whole number, got {text!r}") from None


def _price(text: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation:
        raise InvalidRequest(f"Price must be a number, got {text!r}") from None


def _order_ref(text: str) -> Command:
    handle = text[1:] if text[:1].lower() == "c" else None
    try:
        if handle is not None:
            return Command("cancel", client_id=int(handle))
        return Command("cancel", order_id=int(text))
    except ValueError:
        raise InvalidRequest(f"Expected an order id or cN handle, got {text!r}") from None


def parse_command(text: str) -> Command:
    words = text.split()
    if not words:
        raise InvalidRequest("Empty command")
    verb, args = words[0].lower(), words[1:]

    if verb in ("buy", "sell"):
        if len(args) not in (2, 3):
            raise InvalidRequest(f"Usage: {verb} SYMBOL QTY [PRICE]")
        price = _price(args[2]) if len(args) == 3 else None
        return Command("order", order=OrderRequest(
            symbol=args[0].upper(),
            side=Side.BUY if verb == "buy" else Side.SELL,
            kind=OrderKind.LIMIT if price is not None else OrderKind.MARKET,
            quantity=_quantity(args[1]),
            price=price,
        ))

    if verb == "cancel":
        if len(args) != 1:
            raise InvalidRequest("Usage: cancel ID | cancel cN")
        return _order_ref(args[0])

    if verb == "sub":
        if not args:
            raise InvalidRequest("Usage: sub SYMBOL [trades] [quotes] [bars]")
        flags = {f.lower() for f in args[1:]}
        unknown = flags - set(_SUB_FLAGS)
        if unknown:
            raise InvalidRequest(f"Unknown feed(s): {', '.join(sorted(unknown))}")
        feeds = tuple(f in flags for f in _SUB_FLAGS) if flags else (True, True, False)
        return Command("subscribe", symbol=args[0].upper(), feeds=feeds)

    if verb == "unsub":
        if len(args) != 1:
            raise InvalidRequest("Usage: unsub SYMBOL")
        return Command("unsubscribe", symbol=args[0].upper())

    raise InvalidRequest(f"Unknown command {verb!r}")


async def execute(desk: TradingDesk, command: Command) -> str:
    """
    Run `command` against the desk and describe the outcome.

    Raises whatever the desk raises (DeskError subclasses); an engine
    refusal carries the engine's reason in `message`.
    """
    if command.verb == "order":
        order = await desk.submit_order(command.order)
        return f"Order {order.id} {order.status.value} ({order.filled_quantity}/{order.requested_quantity} filled)"

    if command.verb == "cancel":
        order = await desk.cancel_order(command.order_id, client_id=command.client_id)
        if order is None:
            return f"Cancel sent for order {command.order_id}"
        return f"Order {order.id} {order.status.value}"

    if command.verb == "subscribe":
        await desk.subscribe(command.symbol, *command.feeds)
        return f"Subscribed to {command.symbol}"

    desk.unsubscribe(command.symbol)
    return f"Unsubscribed from {command.symbol}"
