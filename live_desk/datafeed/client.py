"""
Async REST client for the simulated trading engine.

Handles:
1. One GET per feed poll (market, ticks, status, book, trades, statistics)
2. The three commands: subscribe, submit order, cancel order
3. Mapping transport failures onto the FetchError taxonomy

No retries here: a failed call raises and the poll cadence is the retry.
Every request runs inside `async with session.request(...)`, so the
connection goes back to the pool on success, error and cancellation alike.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import aiohttp
import orjson

from . import decode
from ..config import DEFAULT_BASE_URL
from ..errors import DecodeError, HttpError, NetworkError
from ..types import FeedId, OrderAck, OrderKind, OrderRequest

logger = logging.getLogger(__name__)

# feed -> (path, decoder)
_FEED_ROUTES: dict[FeedId, tuple[str, Callable[[Any], Any]]] = {
    FeedId.MARKET: ("/market", decode.decode_market),
    FeedId.TICKS: ("/market/data", decode.decode_ticks),
    FeedId.STATUS: ("/market/status", decode.decode_status),
    FeedId.BOOK: ("/orderbook", decode.decode_book),
    FeedId.TRADES: ("/trades", decode.decode_trades),
    FeedId.STATISTICS: ("/statistics", decode.decode_statistics),
}


def _error_message(body: bytes) -> str:
    """
    Extract the engine's failure reason without rewording it.

    JSON bodies carry it in `error`; anything else is plain text.
    """
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError:
        return text
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return text


class FeedClient:
    """
    Thin aiohttp boundary to the trading engine.

    Usage:
        async with FeedClient("http://localhost:18080") as client:
            bids, asks = await client.fetch(FeedId.BOOK)

    A session passed in is borrowed and left open; otherwise the client owns
    one for the lifetime of the context.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        book_levels: int = 10,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.book_levels = book_levels
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> FeedClient:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> bytes:
        """Exactly one request. Returns the raw body of a 2xx response."""
        if self._session is None:
            raise RuntimeError("FeedClient used outside 'async with'")

        url = f"{self.base_url}{path}"
        data = orjson.dumps(payload) if payload is not None else None
        headers = {"Content-Type": "application/json"} if data is not None else None
        try:
            async with self._session.request(
                method, url, params=params, data=data, headers=headers
            ) as resp:
                body = await resp.read()
                if resp.status >= 400:
                    raise HttpError(resp.status, _error_message(body))
                return body
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {path}: {e}") from e
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{method} {path}: timed out") from e

    @staticmethod
    def _parse(body: bytes) -> Any:
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise DecodeError(f"Response is not JSON: {e}") from e

    # -- Polled feeds -----------------------------------------------------

    async def fetch(self, feed: FeedId) -> Any:
        """
        Fetch one snapshot for `feed`.

        Returns the decoded snapshot (see decode.py for shapes per feed).

        Raises:
            NetworkError, HttpError, DecodeError
        """
        if feed not in _FEED_ROUTES:
            raise ValueError(f"{feed.value} is not a polled feed")
        path, decoder = _FEED_ROUTES[feed]
        params = {"levels": self.book_levels} if feed is FeedId.BOOK else None
        body = await self._request("GET", path, params=params)
        return decoder(self._parse(body))

    # -- Commands ---------------------------------------------------------

    async def subscribe(self, symbol: str, trades: bool, quotes: bool, bars: bool) -> None:
        """POST /market/subscribe. Any 2xx is acceptance; the body is ignored."""
        await self._request(
            "POST",
            "/market/subscribe",
            payload={"symbol": symbol, "trades": trades, "quotes": quotes, "bars": bars},
        )

    async def submit_order(self, client_id: int, request: OrderRequest) -> OrderAck:
        """POST /orders. The engine echoes client_id back in the order it creates."""
        payload: dict[str, Any] = {
            "client_id": client_id,
            "symbol": request.symbol,
            "side": request.side.value,
            "type": request.kind.value,
            "quantity": request.quantity,
        }
        if request.kind is OrderKind.LIMIT and request.price is not None:
            payload["price"] = float(request.price)
        body = await self._request("POST", "/orders", payload=payload)
        return decode.decode_order_ack(self._parse(body))

    async def cancel_order(self, order_id: int) -> None:
        await self._request("POST", f"/orders/{order_id}/cancel")
