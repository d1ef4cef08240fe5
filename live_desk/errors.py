"""
Error taxonomy.

FetchError and its subclasses come out of FeedClient and are absorbed by the
reconciler into a stale marker. InvalidRequest and AlreadyTerminal are raised
synchronously to callers of subscribe/submit/cancel.
"""

from __future__ import annotations

from .types import ErrorKind, OrderStatus


class DeskError(Exception):
    """Base error for the live desk."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# --- Transport ---

class FetchError(DeskError):
    """A single request to the trading engine failed."""

    kind: ErrorKind


class NetworkError(FetchError):
    """Engine unreachable, connection dropped or timed out."""

    kind = ErrorKind.NETWORK


class HttpError(FetchError):
    """
    Engine answered with a non-success status.

    `message` is the engine's own reason, passed through verbatim.
    """

    kind = ErrorKind.HTTP_STATUS

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(message)

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.message}"


class DecodeError(FetchError):
    """Response body did not match the expected shape."""

    kind = ErrorKind.DECODE


# --- Client-side ---

class InvalidRequest(DeskError):
    """Rejected locally before anything was sent."""


class AlreadyTerminal(DeskError):
    """Cancel requested for an order that is already filled/cancelled/rejected."""

    def __init__(self, order_id: int, status: OrderStatus) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is already {status.value}")
