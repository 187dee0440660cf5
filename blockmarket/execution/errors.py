"""Error taxonomy for order lifecycle and remote store operations."""

from __future__ import annotations

from typing import Optional


class MarketError(Exception):
    """Base class for all marketplace errors."""


class InvalidTransition(MarketError):
    """Requested state change is not allowed from the order's current state."""

    def __init__(self, order_id: str, current: Optional[str], requested: str, reason: str = "") -> None:
        self.order_id = order_id
        self.current = current
        self.requested = requested
        self.reason = reason
        message = f"Cannot move order {order_id} from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class OrderAlreadyClaimed(MarketError):
    """A conditional acceptance lost the race to another counterparty."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order {order_id} is no longer available")


class OrderNotFound(MarketError):
    """No order with the given id exists locally or remotely."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class Unauthenticated(MarketError):
    """The action requires a signed-in identity."""


class TransportError(MarketError):
    """A remote call failed or timed out."""


class PaymentFailed(MarketError):
    """The wallet/payment step failed; the order proceeds unpaid."""


__all__ = [
    "MarketError",
    "InvalidTransition",
    "OrderAlreadyClaimed",
    "OrderNotFound",
    "Unauthenticated",
    "TransportError",
    "PaymentFailed",
]
