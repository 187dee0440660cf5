"""Order lifecycle: model, store, state machine, and payment annotation."""

from .errors import (
    InvalidTransition,
    MarketError,
    OrderAlreadyClaimed,
    OrderNotFound,
    PaymentFailed,
    TransportError,
    Unauthenticated,
)
from .order_store import Order, OrderDetails, OrderStatus, OrderStore
from .lifecycle import LifecycleConfig, OrderLifecycle, can_transition
from .payment import NoopWalletClient, PaymentProcessor, WalletClient

__all__ = [
    "InvalidTransition",
    "MarketError",
    "OrderAlreadyClaimed",
    "OrderNotFound",
    "PaymentFailed",
    "TransportError",
    "Unauthenticated",
    "Order",
    "OrderDetails",
    "OrderStatus",
    "OrderStore",
    "LifecycleConfig",
    "OrderLifecycle",
    "can_transition",
    "NoopWalletClient",
    "PaymentProcessor",
    "WalletClient",
]
