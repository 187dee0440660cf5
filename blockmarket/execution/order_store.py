"""Order model and the in-memory store mirroring the remote order table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Literal, Mapping, Optional

OrderSide = Literal["bid", "ask"]
OrderType = Literal["limit", "market"]
HistoryTab = Literal["active", "completed", "cancelled"]


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


# Position along the lifecycle graph; an update may never lower it.
_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.ACCEPTED: 1,
    OrderStatus.COMPLETED: 2,
    OrderStatus.CANCELLED: 2,
}

_TAB_STATUSES = {
    "active": {OrderStatus.PENDING, OrderStatus.ACCEPTED},
    "completed": {OrderStatus.COMPLETED},
    "cancelled": {OrderStatus.CANCELLED},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings (``Z`` suffix allowed) or epoch numbers into UTC datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if value > 1e12:
            value /= 1000.0
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class OrderDetails:
    """What the buyer wants delivered; opaque to pricing and lifecycle rules."""

    restaurant: str = ""
    items: tuple = ()


@dataclass(frozen=True)
class Order:
    """A single bid or ask for one meal block.

    Exactly one of ``buyer_id``/``seller_id`` is ``None`` while the order is
    pending: a missing seller marks a bid, a missing buyer marks an ask.
    """

    order_id: str
    side: OrderSide
    buyer_id: Optional[str]
    seller_id: Optional[str]
    status: OrderStatus
    price: float
    order_time: datetime
    delivery_time: datetime
    expiration_time: datetime
    details: OrderDetails = field(default_factory=OrderDetails)
    order_type: OrderType = "limit"
    acceptance_time: Optional[datetime] = None
    is_disputed: bool = False
    payment_status: Optional[str] = None
    completion_proof: Optional[str] = None

    def __post_init__(self) -> None:
        if self.price <= 0:
            raise ValueError(f"Order price must be positive, got {self.price}")
        if self.expiration_time < self.order_time:
            raise ValueError("Order expiration must not precede the order time")

    @property
    def originator_id(self) -> Optional[str]:
        return self.buyer_id if self.side == "bid" else self.seller_id

    @property
    def counterparty_id(self) -> Optional[str]:
        return self.seller_id if self.side == "bid" else self.buyer_id

    @property
    def missing_party(self) -> str:
        """Column name of the party that acceptance fills in."""

        return "seller_id" if self.side == "bid" else "buyer_id"

    @property
    def is_matched(self) -> bool:
        return self.buyer_id is not None and self.seller_id is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expiration_time

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Pending, unclaimed and not yet expired."""

        return self.status is OrderStatus.PENDING and self.counterparty_id is None and not self.is_expired(now)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def to_record(self) -> Dict[str, Any]:
        """Flatten into a remote table row."""

        return {
            "id": self.order_id,
            "side": self.side,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "status": self.status.value,
            "price": self.price,
            "order_type": self.order_type,
            "restaurant": self.details.restaurant,
            "items": list(self.details.items),
            "order_time": _format_timestamp(self.order_time),
            "delivery_time": _format_timestamp(self.delivery_time),
            "expiration_time": _format_timestamp(self.expiration_time),
            "acceptance_time": _format_timestamp(self.acceptance_time),
            "is_disputed": self.is_disputed,
            "payment_status": self.payment_status,
            "completion_proof": self.completion_proof,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Order":
        """Build an order from a remote table row."""

        buyer_id = record.get("buyer_id")
        seller_id = record.get("seller_id")
        side = record.get("side")
        if side not in ("bid", "ask"):
            side = "ask" if buyer_id is None and seller_id is not None else "bid"

        order_time = parse_timestamp(record.get("order_time")) or utcnow()
        delivery_time = parse_timestamp(record.get("delivery_time")) or order_time
        expiration_time = parse_timestamp(record.get("expiration_time")) or order_time
        return cls(
            order_id=str(record["id"]),
            side=side,
            buyer_id=buyer_id,
            seller_id=seller_id,
            status=OrderStatus(str(record.get("status", "PENDING")).upper()),
            price=float(record["price"]),
            order_type=record.get("order_type") or "limit",
            details=OrderDetails(
                restaurant=record.get("restaurant") or "",
                items=tuple(record.get("items") or ()),
            ),
            order_time=order_time,
            delivery_time=delivery_time,
            expiration_time=expiration_time,
            acceptance_time=parse_timestamp(record.get("acceptance_time")),
            is_disputed=bool(record.get("is_disputed", False)),
            payment_status=record.get("payment_status"),
            completion_proof=record.get("completion_proof"),
        )


StoreListener = Callable[["OrderStore"], None]


class OrderStore:
    """In-memory mirror of the orders visible to one client context.

    Subscribers are called synchronously once a mutation has settled. Bulk
    refreshes go through :meth:`upsert_many` so listeners fire once per batch.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._orders: Dict[str, Order] = {}
        self._listeners: List[StoreListener] = []
        self.logger = logger or logging.getLogger(__name__)

    def upsert(self, order: Order) -> bool:
        """Insert or replace an order by id. Returns whether the store changed."""

        changed = self._apply(order)
        if changed:
            self._notify()
        return changed

    def upsert_many(self, orders: Iterable[Order]) -> int:
        """Apply a batch of orders and notify once. Returns the number applied."""

        applied = sum(1 for order in orders if self._apply(order))
        if applied:
            self._notify()
        return applied

    def remove(self, order_id: str) -> Optional[Order]:
        """Evict an order from the cache; the remote row is untouched."""

        removed = self._orders.pop(order_id, None)
        if removed is not None:
            self._notify()
        return removed

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def query(self, predicate: Optional[Callable[[Order], bool]] = None) -> Iterator[Order]:
        """Lazily yield orders matching ``predicate`` from a snapshot of current state."""

        snapshot = list(self._orders.values())
        return (order for order in snapshot if predicate is None or predicate(order))

    def open_orders(self, now: Optional[datetime] = None) -> List[Order]:
        moment = now or utcnow()
        return list(self.query(lambda order: order.is_open(moment)))

    def orders_for(self, user_id: str, tab: HistoryTab = "active") -> List[Order]:
        """Orders the user took part in, filtered by history tab, newest first."""

        statuses = _TAB_STATUSES[tab]
        orders = self.query(lambda order: order.involves(user_id) and order.status in statuses)
        return sorted(orders, key=lambda order: order.order_time, reverse=True)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that removes it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._orders)

    def _apply(self, order: Order) -> bool:
        current = self._orders.get(order.order_id)
        if current == order:
            return False
        if current is not None and self._is_regression(current, order):
            self.logger.debug(
                "Ignoring stale update for %s (%s -> %s)", order.order_id, current.status.value, order.status.value,
                extra={"event": "stale_order_update", "order_id": order.order_id},
            )
            return False
        self._orders[order.order_id] = order
        return True

    def _is_regression(self, current: Order, incoming: Order) -> bool:
        if current.status.is_terminal and incoming.status is not current.status:
            return True
        return _STATUS_RANK[incoming.status] < _STATUS_RANK[current.status]

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                self.logger.exception("Order store listener failed", extra={"event": "listener_failed"})


__all__ = [
    "Order",
    "OrderDetails",
    "OrderSide",
    "OrderStatus",
    "OrderStore",
    "OrderType",
    "HistoryTab",
    "parse_timestamp",
    "utcnow",
]
