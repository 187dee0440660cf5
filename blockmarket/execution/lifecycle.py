"""Order lifecycle state machine.

Orders move along a small graph::

    PENDING -> ACCEPTED -> COMPLETED
    PENDING -> CANCELLED

Every transition is issued to the remote table as a conditional update whose
predicate encodes both the expected current state and the authorization rule
(who may act). The local checks here only give early, precise errors; the
conditional update is what decides. Results are applied to the
:class:`OrderStore` after the remote call returns, so a cancelled call never
touches local state.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Sequence, TypeVar

from blockmarket.data.clients import Compare, OrderTable, SessionProvider
from blockmarket.execution.errors import (
    InvalidTransition,
    OrderAlreadyClaimed,
    OrderNotFound,
    TransportError,
    Unauthenticated,
)
from blockmarket.execution.order_store import Order, OrderDetails, OrderStatus, OrderStore, utcnow
from blockmarket.execution.payment import PaymentProcessor
from blockmarket.infra.logging import order_log_fields
from blockmarket.infra.metrics import MetricsSink
from blockmarket.infra.storage import JsonlStore

T = TypeVar("T")

ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ASK_EXPIRY_CHOICES_MINUTES = tuple(range(15, 121, 15))


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class LifecycleConfig:
    """Runtime parameters for order creation and transitions."""

    timeout_seconds: float = 10.0
    bid_expiry_minutes: int = 60
    ask_expiry_choices_minutes: Sequence[int] = ASK_EXPIRY_CHOICES_MINUTES
    default_ask_expiry_minutes: int = 60
    require_completion_proof: bool = False


class OrderLifecycle:
    """Validates and performs order transitions against the remote table."""

    def __init__(
        self,
        table: OrderTable,
        store: OrderStore,
        market_price: Callable[[], float],
        session: Optional[SessionProvider] = None,
        payments: Optional[PaymentProcessor] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        audit: Optional[JsonlStore] = None,
        metrics: Optional[MetricsSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.table = table
        self.store = store
        self.market_price = market_price
        self.session = session
        self.payments = payments
        self.config = config or LifecycleConfig()
        self.clock = clock or utcnow
        self.audit = audit
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)

    # --- Creation ----------------------------------------------------------
    async def post_bid(
        self,
        price: float,
        restaurant: str = "",
        items: Iterable[str] = (),
        requester: Optional[str] = None,
        delivery_time: Optional[datetime] = None,
        expires_in: Optional[timedelta] = None,
    ) -> Order:
        """Post a buy order at a limit price; the buyer pays up front if a wallet is configured."""

        buyer_id = self._require_user(requester)
        if price <= 0:
            raise ValueError(f"Bid price must be positive, got {price}")

        now = self.clock()
        expiration = now + (expires_in if expires_in is not None else timedelta(minutes=self.config.bid_expiry_minutes))
        order_id = self._generate_order_id("bid")
        payment_status = None
        if self.payments:
            payment_status = await self.payments.settle(order_id, price, payer_id=buyer_id)

        order = Order(
            order_id=order_id,
            side="bid",
            buyer_id=buyer_id,
            seller_id=None,
            status=OrderStatus.PENDING,
            price=price,
            order_type="limit",
            details=OrderDetails(restaurant=restaurant, items=tuple(item for item in items if item)),
            order_time=now,
            delivery_time=delivery_time or now,
            expiration_time=expiration,
            payment_status=payment_status,
        )
        row = await self.call_remote(self.table.insert(order.to_record()))
        return self._apply(row, "posted", buyer_id)

    async def post_ask(
        self,
        price: Optional[float] = None,
        requester: Optional[str] = None,
        expires_in_minutes: Optional[int] = None,
        restaurant: str = "",
    ) -> Order:
        """Post a sell order at a limit price, or at the current market price when ``price`` is None."""

        seller_id = self._require_user(requester)
        minutes = expires_in_minutes if expires_in_minutes is not None else self.config.default_ask_expiry_minutes
        if minutes not in self.config.ask_expiry_choices_minutes:
            raise ValueError(f"Unsupported ask expiry of {minutes} minutes")

        order_type = "limit"
        if price is None:
            price = self.market_price()
            order_type = "market"
        if price <= 0:
            raise ValueError(f"Ask price must be positive, got {price}")

        now = self.clock()
        order = Order(
            order_id=self._generate_order_id("ask"),
            side="ask",
            buyer_id=None,
            seller_id=seller_id,
            status=OrderStatus.PENDING,
            price=price,
            order_type=order_type,
            details=OrderDetails(restaurant=restaurant),
            order_time=now,
            delivery_time=now,
            expiration_time=now + timedelta(minutes=minutes),
        )
        row = await self.call_remote(self.table.insert(order.to_record()))
        return self._apply(row, "posted", seller_id)

    # --- Transitions -------------------------------------------------------
    async def accept(self, order_id: str, requester: Optional[str] = None) -> Order:
        """Claim a pending order as its counterparty (compare-and-swap)."""

        user = self._require_user(requester)
        order = await self._load(order_id)
        now = self.clock()
        self._check_acceptable(order, user, now)

        missing = order.missing_party
        expected = {
            "status": OrderStatus.PENDING.value,
            missing: None,
            "expiration_time": Compare("gt", now),
        }
        changes = {missing: user, "status": OrderStatus.ACCEPTED.value, "acceptance_time": now.isoformat()}
        row = await self.call_remote(self.table.update_where(order_id, expected, changes))
        if row is None:
            current = None
            try:
                current = await self._resync(order_id)
            except TransportError as exc:
                self.logger.warning("Could not re-read %s after lost claim: %s", order_id, exc)
            if current is not None and current.counterparty_id is None and current.is_expired(now):
                raise InvalidTransition(order_id, current.status.value, OrderStatus.ACCEPTED.value, "order has expired")
            self._incr("claims_lost", side=order.side)
            self.logger.warning(
                "Acceptance of %s lost to another counterparty", order_id,
                extra={"event": "claim_lost", "user_id": user, **order_log_fields(order)},
            )
            raise OrderAlreadyClaimed(order_id)

        accepted = self._apply(row, "accepted", user)
        if accepted.side == "ask" and self.payments:
            accepted = await self._annotate_payment(accepted, user)
        return accepted

    async def cancel(self, order_id: str, requester: Optional[str] = None) -> Order:
        """Withdraw an unclaimed pending order; only its originator may do so."""

        user = self._require_user(requester)
        order = await self._load(order_id)
        target = OrderStatus.CANCELLED
        self._check_graph(order, target)
        if order.counterparty_id is not None:
            raise InvalidTransition(order_id, order.status.value, target.value, "a counterparty is already assigned")
        if order.originator_id != user:
            raise InvalidTransition(order_id, order.status.value, target.value, "only the originating party may cancel")

        originator = "buyer_id" if order.side == "bid" else "seller_id"
        expected = {"status": OrderStatus.PENDING.value, order.missing_party: None, originator: user}
        row = await self.call_remote(self.table.update_where(order_id, expected, {"status": target.value}))
        if row is None:
            current = await self._resync(order_id)
            raise InvalidTransition(
                order_id, current.status.value if current else None, target.value, "order changed concurrently"
            )
        return self._apply(row, "cancelled", user)

    async def complete(self, order_id: str, requester: Optional[str] = None, proof: Optional[str] = None) -> Order:
        """Mark an accepted order fulfilled; only the delivering seller may do so."""

        user = self._require_user(requester)
        order = await self._load(order_id)
        target = OrderStatus.COMPLETED
        self._check_graph(order, target)
        if order.seller_id != user:
            raise InvalidTransition(order_id, order.status.value, target.value, "only the fulfilling seller may complete")
        if self.config.require_completion_proof and not proof:
            raise InvalidTransition(order_id, order.status.value, target.value, "completion proof is required")

        changes: Dict[str, Any] = {"status": target.value}
        if proof:
            changes["completion_proof"] = proof
        expected = {"status": OrderStatus.ACCEPTED.value, "seller_id": user}
        row = await self.call_remote(self.table.update_where(order_id, expected, changes))
        if row is None:
            current = await self._resync(order_id)
            raise InvalidTransition(
                order_id, current.status.value if current else None, target.value, "order changed concurrently"
            )
        return self._apply(row, "completed", user)

    async def refresh_order(self, order_id: str) -> Optional[Order]:
        """Re-read a single row into the store."""

        return await self._resync(order_id)

    # --- Helpers -----------------------------------------------------------
    def _require_user(self, requester: Optional[str]) -> str:
        user = requester or (self.session.current_user_id() if self.session else None)
        if not user:
            raise Unauthenticated("Sign in to trade blocks")
        return user

    async def _load(self, order_id: str) -> Order:
        order = self.store.get(order_id)
        if order is not None:
            return order
        order = await self._resync(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _resync(self, order_id: str) -> Optional[Order]:
        row = await self.call_remote(self.table.fetch(order_id))
        if row is None:
            return None
        order = Order.from_record(row)
        self.store.upsert(order)
        return self.store.get(order_id)

    def _check_graph(self, order: Order, target: OrderStatus) -> None:
        if not can_transition(order.status, target):
            raise InvalidTransition(order.order_id, order.status.value, target.value)

    def _check_acceptable(self, order: Order, user: str, now: datetime) -> None:
        target = OrderStatus.ACCEPTED.value
        if order.status is OrderStatus.ACCEPTED:
            raise OrderAlreadyClaimed(order.order_id)
        self._check_graph(order, OrderStatus.ACCEPTED)
        if order.counterparty_id is not None:
            raise OrderAlreadyClaimed(order.order_id)
        if order.originator_id == user:
            raise InvalidTransition(order.order_id, order.status.value, target, "cannot accept your own order")
        if order.is_expired(now):
            raise InvalidTransition(order.order_id, order.status.value, target, "order has expired")

    async def _annotate_payment(self, order: Order, payer_id: str) -> Order:
        status = await self.payments.settle(order.order_id, order.price, payer_id=payer_id, payee_id=order.seller_id)
        try:
            row = await self.call_remote(
                self.table.update_where(
                    order.order_id,
                    {"status": OrderStatus.ACCEPTED.value, "buyer_id": payer_id},
                    {"payment_status": status},
                )
            )
        except TransportError:
            return order
        if row is None:
            return order
        return self._apply(row, "payment_recorded", payer_id)

    async def call_remote(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError as exc:
            self._incr("transport_errors")
            self.logger.warning(
                "Remote order table call timed out", extra={"event": "remote_timeout", "timeout": self.config.timeout_seconds}
            )
            raise TransportError("Remote order table call timed out") from exc
        except TransportError:
            self._incr("transport_errors")
            raise

    def _apply(self, row: Mapping[str, Any], action: str, user: str) -> Order:
        order = Order.from_record(row)
        self.store.upsert(order)
        self._incr(f"orders_{action}", side=order.side)
        self.logger.info(
            "Order %s %s by %s", order.order_id, action, user,
            extra={"event": f"order_{action}", "user_id": user, **order_log_fields(order)},
        )
        if self.audit:
            self.audit.append({"action": action, "user_id": user, "order": order.to_record()})
        return self.store.get(order.order_id) or order

    def _incr(self, name: str, **labels: str) -> None:
        if self.metrics:
            self.metrics.incr(name, **labels)

    def _generate_order_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex}"


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ASK_EXPIRY_CHOICES_MINUTES",
    "LifecycleConfig",
    "OrderLifecycle",
    "can_transition",
]
