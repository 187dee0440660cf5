"""Derive the current block price from the order store.

The oracle prefers a two-sided market over a one-sided signal, and any live
signal over a stale default:

1. midpoint of best open bid and best open ask;
2. mean price of the most recent matched trades;
3. best bid when only bids are open;
4. best ask when only asks are open;
5. last known price, else the configured default.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Literal, Optional

from blockmarket.execution.order_store import Order, OrderStatus, utcnow

PriceSource = Literal["midpoint", "recent_trades", "best_bid", "best_ask", "last_known", "default"]

DEFAULT_PRICE = 8.50
DEFAULT_TRADE_WINDOW = 5


@dataclass(frozen=True)
class Quote:
    """Represents a best bid/ask pair."""

    bid: float
    ask: float

    @property
    def mid(self) -> float:
        """Return the mid price."""

        return (self.bid + self.ask) / 2


@dataclass(frozen=True)
class PriceEstimate:
    price: float
    source: PriceSource


class PriceOracle:
    """Produce a single current price estimate from a set of orders."""

    def __init__(
        self,
        default_price: float = DEFAULT_PRICE,
        trade_window: int = DEFAULT_TRADE_WINDOW,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if default_price <= 0:
            raise ValueError("Default price must be positive")
        if trade_window < 1:
            raise ValueError("Trade window must include at least one trade")
        self.default_price = default_price
        self.trade_window = trade_window
        self.clock = clock or utcnow
        self.last_price: Optional[float] = None

    def estimate(self, orders: Iterable[Order]) -> PriceEstimate:
        """Return the current price and the rule that produced it."""

        now = self.clock()
        snapshot = list(orders)
        bids = [order.price for order in snapshot if order.side == "bid" and order.is_open(now)]
        asks = [order.price for order in snapshot if order.side == "ask" and order.is_open(now)]

        if bids and asks:
            return self._remember(Quote(bid=max(bids), ask=min(asks)).mid, "midpoint")

        trades = self._recent_trades(snapshot)
        if trades:
            return self._remember(sum(trades) / len(trades), "recent_trades")

        if bids:
            return self._remember(max(bids), "best_bid")
        if asks:
            return self._remember(min(asks), "best_ask")

        if self.last_price is not None:
            return PriceEstimate(self.last_price, "last_known")
        return PriceEstimate(self.default_price, "default")

    def price(self, orders: Iterable[Order]) -> float:
        return self.estimate(orders).price

    def _recent_trades(self, orders: List[Order]) -> List[float]:
        matched = [order for order in orders if order.status is OrderStatus.ACCEPTED and order.is_matched]
        matched.sort(key=lambda order: order.order_time, reverse=True)
        return [order.price for order in matched[: self.trade_window]]

    def _remember(self, price: float, source: PriceSource) -> PriceEstimate:
        self.last_price = price
        return PriceEstimate(price, source)


__all__ = ["PriceOracle", "PriceEstimate", "PriceSource", "Quote", "DEFAULT_PRICE", "DEFAULT_TRADE_WINDOW"]
