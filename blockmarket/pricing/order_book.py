"""Aggregate pending orders into price-ordered bid and ask ladders."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from blockmarket.execution.order_store import Order, OrderStatus


@dataclass(frozen=True)
class PriceLevel:
    """All pending orders resting at one price."""

    price: float
    quantity: int


@dataclass(frozen=True)
class OrderBookSnapshot:
    bids: List[PriceLevel] = field(default_factory=list)
    asks: List[PriceLevel] = field(default_factory=list)

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def spread(self) -> Optional[float]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid

    def total_quantity(self) -> int:
        return sum(level.quantity for level in self.bids) + sum(level.quantity for level in self.asks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bids": [asdict(level) for level in self.bids],
            "asks": [asdict(level) for level in self.asks],
            "spread": self.spread,
        }


class OrderBookAggregator:
    """Group pending orders by price level.

    Bids are ordered by descending price and asks by ascending price, so the
    first level on each side is the top of book. Orders that are not pending
    are skipped. Each order counts as one block.
    """

    def aggregate(self, orders: Iterable[Order]) -> OrderBookSnapshot:
        bid_counts: Counter = Counter()
        ask_counts: Counter = Counter()
        for order in orders:
            if order.status is not OrderStatus.PENDING:
                continue
            if order.side == "bid":
                bid_counts[order.price] += 1
            else:
                ask_counts[order.price] += 1

        return OrderBookSnapshot(
            bids=self._ladder(bid_counts, descending=True),
            asks=self._ladder(ask_counts, descending=False),
        )

    def _ladder(self, counts: Counter, descending: bool) -> List[PriceLevel]:
        return [PriceLevel(price=price, quantity=counts[price]) for price in sorted(counts, reverse=descending)]


__all__ = ["OrderBookAggregator", "OrderBookSnapshot", "PriceLevel"]
