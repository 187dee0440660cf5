"""Rolling market statistics, price history and the recent transaction tape."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Literal, Optional, Tuple

from blockmarket.execution.order_store import Order, OrderStatus

_TRADED = (OrderStatus.ACCEPTED, OrderStatus.COMPLETED)

Timeframe = Literal["1D", "1W", "1M", "1Y"]

# span of the chart, width of one point
TIMEFRAMES: Dict[str, Tuple[timedelta, timedelta]] = {
    "1D": (timedelta(days=1), timedelta(hours=1)),
    "1W": (timedelta(weeks=1), timedelta(days=1)),
    "1M": (timedelta(days=30), timedelta(days=1)),
    "1Y": (timedelta(days=365), timedelta(weeks=1)),
}


@dataclass(frozen=True)
class MarketStats:
    """Headline numbers over a trailing window (24h by default)."""

    volume: int
    high: Optional[float]
    low: Optional[float]
    active_orders: int


@dataclass(frozen=True)
class Transaction:
    time: datetime
    price: float
    quantity: int = 1


@dataclass(frozen=True)
class PricePoint:
    time: datetime
    price: float


@dataclass(frozen=True)
class PriceHistory:
    """Closing trade price per interval, plus the move across the window.

    ``change`` is the last traded price minus the first traded price inside
    the window; both change fields are ``None`` when nothing traded.
    """

    timeframe: str
    points: List[PricePoint]
    change: Optional[float]
    change_percent: Optional[float]


def _traded(orders: Iterable[Order]) -> List[Order]:
    return [
        order for order in orders
        if order.status in _TRADED and order.is_matched and order.acceptance_time is not None
    ]


def compute_market_stats(
    orders: Iterable[Order], now: datetime, window: timedelta = timedelta(hours=24)
) -> MarketStats:
    snapshot = list(orders)
    since = now - window
    prices = [order.price for order in _traded(snapshot) if since <= order.acceptance_time <= now]
    active = sum(1 for order in snapshot if order.is_open(now))
    return MarketStats(
        volume=len(prices),
        high=max(prices) if prices else None,
        low=min(prices) if prices else None,
        active_orders=active,
    )


def recent_transactions(orders: Iterable[Order], limit: int = 10) -> List[Transaction]:
    """Newest-first matched trades, one block each."""

    trades = sorted(_traded(orders), key=lambda order: order.acceptance_time, reverse=True)
    return [Transaction(time=order.acceptance_time, price=order.price) for order in trades[:limit]]


def price_history(orders: Iterable[Order], timeframe: str, now: datetime) -> PriceHistory:
    """Bucket traded prices over ``timeframe`` (one of :data:`TIMEFRAMES`) ending at ``now``.

    Each point sits at the start of its interval and carries the last price
    traded in it. Intervals without trades are omitted.
    """

    try:
        span, step = TIMEFRAMES[timeframe]
    except KeyError:
        raise ValueError(f"Unknown timeframe {timeframe!r}") from None

    since = now - span
    last_bucket = math.ceil(span / step) - 1
    trades = sorted(
        (order for order in _traded(orders) if since <= order.acceptance_time <= now),
        key=lambda order: order.acceptance_time,
    )
    closes: Dict[int, float] = {}
    for order in trades:
        closes[min(int((order.acceptance_time - since) / step), last_bucket)] = order.price
    points = [PricePoint(time=since + index * step, price=price) for index, price in sorted(closes.items())]
    if not trades:
        return PriceHistory(timeframe=timeframe, points=points, change=None, change_percent=None)

    opening, closing = trades[0].price, trades[-1].price
    change = closing - opening
    return PriceHistory(
        timeframe=timeframe,
        points=points,
        change=change,
        change_percent=change / opening * 100.0,
    )


__all__ = [
    "TIMEFRAMES",
    "MarketStats",
    "PriceHistory",
    "PricePoint",
    "Timeframe",
    "Transaction",
    "compute_market_stats",
    "price_history",
    "recent_transactions",
]
