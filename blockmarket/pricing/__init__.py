"""Pricing utilities: price oracle, order book ladders, and market stats."""

from .oracle import PriceEstimate, PriceOracle
from .order_book import OrderBookAggregator, OrderBookSnapshot, PriceLevel
from .stats import (
    MarketStats,
    PriceHistory,
    PricePoint,
    Transaction,
    compute_market_stats,
    price_history,
    recent_transactions,
)

__all__ = [
    "PriceOracle",
    "PriceEstimate",
    "OrderBookAggregator",
    "OrderBookSnapshot",
    "PriceLevel",
    "MarketStats",
    "PriceHistory",
    "PricePoint",
    "Transaction",
    "compute_market_stats",
    "price_history",
    "recent_transactions",
]
