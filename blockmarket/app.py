"""Market session wiring the order store, pricing, lifecycle, and remote feeds.

A :class:`MarketSession` owns one :class:`OrderStore`. Everything that changes
the store (lifecycle results, periodic refreshes, realtime change events)
ends in a store notification, and every notification goes through
:meth:`MarketSession.recompute`, which rebuilds the price, book and stats
snapshot exposed as :attr:`MarketSession.view`.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

import uvicorn

from blockmarket.data.change_feed import BackoffConfig, ChangeEvent, ChangeFeedClient
from blockmarket.data.clients import OrderRecord, OrderTable, RemoteEndpoint, SessionProvider
from blockmarket.data.directory import Restaurant, RestaurantDirectoryClient
from blockmarket.data.order_table import InMemoryOrderTable, RestOrderTable
from blockmarket.data.polling import PeriodicRefresher
from blockmarket.execution.lifecycle import LifecycleConfig, OrderLifecycle
from blockmarket.execution.order_store import HistoryTab, Order, OrderStore, utcnow
from blockmarket.execution.payment import PaymentProcessor
from blockmarket.infra.config import AppConfig, load_config
from blockmarket.infra.logging import configure_logging
from blockmarket.infra.metrics import MetricsSink
from blockmarket.infra.storage import JsonlStore
from blockmarket.pricing.oracle import PriceEstimate, PriceOracle
from blockmarket.pricing.order_book import OrderBookAggregator, OrderBookSnapshot
from blockmarket.pricing.stats import (
    MarketStats,
    PriceHistory,
    Transaction,
    compute_market_stats,
    price_history,
    recent_transactions,
)


@dataclass(frozen=True)
class MarketView:
    """Derived market state as of the last store change."""

    price: PriceEstimate
    book: OrderBookSnapshot
    stats: MarketStats
    computed_at: datetime
    revision: int


class MarketSession:
    """Coordinates the store, price oracle, book aggregator and remote feeds."""

    def __init__(
        self,
        table: OrderTable,
        store: Optional[OrderStore] = None,
        oracle: Optional[PriceOracle] = None,
        aggregator: Optional[OrderBookAggregator] = None,
        lifecycle_config: Optional[LifecycleConfig] = None,
        session: Optional[SessionProvider] = None,
        payments: Optional[PaymentProcessor] = None,
        directory: Optional[RestaurantDirectoryClient] = None,
        validate_restaurants: bool = False,
        change_feed: Optional[ChangeFeedClient] = None,
        refresh_interval: timedelta = timedelta(seconds=15),
        stats_window: timedelta = timedelta(hours=24),
        clock: Optional[Callable[[], datetime]] = None,
        audit: Optional[JsonlStore] = None,
        metrics: Optional[MetricsSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.table = table
        self.clock = clock or utcnow
        self.store = store or OrderStore()
        self.oracle = oracle or PriceOracle(clock=self.clock)
        self.aggregator = aggregator or OrderBookAggregator()
        self.directory = directory
        self.validate_restaurants = validate_restaurants
        self.change_feed = change_feed
        self.stats_window = stats_window
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)
        self.lifecycle = OrderLifecycle(
            table,
            self.store,
            market_price=self.current_price,
            session=session,
            payments=payments,
            config=lifecycle_config,
            clock=self.clock,
            audit=audit,
            metrics=metrics,
        )
        self.refresher = PeriodicRefresher(self.refresh, refresh_interval)

        self._revision = 0
        self._tasks: List[asyncio.Task] = []
        self.view = self._compute_view()
        self._unsubscribe: Optional[Callable[[], None]] = self.store.subscribe(lambda _store: self.recompute())

    # --- Recompute ---------------------------------------------------------
    def recompute(self) -> MarketView:
        """Single entry point that rebuilds derived state after any store change."""

        self._revision += 1
        self.view = self._compute_view()
        if self.metrics:
            self.metrics.set_gauge("market_price", self.view.price.price)
            self.metrics.set_gauge("active_orders", self.view.stats.active_orders)
            for side, levels in (("bid", self.view.book.bids), ("ask", self.view.book.asks)):
                self.metrics.set_gauge("book_depth", sum(level.quantity for level in levels), side=side)
        return self.view

    def _compute_view(self) -> MarketView:
        now = self.clock()
        orders = list(self.store.query())
        open_orders = self.store.open_orders(now)
        return MarketView(
            price=self.oracle.estimate(orders),
            book=self.aggregator.aggregate(open_orders),
            stats=compute_market_stats(orders, now, self.stats_window),
            computed_at=now,
            revision=self._revision,
        )

    def current_price(self) -> float:
        """Fresh oracle price over the store, used to snapshot market asks."""

        return self.oracle.price(self.store.query())

    # --- Remote sync -------------------------------------------------------
    async def refresh(self) -> int:
        """Pull every row from the remote table into the store."""

        rows = await self.lifecycle.call_remote(self.table.select())
        applied = self.store.upsert_many(self._decode(rows))
        if not applied:
            # Expirations change the view even when no row did.
            self.recompute()
        return applied

    def apply_change(self, event: ChangeEvent) -> None:
        if event.kind == "DELETE":
            order_id = event.old_record.get("id")
            if order_id is not None:
                self.store.remove(str(order_id))
            return
        self.store.upsert_many(self._decode([event.record]))

    def _decode(self, rows: Iterable[OrderRecord]) -> List[Order]:
        orders: List[Order] = []
        for row in rows:
            try:
                orders.append(Order.from_record(row))
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.warning(
                    "Skipping malformed order row: %s", exc,
                    extra={"event": "malformed_row", "order_id": row.get("id")},
                )
        return orders

    async def _consume_changes(self) -> None:
        assert self.change_feed is not None
        async for event in self.change_feed.stream():
            self.apply_change(event)

    async def start(self) -> None:
        """Start the periodic refresher and, if configured, the change feed."""

        if self._tasks:
            return
        self._tasks.append(asyncio.create_task(self.refresher.run()))
        if self.change_feed:
            self._tasks.append(asyncio.create_task(self._consume_changes()))

    async def close(self) -> None:
        """Tear down timers and subscriptions owned by this session."""

        self.refresher.stop()
        if self.change_feed:
            self.change_feed.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    async def __aenter__(self) -> "MarketSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # --- User actions ------------------------------------------------------
    async def post_bid(self, price: float, restaurant: str = "", items: Iterable[str] = (), **kwargs: Any) -> Order:
        if restaurant and self.validate_restaurants and self.directory:
            if not await self.directory.is_known(restaurant):
                raise ValueError(f"Unknown restaurant: {restaurant}")
        return await self.lifecycle.post_bid(price, restaurant=restaurant, items=items, **kwargs)

    async def post_ask(self, price: Optional[float] = None, **kwargs: Any) -> Order:
        return await self.lifecycle.post_ask(price, **kwargs)

    async def accept(self, order_id: str, requester: Optional[str] = None) -> Order:
        return await self.lifecycle.accept(order_id, requester)

    async def cancel(self, order_id: str, requester: Optional[str] = None) -> Order:
        return await self.lifecycle.cancel(order_id, requester)

    async def complete(self, order_id: str, requester: Optional[str] = None, proof: Optional[str] = None) -> Order:
        return await self.lifecycle.complete(order_id, requester, proof)

    def orders_for(self, user_id: str, tab: HistoryTab = "active") -> List[Order]:
        return self.store.orders_for(user_id, tab)

    def transactions(self, limit: int = 10) -> List[Transaction]:
        return recent_transactions(self.store.query(), limit)

    def price_history(self, timeframe: str = "1D") -> PriceHistory:
        return price_history(self.store.query(), timeframe, self.clock())

    async def restaurants(self) -> List[Restaurant]:
        if not self.directory:
            return []
        return await self.directory.restaurants()


def build_session(config: AppConfig, session: Optional[SessionProvider] = None) -> MarketSession:
    """Instantiate a market session from configuration."""

    metrics = MetricsSink(
        metrics_file=Path(config.persistence.metrics_file),
        emit_textfile=config.persistence.emit_metrics_textfile,
    )
    audit = JsonlStore(config.persistence.audit_log_path)

    change_feed = None
    if config.dry_run:
        table: OrderTable = InMemoryOrderTable()
    else:
        endpoint = RemoteEndpoint(url=config.remote.url, api_key=config.remote.api_key, table=config.remote.table)
        table = RestOrderTable(endpoint, timeout_seconds=config.remote.timeout_seconds)
        if config.realtime.enable:
            change_feed = ChangeFeedClient(
                endpoint.realtime_url,
                table=endpoint.table,
                heartbeat_interval_seconds=config.realtime.heartbeat_interval_seconds,
                backoff=BackoffConfig(initial=config.realtime.backoff_initial, maximum=config.realtime.backoff_maximum),
            )

    payments = PaymentProcessor(timeout_seconds=config.payments.timeout_seconds) if config.payments.enable else None
    return MarketSession(
        table,
        oracle=PriceOracle(default_price=config.pricing.default_price, trade_window=config.pricing.trade_window),
        lifecycle_config=config.lifecycle,
        session=session,
        payments=payments,
        directory=RestaurantDirectoryClient(config.directory.url, cache_seconds=config.directory.cache_seconds),
        validate_restaurants=config.directory.validate_restaurants,
        change_feed=change_feed,
        refresh_interval=timedelta(seconds=config.pricing.refresh_interval_seconds),
        stats_window=timedelta(hours=config.pricing.stats_window_hours),
        audit=audit,
        metrics=metrics,
    )


async def run_market(config_path: str, force_dry_run: bool = False) -> None:
    from blockmarket.dashboard.app import create_app

    cfg = load_config(config_path)
    if force_dry_run:
        cfg.dry_run = True
    configure_logging(market="dry-run" if cfg.dry_run else cfg.remote.table)
    logger = logging.getLogger(__name__)

    if not cfg.dry_run and not (cfg.remote.url and cfg.remote.api_key):
        logger.error("Remote store url/api_key missing; set them in config or the environment.")
        return

    market = build_session(cfg)
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows/limited environments
            pass

    async def serve_api() -> None:
        if not cfg.dashboard.enable:
            return
        app = create_app(market)
        config = uvicorn.Config(app, host=cfg.dashboard.host, port=cfg.dashboard.port, log_level="info")
        server = uvicorn.Server(config)
        await server.serve()

    async with market:
        logger.info("Market session started", extra={"event": "startup", "dry_run": cfg.dry_run})
        api = asyncio.create_task(serve_api())
        await stop_event.wait()
        api.cancel()
        await asyncio.gather(api, return_exceptions=True)


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="The Block Market order book service")
    parser.add_argument("--config", default="config/settings.example.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Use the in-memory order table regardless of config")
    args = parser.parse_args()
    asyncio.run(run_market(args.config, force_dry_run=args.dry_run))


if __name__ == "__main__":
    main()
