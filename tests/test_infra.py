import io
import json
import logging
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from blockmarket.execution.order_store import Order, OrderStatus
from blockmarket.infra.logging import JsonFormatter, configure_logging, order_log_fields
from blockmarket.infra.metrics import MetricsSink
from blockmarket.infra.storage import JsonlStore


NOW = datetime(2025, 2, 8, 12, 0, tzinfo=timezone.utc)


def make_record(msg: str, *args, **extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "blockmarket.test", "levelname": "INFO", "msg": msg, "args": args})
    record.__dict__.update(extra)
    return record


class JsonFormatterTest(unittest.TestCase):
    def test_order_fields_are_grouped(self) -> None:
        order = Order(
            order_id="b1",
            side="bid",
            buyer_id="alice",
            seller_id="sam",
            status=OrderStatus.ACCEPTED,
            price=8.5,
            order_time=NOW,
            delivery_time=NOW,
            expiration_time=NOW + timedelta(hours=1),
        )
        record = make_record("Order %s accepted", "b1", event="order_accepted", user_id="sam", **order_log_fields(order))

        payload = json.loads(JsonFormatter(market="orders").format(record))

        self.assertEqual("Order b1 accepted", payload["message"])
        self.assertEqual("blockmarket", payload["service"])
        self.assertEqual("orders", payload["market"])
        self.assertEqual("order_accepted", payload["event"])
        self.assertEqual("sam", payload["user_id"])
        self.assertEqual(
            {"order_id": "b1", "side": "bid", "status": "ACCEPTED", "price": 8.5, "order_type": "limit"},
            payload["order"],
        )
        self.assertNotIn("order_id", payload)
        self.assertNotIn("args", payload)

    def test_other_extras_stay_top_level(self) -> None:
        payload = json.loads(JsonFormatter().format(make_record("Reconnecting", event="reconnect", sleep_seconds=2.0)))

        self.assertEqual(2.0, payload["sleep_seconds"])
        self.assertNotIn("order", payload)
        self.assertNotIn("market", payload)

    def test_configure_logging_writes_json_lines(self) -> None:
        stream = io.StringIO()
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            with mock.patch.dict(os.environ, {"LOG_LEVEL": "INFO"}):
                configure_logging(stream=stream, market="dry-run")
            logging.getLogger("blockmarket.test").info("hello", extra={"event": "startup"})
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        line = json.loads(stream.getvalue().strip().splitlines()[-1])
        self.assertEqual("startup", line["event"])
        self.assertEqual("dry-run", line["market"])


class MetricsSinkTest(unittest.TestCase):
    def test_counters_gauges_and_textfile(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metrics" / "blockmarket.prom"
            sink = MetricsSink(metrics_file=path, emit_textfile=True)
            sink.incr("orders_posted")
            sink.incr("orders_posted")
            sink.set_gauge("market_price", 8.5)

            text = path.read_text(encoding="utf-8")

        self.assertEqual({"orders_posted": 2, "market_price": 8.5}, sink.export())
        self.assertIn("# TYPE blockmarket_orders_posted counter", text)
        self.assertIn("blockmarket_orders_posted 2", text)
        self.assertIn("blockmarket_market_price 8.5", text)

    def test_labeled_series(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "blockmarket.prom"
            sink = MetricsSink(metrics_file=path, emit_textfile=True)
            sink.incr("orders_posted", side="bid")
            sink.incr("orders_posted", side="bid")
            sink.incr("orders_posted", side="ask")
            sink.set_gauge("book_depth", 3, side="bid")

            text = path.read_text(encoding="utf-8")

        self.assertEqual(3, sink.counters["orders_posted"])
        self.assertEqual(2, sink.export()['orders_posted{side="bid"}'])
        self.assertEqual(3.0, sink.export()['book_depth{side="bid"}'])
        self.assertIn('blockmarket_orders_posted{side="ask"} 1', text)
        self.assertIn('blockmarket_orders_posted{side="bid"} 2', text)
        self.assertNotIn("blockmarket_orders_posted 3", text)
        self.assertIn("# TYPE blockmarket_book_depth gauge", text)
        self.assertIn('blockmarket_book_depth{side="bid"} 3.0', text)


class JsonlStoreTest(unittest.TestCase):
    def test_append_and_read(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonlStore(Path(tmp) / "audit.jsonl")
            store.append({"action": "posted", "order_id": "b1"})
            store.append({"action": "accepted", "order_id": "b1"})

            records = list(store.read())

        self.assertEqual(["posted", "accepted"], [record["action"] for record in records])
        self.assertIn("recorded_at", records[0])


if __name__ == "__main__":
    unittest.main()
