"""Structured JSON logging for the market service.

Every line carries the service name and, when configured, the market it
serves (the order table name, or ``dry-run``). Order-scoped ``extra`` fields
listed in :data:`ORDER_FIELDS` are grouped under one ``order`` object, so a
transition logs as::

    {"event": "order_accepted", "user_id": "sam", "market": "orders",
     "order": {"order_id": "bid-1", "side": "bid", "status": "ACCEPTED", "price": 8.5}}
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SERVICE_NAME = "blockmarket"
ORDER_FIELDS = ("order_id", "side", "status", "price", "order_type", "payment_status")


def order_log_fields(order: Any) -> Dict[str, Any]:
    """``extra`` fields describing an order; unset values are dropped by the formatter."""

    return {
        "order_id": order.order_id,
        "side": order.side,
        "status": order.status.value,
        "price": order.price,
        "order_type": order.order_type,
        "payment_status": order.payment_status,
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with order fields nested under ``order``."""

    _standard_attrs = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

    def __init__(self, service: str = SERVICE_NAME, market: Optional[str] = None) -> None:
        super().__init__()
        self.service = service
        self.market = market

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - logging interface name
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.market:
            payload["market"] = self.market

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        extras = {key: value for key, value in record.__dict__.items() if key not in self._standard_attrs}
        order = {field: extras.pop(field) for field in ORDER_FIELDS if field in extras}
        order = {field: value for field, value in order.items() if value is not None}
        if order:
            payload["order"] = order
        payload.update(extras)
        return json.dumps(payload, default=str)


def configure_logging(default_level: str = "INFO", stream: Any = None, market: Optional[str] = None) -> None:
    """Configure the root logger; ``LOG_LEVEL`` overrides the default level."""

    level_name = os.getenv("LOG_LEVEL", default_level)
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter(market=market))
    root.addHandler(handler)
