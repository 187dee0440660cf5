"""Infrastructure utilities for logging, metrics, and the audit trail."""

from .logging import configure_logging, order_log_fields
from .metrics import MetricsSink
from .storage import JsonlStore

__all__ = [
    "configure_logging",
    "order_log_fields",
    "MetricsSink",
    "JsonlStore",
]
