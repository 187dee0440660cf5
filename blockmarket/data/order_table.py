"""Order table clients: PostgREST/Supabase REST and an in-memory stand-in.

Both implement :class:`blockmarket.data.clients.OrderTable`. The REST client
expresses conditional updates as column filters on a ``PATCH`` request so the
hosted database evaluates the predicate and the write atomically; an empty
representation means the predicate no longer held.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import operator
import threading
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import requests

from blockmarket.data.clients import Compare, OrderRecord, RemoteEndpoint
from blockmarket.execution.errors import TransportError
from blockmarket.execution.order_store import parse_timestamp

_OPERATORS = {"gt": operator.gt, "gte": operator.ge, "lt": operator.lt, "lte": operator.le}


def _filter_value(value: Any) -> str:
    if isinstance(value, Compare):
        operand = value.value.isoformat() if isinstance(value.value, datetime) else value.value
        return f"{value.op}.{operand}"
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class RestOrderTable:
    """Order table backed by a PostgREST endpoint (Supabase ``/rest/v1``)."""

    def __init__(
        self,
        endpoint: RemoteEndpoint,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

    async def insert(self, record: OrderRecord) -> OrderRecord:
        rows = await asyncio.to_thread(self._request, "POST", None, record)
        if not rows:
            raise TransportError(f"Insert of order {record.get('id')} returned no representation")
        return rows[0]

    async def fetch(self, order_id: str) -> Optional[OrderRecord]:
        rows = await asyncio.to_thread(self._request, "GET", {"id": order_id}, None)
        return rows[0] if rows else None

    async def select(self, filters: Optional[Mapping[str, Any]] = None) -> List[OrderRecord]:
        return await asyncio.to_thread(self._request, "GET", filters or {}, None)

    async def update_where(
        self, order_id: str, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> Optional[OrderRecord]:
        filters = {"id": order_id, **expected}
        rows = await asyncio.to_thread(self._request, "PATCH", filters, dict(changes))
        return rows[0] if rows else None

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.endpoint.api_key,
            "Authorization": f"Bearer {self.endpoint.api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _request(
        self, method: str, filters: Optional[Mapping[str, Any]], body: Optional[Mapping[str, Any]]
    ) -> List[OrderRecord]:
        params = {column: _filter_value(value) for column, value in (filters or {}).items()}
        url = self.endpoint.rest_url
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json() if response.content else []
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning(
                "Order table %s failed for %s: %s", method, url, exc,
                extra={"event": "transport_error", "method": method, "filters": params},
            )
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        if isinstance(payload, dict):
            return [payload]
        return list(payload)


class InMemoryOrderTable:
    """Process-local order table with atomic conditional updates.

    Used for dry runs and tests. The lock makes the predicate check and the
    write one step, mirroring what the hosted database guarantees.
    """

    def __init__(self, rows: Optional[List[OrderRecord]] = None) -> None:
        self._rows: Dict[str, OrderRecord] = {}
        self._lock = threading.Lock()
        for row in rows or []:
            self._rows[str(row["id"])] = copy.deepcopy(dict(row))

    async def insert(self, record: OrderRecord) -> OrderRecord:
        order_id = str(record["id"])
        with self._lock:
            if order_id in self._rows:
                raise TransportError(f"Duplicate key for order {order_id}")
            self._rows[order_id] = copy.deepcopy(dict(record))
            return copy.deepcopy(self._rows[order_id])

    async def fetch(self, order_id: str) -> Optional[OrderRecord]:
        with self._lock:
            row = self._rows.get(order_id)
            return copy.deepcopy(row) if row is not None else None

    async def select(self, filters: Optional[Mapping[str, Any]] = None) -> List[OrderRecord]:
        with self._lock:
            return [copy.deepcopy(row) for row in self._rows.values() if self._matches(row, filters or {})]

    async def update_where(
        self, order_id: str, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> Optional[OrderRecord]:
        with self._lock:
            row = self._rows.get(order_id)
            if row is None or not self._matches(row, expected):
                return None
            row.update(copy.deepcopy(dict(changes)))
            return copy.deepcopy(row)

    def _matches(self, row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
        return all(self._match_value(row.get(column), value) for column, value in filters.items())

    def _match_value(self, current: Any, value: Any) -> bool:
        if not isinstance(value, Compare):
            return current == value
        if current is None:
            return False
        operand = value.value
        if isinstance(operand, datetime):
            current, operand = parse_timestamp(current), parse_timestamp(operand)
        return _OPERATORS[value.op](current, operand)


__all__ = ["RestOrderTable", "InMemoryOrderTable"]
