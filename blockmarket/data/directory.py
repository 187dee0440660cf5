"""Read-only client for the campus dining location directory."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from blockmarket.execution.errors import TransportError

DEFAULT_DIRECTORY_URL = "https://dining.apis.scottylabs.org/locations"


@dataclass(frozen=True)
class Restaurant:
    """A dining location where blocks can be redeemed."""

    name: str
    short_description: str = ""
    location: str = ""
    accepts_online_orders: bool = False
    concept_id: Optional[int] = None


class RestaurantDirectoryClient:
    """Fetches dining locations, caching the list for ``cache_seconds``."""

    def __init__(
        self,
        url: str = DEFAULT_DIRECTORY_URL,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 10.0,
        cache_seconds: float = 300.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.cache_seconds = cache_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Optional[List[Restaurant]] = None
        self._fetched_at = 0.0

    def fetch_restaurants(self) -> List[Restaurant]:
        if self._cache is not None and time.monotonic() - self._fetched_at < self.cache_seconds:
            return self._cache

        try:
            response = self.session.get(self.url, timeout=self.timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning(
                "Restaurant directory request failed: %s", exc,
                extra={"event": "transport_error", "url": self.url},
            )
            raise TransportError(f"GET {self.url} failed: {exc}") from exc

        rows = payload.get("locations", []) if isinstance(payload, dict) else payload
        self._cache = [restaurant for restaurant in (self._normalize(row) for row in rows) if restaurant]
        self._fetched_at = time.monotonic()
        return self._cache

    async def restaurants(self) -> List[Restaurant]:
        return await asyncio.to_thread(self.fetch_restaurants)

    async def is_known(self, name: str) -> bool:
        return any(restaurant.name == name for restaurant in await self.restaurants())

    def _normalize(self, row: Dict[str, Any]) -> Optional[Restaurant]:
        name = str(row.get("name") or "").strip()
        if not name:
            return None
        concept_id = row.get("conceptId")
        return Restaurant(
            name=name,
            short_description=row.get("shortDescription") or "",
            location=row.get("location") or "",
            accepts_online_orders=bool(row.get("acceptsOnlineOrders", False)),
            concept_id=int(concept_id) if concept_id is not None else None,
        )


__all__ = ["Restaurant", "RestaurantDirectoryClient", "DEFAULT_DIRECTORY_URL"]
