"""Periodic refresh of the order store from the remote table."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from blockmarket.execution.errors import TransportError


class PeriodicRefresher:
    """Runs a refresh coroutine on a fixed interval until stopped.

    Transport failures are logged and retried on the next tick; the loop never
    retries within a tick.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[object]],
        interval: timedelta,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("Refresh interval must be positive")
        self._refresh = refresh
        self.interval = interval
        self.logger = logger or logging.getLogger(__name__)
        self._stopped = asyncio.Event()
        self.ticks = 0

    async def run(self) -> None:
        """Refresh immediately, then once per interval."""

        self._stopped.clear()
        while not self._stopped.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval.total_seconds())
            except asyncio.TimeoutError:
                continue

    async def run_once(self) -> bool:
        """Execute a single refresh pass; returns whether it succeeded."""

        self.ticks += 1
        try:
            await self._refresh()
        except TransportError as exc:
            self.logger.warning(
                "Periodic refresh failed: %s", exc,
                extra={"event": "refresh_failed", "tick": self.ticks},
            )
            return False
        return True

    def stop(self) -> None:
        self._stopped.set()


__all__ = ["PeriodicRefresher"]
