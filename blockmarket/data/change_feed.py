"""Realtime change feed for the hosted order table.

The hosted backend publishes row changes over a Phoenix-channel WebSocket.
:class:`ChangeFeedClient` joins the table's channel, keeps the socket alive
with heartbeats, and yields :class:`ChangeEvent` objects. Dropped connections
are retried with exponential backoff and jitter.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterator, Literal, Optional

import websockets

ChangeKind = Literal["INSERT", "UPDATE", "DELETE"]

_CHANGE_KINDS = {"INSERT", "UPDATE", "DELETE"}


@dataclass
class BackoffConfig:
    """Configuration for reconnection backoff."""

    initial: float = 1.0
    maximum: float = 60.0
    factor: float = 2.0
    jitter: float = 0.25


@dataclass
class ChangeEvent:
    """A single row change on the order table."""

    kind: ChangeKind
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Dict[str, Any] = field(default_factory=dict)
    table: Optional[str] = None


class ChangeFeedClient:
    """Streaming subscription to changes on one table.

    :meth:`stream` is an async iterator that reconnects forever until
    :meth:`stop` is called or the consuming task is cancelled.
    """

    def __init__(
        self,
        websocket_url: str,
        table: str = "orders",
        schema: str = "public",
        heartbeat_interval_seconds: float = 30.0,
        backoff: Optional[BackoffConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.websocket_url = websocket_url
        self.table = table
        self.schema = schema
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.backoff = backoff or BackoffConfig()
        self.logger = logger or logging.getLogger(__name__)

        self._refs: Iterator[int] = itertools.count(1)
        self._running = False

    @property
    def topic(self) -> str:
        return f"realtime:{self.schema}:{self.table}"

    async def stream(self) -> AsyncIterator[ChangeEvent]:
        """Yield change events with reconnection and backoff."""

        self._running = True
        delay = self.backoff.initial
        while self._running:
            start_time = time.monotonic()
            try:
                async for event in self._consume_once():
                    delay = self.backoff.initial
                    yield event
            except asyncio.CancelledError:
                self._running = False
                raise
            except Exception as exc:  # pragma: no cover - network dependent
                self.logger.exception("Change feed failure: %s", exc)
            if not self._running:
                break
            elapsed = time.monotonic() - start_time
            sleep_for = min(delay, self.backoff.maximum) + random.uniform(0, self.backoff.jitter)
            self.logger.info(
                "Reconnecting to change feed",
                extra={"event": "reconnect", "sleep_seconds": sleep_for, "elapsed_seconds": elapsed},
            )
            await asyncio.sleep(sleep_for)
            delay = min(delay * self.backoff.factor, self.backoff.maximum)

    def stop(self) -> None:
        self._running = False

    async def _consume_once(self) -> AsyncIterator[ChangeEvent]:
        async with websockets.connect(self.websocket_url, ping_interval=None) as ws:
            await ws.send(json.dumps(self.join_message()))
            self.logger.info("Joined change feed", extra={"event": "subscription", "topic": self.topic})
            heartbeat = asyncio.create_task(self._heartbeat(ws))
            try:
                async for raw in ws:
                    event = self.normalize(json.loads(raw))
                    if event:
                        yield event
            finally:
                heartbeat.cancel()

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_seconds)
            await ws.send(json.dumps({"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": str(next(self._refs))}))

    def join_message(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "event": "phx_join",
            "payload": {
                "config": {
                    "postgres_changes": [{"event": "*", "schema": self.schema, "table": self.table}],
                }
            },
            "ref": str(next(self._refs)),
        }

    def normalize(self, message: Dict[str, Any]) -> Optional[ChangeEvent]:
        """Map a channel message to a change event, ignoring control traffic."""

        event = message.get("event")
        payload = message.get("payload") or {}
        if event == "postgres_changes":
            data = payload.get("data") or {}
        elif event in _CHANGE_KINDS:
            data = payload
        else:
            if event == "phx_reply" and (payload.get("status") or "ok") != "ok":
                self.logger.error(
                    "Change feed join rejected", extra={"event": "subscription_rejected", "payload": payload}
                )
            return None

        kind = str(data.get("type") or data.get("eventType") or event).upper()
        if kind not in _CHANGE_KINDS:
            return None
        table = data.get("table")
        if table and table != self.table:
            return None
        return ChangeEvent(
            kind=kind,
            record=dict(data.get("record") or data.get("new") or {}),
            old_record=dict(data.get("old_record") or data.get("old") or {}),
            table=table,
        )


__all__ = ["ChangeFeedClient", "ChangeEvent", "BackoffConfig"]
