# mclink/events/rabbit.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import orjson
from aio_pika import ExchangeType, Message, connect_robust
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from ..config import settings

log = logging.getLogger("mclink.events")


def rk(event: str, org: str | None = None) -> str:
    """
    Build the canonical versioned routing key:
        <org>.mclink.<event>.v1
    """
    return f"{org or settings.EVENTS_ORG}.mclink.{event}.v1"


class RabbitEventSink:
    """Publishes link events to the platform topic exchange."""

    def __init__(self, uri: str, exchange: str):
        self.uri = uri
        self.exchange_name = exchange
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def _ensure_exchange(self) -> AbstractExchange:
        """Ensure RabbitMQ connection, channel, and exchange are ready."""
        async with self._lock:
            if self._exchange:
                return self._exchange
            self._connection = await connect_robust(self.uri)
            self._channel = await self._connection.channel()
            self._exchange = await self._channel.declare_exchange(
                self.exchange_name,
                ExchangeType.TOPIC,
                durable=True,
            )
            return self._exchange

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        ex = await self._ensure_exchange()
        msg = Message(orjson.dumps(payload), content_type="application/json", delivery_mode=2)
        await ex.publish(msg, routing_key=rk(event))

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self.publish(event, payload))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._done(t, event))

    def _done(self, task: asyncio.Task, event: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("event publish failed event=%s err=%s", event, exc)

    async def close(self) -> None:
        """Flush in-flight publishes, then close the connection."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._exchange = None
