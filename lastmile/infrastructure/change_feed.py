"""
Change feed: publish / subscribe over row-level changes.

Events are ``{table, type, record}`` where ``record`` is a JSON-safe
snapshot of the row (for deletes, the last snapshot).  Subscribers pick a
table, an optional column filter and an event mask.

``ChangeFeed`` owns the subscriptions and the dispatch path; the two
transports only differ in how an event reaches it:

* ``InMemoryChangeFeed`` -- in-process fan-out over ``asyncio.Queue``.
* ``RedisChangeFeed``    -- Redis pub/sub, one channel per table, so
  several API processes see each other's writes.  Filters are evaluated on
  the subscriber side.

Delivery is at-least-once and there is no ordering guarantee across
tables.  Subscribers must ``close()`` when their scope changes.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

import redis.asyncio as aioredis
from sqlalchemy import inspect

from lastmile.domain.enums import ChangeType

logger = logging.getLogger(__name__)


def snapshot(row: Any) -> dict[str, Any]:
    """JSON-safe dict of an ORM row's column attributes."""
    data: dict[str, Any] = {}
    for attr in inspect(row).mapper.column_attrs:
        value = getattr(row, attr.key)
        if isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        data[attr.key] = value
    return data


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: ChangeType
    record: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {"table": self.table, "type": self.type.value, "record": self.record}
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            table=data["table"],
            type=ChangeType(data["type"]),
            record=data.get("record") or {},
        )


class Subscription:
    """Async iterator of matching events; ``close()`` unsubscribes."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        filters: Optional[dict[str, Any]] = None,
        events: Optional[Iterable[ChangeType]] = None,
    ):
        self._feed = feed
        self.table = table
        self.filters = dict(filters or {})
        self.events = frozenset(events or ChangeType)
        self.closed = False
        self._queue: asyncio.Queue[Optional[ChangeEvent]] = asyncio.Queue()

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type not in self.events:
            return False
        return all(event.record.get(k) == v for k, v in self.filters.items())

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Next event, or ``None`` once the subscription is closed."""
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def pending(self) -> list[ChangeEvent]:
        """Drain whatever has already arrived without waiting."""
        items: list[ChangeEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not None:
                items.append(item)
        return items

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        self.close()


class ChangeFeed(ABC):
    def __init__(self):
        self._subscriptions: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        events: Optional[Iterable[ChangeType]] = None,
    ) -> Subscription:
        sub = Subscription(self, table, filters, events)
        self._subscriptions.add(sub)
        logger.debug("Subscribed to %s %s", table, sub.filters)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)

    def dispatch(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            if sub.matches(event):
                sub.deliver(event)

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None: ...

    @abstractmethod
    async def listen(self) -> None:
        """Feed transport events into ``dispatch`` until cancelled."""

    async def aclose(self) -> None:
        for sub in list(self._subscriptions):
            sub.close()


class InMemoryChangeFeed(ChangeFeed):
    async def publish(self, event: ChangeEvent) -> None:
        self.dispatch(event)

    async def listen(self) -> None:
        """Nothing to pump for the in-process transport."""


class RedisChangeFeed(ChangeFeed):
    def __init__(self, client: aioredis.Redis, prefix: str = "lastmile:changes"):
        super().__init__()
        self.redis = client
        self.prefix = prefix

    def channel(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> None:
        # Local subscribers receive it back through listen().
        await self.redis.publish(self.channel(event.table), event.to_json())

    async def listen(self) -> None:
        """Pump Redis messages into local subscriptions until cancelled."""
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(f"{self.prefix}:*")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                try:
                    event = ChangeEvent.from_json(message["data"])
                except (ValueError, KeyError):
                    logger.warning("Dropping malformed change event: %r", message)
                    continue
                self.dispatch(event)
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
