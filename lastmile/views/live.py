"""
Live collections: a local copy of a role-scoped slice of a table, kept
current by applying change events one row at a time.

The initial rows come from a loader; after that, inserts and updates
upsert the row if it still belongs to the slice and drop it otherwise,
deletes drop it.  No full refetch on change.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from lastmile.domain.enums import ChangeType
from lastmile.infrastructure.change_feed import (
    ChangeEvent,
    ChangeFeed,
    Subscription,
)

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Loader = Callable[[], Awaitable[list[Row]]]
Predicate = Callable[[Row], bool]


def _always(_: Row) -> bool:
    return True


class LiveCollection:
    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        loader: Loader,
        *,
        filters: Optional[dict[str, Any]] = None,
        predicate: Predicate = _always,
        order_by: str = "id",
        descending: bool = True,
    ):
        self.feed = feed
        self.table = table
        self.loader = loader
        self.filters = dict(filters or {})
        self.predicate = predicate
        self.order_by = order_by
        self.descending = descending
        self.items: dict[Any, Row] = {}
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._listeners: list[Callable[[ChangeEvent], None]] = []

    @property
    def active(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    async def start(self) -> "LiveCollection":
        # Subscribe before loading so nothing written in between is missed;
        # replays of rows already loaded are harmless upserts.
        self._subscription = self.feed.subscribe(self.table, self.filters)
        self.items = {
            row["id"]: row for row in await self.loader() if self.predicate(row)
        }
        return self

    def on_change(self, listener: Callable[[ChangeEvent], None]) -> None:
        self._listeners.append(listener)

    def apply(self, event: ChangeEvent) -> None:
        key = event.record.get("id")
        if key is None:
            return
        if event.type == ChangeType.DELETE or not self.predicate(event.record):
            self.items.pop(key, None)
        else:
            self.items[key] = event.record
        for listener in self._listeners:
            listener(event)

    def sync(self) -> int:
        """Apply every event already received; returns how many."""
        if self._subscription is None:
            return 0
        events = self._subscription.pending()
        for event in events:
            self.apply(event)
        return len(events)

    async def run(self) -> None:
        """Apply events as they arrive until the collection is closed."""
        if self._subscription is None:
            raise RuntimeError("LiveCollection.start() must be awaited first")
        async for event in self._subscription:
            self.apply(event)

    def run_in_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    @property
    def rows(self) -> list[Row]:
        return sorted(
            self.items.values(),
            key=lambda row: (row.get(self.order_by) is not None, row.get(self.order_by)),
            reverse=self.descending,
        )

    async def rescope(
        self,
        *,
        loader: Optional[Loader] = None,
        filters: Optional[dict[str, Any]] = None,
        predicate: Optional[Predicate] = None,
    ) -> "LiveCollection":
        """Tear down the old subscription and start over with a new scope."""
        await self.close()
        if loader is not None:
            self.loader = loader
        if filters is not None:
            self.filters = dict(filters)
        if predicate is not None:
            self.predicate = predicate
        return await self.start()

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._subscription = None
        self.items = {}
