"""
Change Relay Worker
===================

Keeps the change feed's transport pumping for the lifetime of the API
process.  With ``RedisChangeFeed`` this is the pub/sub listener that turns
messages published by *any* API process into events for the local
subscribers (WebSocket clients, live collections).  With the in-process
feed there is nothing to pump and the loop exits immediately.

A dropped Redis connection is logged and retried after
``RECONNECT_DELAY_SECONDS``; events published while disconnected are not
replayed, subscribers recover by reloading when they rescope.
"""

from __future__ import annotations

import asyncio
import logging

from lastmile.infrastructure.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_change_relay(feed: ChangeFeed) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(feed))
    logger.info("Change relay started (%s)", type(feed).__name__)


async def stop_change_relay() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Change relay stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(feed: ChangeFeed) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await feed.listen()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change relay lost its connection")
        else:
            # listen() returned on its own: nothing to pump.
            return
        try:
            await asyncio.wait_for(_stop_event.wait(), timeout=RECONNECT_DELAY_SECONDS)
            break
        except asyncio.TimeoutError:
            pass  # reconnect
