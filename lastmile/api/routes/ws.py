"""
WebSocket change stream
=======================

WS /ws/deliveries?user_id=<id>

Pushes ``{"table", "type", "record"}`` frames for the deliveries the
caller may see, plus their own notifications:

* customer -- deliveries they booked
* rider    -- deliveries assigned to them and unclaimed pending ones
* admin    -- every delivery

A rider also gets a bare ``{"id", "status"}`` record when a delivery
leaves their view (claimed by someone else, reassigned away, cancelled),
so the client can drop it.

Clients may send ``{"type": "ping"}`` and get ``{"type": "pong"}`` back.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from lastmile.api.dependencies import resolve_session
from lastmile.domain.entities import Session
from lastmile.domain.enums import DeliveryStatus, UserRole
from lastmile.domain.errors import LastMileError
from lastmile.infrastructure.change_feed import (
    ChangeEvent,
    ChangeFeed,
    Subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])

# Maps a changed row to the record to send, or None to skip it.
RowScope = Callable[[dict], Optional[dict]]

# Statuses a pending row moves to when it leaves the available pool.
_LEAVES_POOL = frozenset({DeliveryStatus.ASSIGNED.value, DeliveryStatus.CANCELLED.value})


def _everything(row: dict) -> Optional[dict]:
    return row


def rider_scope(rider_id: Optional[int]) -> RowScope:
    """Own and claimable deliveries in full, departures as bare ids."""
    held: set = set()

    def scope(row: dict) -> Optional[dict]:
        delivery_id = row.get("id")
        mine = rider_id is not None and row.get("rider_id") == rider_id
        claimable = (
            row.get("status") == DeliveryStatus.PENDING.value
            and row.get("rider_id") is None
        )
        if mine or claimable:
            held.add(delivery_id)
            return row
        if delivery_id in held or row.get("status") in _LEAVES_POOL:
            held.discard(delivery_id)
            return {"id": delivery_id, "status": row.get("status")}
        return None

    return scope


def scoped_subscriptions(
    feed: ChangeFeed, session: Session
) -> list[tuple[Subscription, RowScope]]:
    """Open the subscriptions a session's stream is made of."""
    streams = [
        (feed.subscribe("notifications", {"user_id": session.profile_id}), _everything)
    ]
    if session.role == UserRole.CUSTOMER:
        streams.append(
            (feed.subscribe("deliveries", {"customer_id": session.profile_id}), _everything)
        )
    elif session.role == UserRole.RIDER:
        streams.append((feed.subscribe("deliveries"), rider_scope(session.rider_id)))
    else:
        streams.append((feed.subscribe("deliveries"), _everything))
    return streams


async def _forward(websocket: WebSocket, sub: Subscription, scope: RowScope) -> None:
    async for event in sub:
        record = scope(event.record)
        if record is not None:
            await websocket.send_text(
                ChangeEvent(event.table, event.type, record).to_json()
            )


@router.websocket("/deliveries")
async def delivery_stream(websocket: WebSocket, user_id: int = Query(...)):
    services = websocket.app.state.services
    try:
        session = await resolve_session(services, user_id)
    except (HTTPException, LastMileError) as exc:
        logger.info("Rejected stream for user %s: %s", user_id, exc)
        await websocket.close(code=1008)
        return

    await websocket.accept()
    streams = scoped_subscriptions(services.feed, session)
    pumps = [
        asyncio.create_task(_forward(websocket, sub, scope)) for sub, scope in streams
    ]
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except ValueError:
                await websocket.send_text(json.dumps({"type": "error", "detail": "invalid JSON"}))
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_text(
                    json.dumps(
                        {"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}
                    )
                )
    except WebSocketDisconnect:
        logger.info("Stream closed for user %s", user_id)
    finally:
        for sub, _ in streams:
            sub.close()
        for task in pumps:
            task.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
