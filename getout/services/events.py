"""In-process fan-out of Strava webhook events to server-sent-event listeners."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Set

import structlog

logger = structlog.get_logger(__name__)

KEEPALIVE_SEC = 15.0
QUEUE_SIZE = 100


def format_sse(payload: Dict[str, Any]) -> bytes:
    return b"data: " + json.dumps(payload, default=str).encode("utf-8") + b"\n\n"


class EventFeed:
    """Every subscriber gets its own bounded queue; a full queue drops the event for that listener only."""

    def __init__(self, queue_size: int = QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self.subscribers: Set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self.subscribers.add(queue)
        logger.info("event_feed_subscribed", listeners=len(self.subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self.subscribers.discard(queue)
        logger.info("event_feed_unsubscribed", listeners=len(self.subscribers))

    def publish(self, event: Dict[str, Any]) -> int:
        """Queue the event for every listener and return how many received it."""

        delivered = 0
        for queue in list(self.subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("event_feed_listener_lagging", queued=queue.qsize())
        logger.debug("event_feed_published", listeners=len(self.subscribers), delivered=delivered)
        return delivered


async def sse_stream(
    feed: EventFeed, keepalive: float = KEEPALIVE_SEC
) -> AsyncIterator[bytes]:
    queue = feed.subscribe()
    try:
        yield format_sse({"type": "connected", "message": "Connected to activity feed"})
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield b": keepalive\n\n"
                continue
            yield format_sse(event)
    finally:
        feed.unsubscribe(queue)


webhook_feed = EventFeed()


__all__ = ["EventFeed", "format_sse", "sse_stream", "webhook_feed"]
