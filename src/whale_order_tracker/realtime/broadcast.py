from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from whale_order_tracker.core.enums import EventType
from whale_order_tracker.core.time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BroadcastEvent:
    type: EventType
    payload: Any
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.payload, "timestamp": to_iso(self.timestamp)}


def encode_event(event: BroadcastEvent) -> str:
    return json.dumps(event.to_dict(), separators=(",", ":"))


class BroadcastChannel:
    """In-process fan-out of events to any number of subscribers.

    Every subscriber owns a bounded queue. Publishing never blocks: when a
    queue is full its oldest event is discarded to make room.
    """

    def __init__(self, max_queue_size: int = 256) -> None:
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")
        self._max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue[BroadcastEvent]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[BroadcastEvent]:
        queue: asyncio.Queue[BroadcastEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[BroadcastEvent]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event_type: EventType, payload: Any) -> int:
        event = BroadcastEvent(type=event_type, payload=payload)
        dropped = 0
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                dropped += 1
            queue.put_nowait(event)
        if dropped:
            logger.debug(
                "Dropped oldest events for slow subscribers",
                extra={"event_type": event_type.value, "dropped": dropped},
            )
        return len(self._subscribers)
