import asyncio
import json
from typing import Any

from websockets.exceptions import ConnectionClosedOK

from whale_order_tracker.core.enums import EventType
from whale_order_tracker.realtime.broadcast import BroadcastChannel, BroadcastEvent, encode_event
from whale_order_tracker.realtime.server import EventStreamServer


def test_publish_fans_out_to_every_subscriber() -> None:
    async def _run() -> tuple[int, list[BroadcastEvent], list[BroadcastEvent]]:
        channel = BroadcastChannel()
        first = channel.subscribe()
        second = channel.subscribe()
        delivered = channel.publish(EventType.NEW_ORDER, {"id": "abc"})
        return delivered, [first.get_nowait()], [second.get_nowait()]

    delivered, first, second = asyncio.run(_run())

    assert delivered == 2
    assert first[0].type == EventType.NEW_ORDER
    assert first[0].payload == {"id": "abc"}
    assert second[0] is first[0]


def test_full_queue_drops_oldest_event() -> None:
    async def _run() -> list[Any]:
        channel = BroadcastChannel(max_queue_size=2)
        queue = channel.subscribe()
        for index in range(3):
            channel.publish(EventType.LIQUIDITY_UPDATE, {"seq": index})
        return [queue.get_nowait().payload["seq"] for _ in range(queue.qsize())]

    assert asyncio.run(_run()) == [1, 2]


def test_unsubscribed_queue_stops_receiving() -> None:
    async def _run() -> tuple[int, bool]:
        channel = BroadcastChannel()
        queue = channel.subscribe()
        channel.unsubscribe(queue)
        delivered = channel.publish(EventType.ORDER_FILLED, {"id": "x"})
        return delivered, queue.empty()

    assert asyncio.run(_run()) == (0, True)


def test_encode_event_is_compact_json() -> None:
    event = BroadcastEvent(EventType.ORDER_DELETED, {"id": "abc"})

    decoded = json.loads(encode_event(event))

    assert decoded["type"] == "order_deleted"
    assert decoded["data"] == {"id": "abc"}
    assert decoded["timestamp"].endswith("+00:00")


class _FakeConnection:
    def __init__(self, close_after: int) -> None:
        self.sent: list[str] = []
        self._close_after = close_after

    async def send(self, message: str) -> None:
        if len(self.sent) >= self._close_after:
            raise ConnectionClosedOK(None, None)
        self.sent.append(message)


def test_stream_sends_initial_data_then_published_events() -> None:
    channel = BroadcastChannel()
    server = EventStreamServer(channel, initial_state=lambda: {"orders": [], "liquidity": None})
    connection = _FakeConnection(close_after=2)

    async def _run() -> None:
        handler = asyncio.create_task(server.handle(connection))  # type: ignore[arg-type]
        for _ in range(5):
            await asyncio.sleep(0)
        channel.publish(EventType.NEW_ORDER, {"id": "abc"})
        channel.publish(EventType.ORDER_FILLED, {"id": "abc"})
        await asyncio.wait_for(handler, timeout=1)

    asyncio.run(_run())

    messages = [json.loads(message) for message in connection.sent]
    assert [message["type"] for message in messages] == ["initial_data", "new_order"]
    assert messages[0]["data"] == {"orders": [], "liquidity": None}
    assert channel.subscriber_count == 0
