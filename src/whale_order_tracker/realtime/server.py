from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from whale_order_tracker.core.enums import EventType
from whale_order_tracker.realtime.broadcast import BroadcastChannel, BroadcastEvent, encode_event

logger = logging.getLogger(__name__)


class EventStreamServer:
    """Serves the broadcast channel to websocket clients as JSON text frames.

    A new client first receives an ``initial_data`` event built by
    ``initial_state`` and then every event published afterwards.
    """

    def __init__(
        self,
        channel: BroadcastChannel,
        *,
        initial_state: Callable[[], dict[str, Any]],
        host: str = "127.0.0.1",
        port: int = 8765,
    ) -> None:
        self._channel = channel
        self._initial_state = initial_state
        self._host = host
        self._port = port
        self._server: Server | None = None

    async def handle(self, connection: ServerConnection) -> None:
        queue = self._channel.subscribe()
        logger.info("Event stream client connected", extra={"subscribers": self._channel.subscriber_count})
        try:
            await connection.send(encode_event(BroadcastEvent(EventType.INITIAL_DATA, self._initial_state())))
            while True:
                event = await queue.get()
                await connection.send(encode_event(event))
        except ConnectionClosed:
            logger.debug("Event stream client went away")
        finally:
            self._channel.unsubscribe(queue)
            logger.info("Event stream client disconnected", extra={"subscribers": self._channel.subscriber_count})

    async def start(self) -> None:
        self._server = await serve(self.handle, self._host, self._port)
        logger.info("Event stream listening", extra={"host": self._host, "port": self._port})

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
