"""Streaming client endpoint over WebSocket.

Connected clients are counted in the gateway stats and announced on the
hub so other modules can talk to them. Incoming messages are published on
the hub as they arrive; ``broadcast`` pushes a JSON message to everyone.
"""

from __future__ import annotations

from typing import Any

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from gateway import events
from gateway.hub import Hub
from gateway.middleware.request_logger import resolve_source_address
from gateway.stats import GatewayStats

logger = structlog.get_logger()


class StreamRegistry:
    """Tracks live WebSocket clients on one path."""

    def __init__(self, hub: Hub, stats: GatewayStats, path: str = "/ws", trust_proxy: bool = False) -> None:
        self._hub = hub
        self._stats = stats
        self._path = path
        self._trust_proxy = trust_proxy
        self._clients: set[WebSocket] = set()

    @property
    def path(self) -> str:
        return self._path

    @property
    def clients(self) -> list[WebSocket]:
        return list(self._clients)

    async def handle(self, ws: WebSocket) -> None:
        """Serve one connection until the client goes away."""
        if ws.url.path != self._path:
            await ws.close(code=1008)
            return

        await ws.accept()
        self._clients.add(ws)
        self._stats.stream_connected()
        src = resolve_source_address(ws, self._trust_proxy)
        logger.info("ws_client_connected", source_address=src, clients=self._stats.active_stream_clients)
        self._hub.emit(events.WEBSOCKET_CONNECTION, ws)

        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                data = message.get("text")
                if data is None:
                    data = message.get("bytes")
                self._hub.emit(events.WEBSOCKET_MESSAGE, ws, data)
        except WebSocketDisconnect:
            pass  # Client disconnected normally
        finally:
            self._clients.discard(ws)
            self._stats.stream_disconnected()
            logger.info("ws_client_disconnected", source_address=src, clients=self._stats.active_stream_clients)

    async def broadcast(self, message: Any) -> int:
        """Send ``message`` as JSON to every connected client. Returns the delivery count."""
        delivered = 0
        for ws in list(self._clients):
            try:
                await ws.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("ws_broadcast_dropped", error=str(exc))
                self._clients.discard(ws)
        return delivered

    async def close_all(self, code: int = 1001) -> None:
        for ws in list(self._clients):
            if ws.application_state == WebSocketState.CONNECTED:
                try:
                    await ws.close(code=code)
                except RuntimeError:
                    pass
        self._clients.clear()
