"""WebSocket transport for the dashboard side of the channel."""

from __future__ import annotations

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from fixpilot.utils.async_helpers import TransportError


class WebSocketConnection:
    """A ``websockets`` client connection behind the ``Connection`` protocol."""

    def __init__(self, websocket: ClientConnection) -> None:
        self._websocket = websocket

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send(text)
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e

    async def recv(self) -> str:
        try:
            frame = await self._websocket.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e
        if isinstance(frame, bytes):
            return frame.decode("utf-8", errors="replace")
        return frame

    async def close(self) -> None:
        await self._websocket.close()


class WebSocketTransport:
    """Open channel connections with the ``websockets`` client.

    Example:
        transport = WebSocketTransport(open_timeout=5)
        connection = await transport.connect("ws://127.0.0.1:4000/ws")
    """

    def __init__(self, open_timeout: float = 10.0) -> None:
        self._open_timeout = open_timeout

    async def connect(self, url: str) -> WebSocketConnection:
        try:
            websocket = await connect(url, open_timeout=self._open_timeout)
        except (OSError, TimeoutError, WebSocketException) as e:
            raise TransportError(f"Could not connect to {url}: {e}") from e
        return WebSocketConnection(websocket)
