"""Server-side connection wrapping a FastAPI/Starlette WebSocket."""

from __future__ import annotations

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from fixpilot.utils.async_helpers import TransportError


class ASGIConnection:
    """An accepted ASGI WebSocket behind the ``Connection`` protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError) as e:
            raise TransportError(f"Dashboard went away: {e}") from e

    async def recv(self) -> str:
        """Return the next frame as text; binary frames are decoded as UTF-8."""
        try:
            message = await self._websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            raise TransportError(f"Dashboard went away: {e}") from e

        if message["type"] == "websocket.disconnect":
            raise TransportError(f"Dashboard went away: close code {message.get('code')}")
        if message.get("text") is not None:
            return message["text"]
        # Undecodable bytes become an invalid frame, not a dropped connection
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")

    async def close(self) -> None:
        if self._websocket.application_state is not WebSocketState.CONNECTED:
            return
        if self._websocket.client_state is not WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.close()
        except RuntimeError:
            # Peer closed between the state check and our close frame
            return
