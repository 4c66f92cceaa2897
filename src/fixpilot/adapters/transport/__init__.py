"""Event channel transports."""

from .asgi import ASGIConnection
from .websocket import WebSocketConnection, WebSocketTransport

__all__ = ["ASGIConnection", "WebSocketConnection", "WebSocketTransport"]
