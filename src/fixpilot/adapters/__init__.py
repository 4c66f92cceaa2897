"""Concrete implementations of provider interfaces."""

from .llm import AnthropicAssistant, OfflineAssistant, create_assistant
from .patch import LocalPatchWriter, RemotePatchWriter
from .storage import JsonStateStore, MemoryStateStore
from .transport import ASGIConnection, WebSocketTransport

__all__ = [
    "ASGIConnection",
    "AnthropicAssistant",
    "JsonStateStore",
    "LocalPatchWriter",
    "MemoryStateStore",
    "OfflineAssistant",
    "RemotePatchWriter",
    "WebSocketTransport",
    "create_assistant",
]
