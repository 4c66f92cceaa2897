"""Protocol definitions for pluggable adapters."""

from .llm import AssistantProvider
from .patch import PatchWriter
from .source import ErrorSource
from .storage import StateStore
from .transport import Connection, Transport
from .verifier import SyntaxChecker

__all__ = [
    "AssistantProvider",
    "Connection",
    "ErrorSource",
    "PatchWriter",
    "StateStore",
    "SyntaxChecker",
    "Transport",
]
