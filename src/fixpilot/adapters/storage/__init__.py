"""State snapshot stores."""

from .json_store import JsonStateStore
from .memory import MemoryStateStore

__all__ = ["JsonStateStore", "MemoryStateStore"]
