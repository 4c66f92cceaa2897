"""In-memory snapshot store for tests and ``--no-persist`` runs."""

from __future__ import annotations

import copy
from typing import Any


class MemoryStateStore:
    """Keeps the snapshot in a dict. Nothing survives the process."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._state = copy.deepcopy(initial) if initial is not None else None
        self.saves = 0

    def load(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._state)

    def save(self, state: dict[str, Any]) -> None:
        self._state = copy.deepcopy(state)
        self.saves += 1

    def clear(self) -> None:
        self._state = None
