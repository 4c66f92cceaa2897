"""Abstract interface for the persisted state snapshot."""

from typing import Any, Protocol


class StateStore(Protocol):
    """Durable key-value snapshot of the dashboard state.

    The snapshot is a plain JSON-compatible mapping with ``errors``, ``logs``
    and ``stats`` keys. It provides session continuity only; it is not a
    source of truth across machines.
    """

    def load(self) -> dict[str, Any] | None:
        """Return the last saved snapshot, or None if there is none."""
        ...

    def save(self, state: dict[str, Any]) -> None:
        """Replace the saved snapshot."""
        ...

    def clear(self) -> None:
        """Forget the saved snapshot."""
        ...
