"""Abstract interface for producers of detected errors."""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.events import ErrorDetectedMessage, LogMessage


class ErrorSource(Protocol):
    """Something that emits ``log`` and ``error_detected`` events.

    Both the real file watcher and the synthetic demo generator implement
    this, so consumers (the daemon hub, the dashboard) never care which one
    they are wired to and tests can supply deterministic sequences.
    """

    def events(self) -> AsyncIterator[LogMessage | ErrorDetectedMessage]:
        """
        Stream events until the source is stopped.

        Returns:
            Async iterator of channel events
        """
        ...

    def stop(self) -> None:
        """Ask the stream to finish after the current event."""
        ...
