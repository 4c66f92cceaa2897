"""Abstract interface for the event channel transport."""

from typing import Protocol


class Connection(Protocol):
    """One live, duplex text-frame connection.

    ``recv`` and ``send`` raise ``TransportError`` once the peer is gone.
    """

    async def send(self, text: str) -> None:
        """Send one text frame."""
        ...

    async def recv(self) -> str:
        """Wait for the next text frame."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class Transport(Protocol):
    """Client-side factory for connections to the daemon."""

    async def connect(self, url: str) -> Connection:
        """
        Open a connection to ``url``.

        Raises:
            TransportError: If the daemon cannot be reached
        """
        ...
