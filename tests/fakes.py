"""Test doubles shared across the unit tests."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from fixpilot.utils.async_helpers import TransportError

BROKEN_JS = "const a = {\n  b: 1,\n\nconsole.log(a);\n"
FIXED_JS = "const a = {\n  b: 1,\n};\nconsole.log(a);\n"


class FakeConnection:
    """In-memory ``Connection``: frames pushed by the test, frames sent recorded."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False
        self.fail_send = False

    async def send(self, text: str) -> None:
        if self.closed or self.fail_send:
            raise TransportError("connection closed")
        self.sent.append(text)

    async def recv(self) -> str:
        if self.closed:
            raise TransportError("connection closed")
        text = await self.incoming.get()
        if text is None:
            self.closed = True
            raise TransportError("connection closed by peer")
        return text

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(None)

    def push(self, text: str) -> None:
        self.incoming.put_nowait(text)

    def drop(self) -> None:
        """Simulate the peer going away."""
        self.incoming.put_nowait(None)


class FakeTransport:
    """``Transport`` handing out prepared connections, failing when none are left."""

    def __init__(self, connections: list[FakeConnection] | None = None) -> None:
        self.connections = list(connections or [])
        self.attempts = 0

    async def connect(self, url: str) -> FakeConnection:
        self.attempts += 1
        if not self.connections:
            raise TransportError(f"refused: {url}")
        return self.connections.pop(0)


def make_clock(start: datetime | None = None) -> Callable[[], datetime]:
    """Deterministic clock advancing one millisecond per call."""
    base = start or datetime(2024, 1, 1, tzinfo=UTC)
    counter = itertools.count()
    return lambda: base + timedelta(milliseconds=next(counter))
