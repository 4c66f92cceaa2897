"""Event channel between the daemon and its dashboards.

The daemon side (:class:`ChannelHub`) accepts any number of dashboard
connections, greets each one with a ``status`` handshake and broadcasts
``log`` / ``error_detected`` events to all of them. The dashboard side
(:class:`ChannelClient`) keeps one connection alive with bounded, backed-off
reconnects and sends ``apply_patch`` commands.

Delivery is at most once per live connection. Nothing is queued while the
channel is down: a command sent then fails with ``ChannelDisconnected`` and
events emitted meanwhile are simply lost.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from fixpilot.config.schema import RetryConfig
from fixpilot.interfaces.transport import Connection, Transport
from fixpilot.models.events import (
    ClientMessage,
    ConnectionState,
    PatchResultMessage,
    PatchResultPayload,
    ServerMessage,
    StatusMessage,
    apply_patch_message,
    decode_client_message,
    decode_server_message,
    encode,
    log_message,
    status_message,
)
from fixpilot.models.log import LogLevel, LogSource
from fixpilot.utils.async_helpers import ChannelDisconnected, ChannelProtocolError, TransportError
from fixpilot.utils.async_helpers import TimeoutError as AckTimeoutError
from fixpilot.utils.async_helpers import create_retry, with_timeout

log = structlog.get_logger()

ClientHandler = Callable[[ClientMessage], Awaitable[ServerMessage | None]]
EventHandler = Callable[[ServerMessage], Awaitable[None]]
StateHandler = Callable[[ConnectionState], Awaitable[None]]


class ChannelHub:
    """Daemon side of the channel.

    ``handler`` receives every validated client event; whatever it returns
    is sent back on the same connection only (e.g. ``patch_result``).
    """

    DEFAULT_GREETING = "Daemon active and watching"

    def __init__(
        self,
        handler: ClientHandler | None = None,
        greeting: str = DEFAULT_GREETING,
    ) -> None:
        self._handler = handler
        self._greeting = greeting
        self._connections: set[Connection] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def set_handler(self, handler: ClientHandler) -> None:
        self._handler = handler

    async def serve(self, connection: Connection) -> None:
        """Serve one dashboard until it disconnects."""
        self._connections.add(connection)
        log.info("client_connected", clients=len(self._connections))
        try:
            await connection.send(encode(status_message(self._greeting)))
            while True:
                text = await connection.recv()
                await self._dispatch(connection, text)
        except TransportError as e:
            log.debug("client_connection_closed", error=str(e))
        finally:
            self._connections.discard(connection)
            await connection.close()
            log.info("client_disconnected", clients=len(self._connections))

    async def broadcast(self, message: ServerMessage) -> int:
        """Send ``message`` to every live connection.

        A connection that fails to receive is dropped; the others still get
        the event.

        Returns:
            Number of connections the event was delivered to
        """
        text = encode(message)
        delivered = 0
        for connection in list(self._connections):
            try:
                await connection.send(text)
            except TransportError as e:
                log.warning("broadcast_send_failed", error=str(e))
                self._connections.discard(connection)
                await connection.close()
            else:
                delivered += 1
        return delivered

    async def close(self) -> None:
        """Close every connection."""
        for connection in list(self._connections):
            await connection.close()
        self._connections.clear()

    async def _dispatch(self, connection: Connection, text: str) -> None:
        try:
            message = decode_client_message(text)
        except ChannelProtocolError as e:
            log.warning("invalid_client_event", error=str(e))
            await connection.send(
                encode(log_message(LogLevel.WARN, "Rejected invalid event from dashboard", LogSource.DAEMON))
            )
            return

        if self._handler is None:
            log.debug("client_event_ignored", event=message.event)
            return

        reply = await self._handler(message)
        if reply is not None:
            await connection.send(encode(reply))


class ChannelClient:
    """Dashboard side of the channel.

    Owns the session's :class:`ConnectionState`. ``run`` keeps reconnecting
    (``retry.max_attempts`` tries per outage, exponential backoff) until
    :meth:`stop` is called or an outage outlasts the retries.

    Example:
        client = ChannelClient(url, WebSocketTransport(), on_event=handle)
        task = asyncio.create_task(client.run())
        result = await client.send_apply_patch("src/app.js", fixed)
    """

    def __init__(
        self,
        url: str,
        transport: Transport,
        on_event: EventHandler | None = None,
        on_state_change: StateHandler | None = None,
        retry: RetryConfig | None = None,
        apply_timeout: float = 15.0,
    ) -> None:
        self._url = url
        self._transport = transport
        self._on_event = on_event
        self._on_state_change = on_state_change
        self._retry = retry or RetryConfig()
        self._apply_timeout = apply_timeout

        self._state = ConnectionState.DISCONNECTED
        self._connection: Connection | None = None
        self._pending: dict[str, list[asyncio.Future[PatchResultPayload]]] = {}
        self._stopping = False

    def set_handlers(
        self,
        on_event: EventHandler,
        on_state_change: StateHandler | None = None,
    ) -> None:
        """Attach the event handlers after construction."""
        self._on_event = on_event
        self._on_state_change = on_state_change

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    async def run(self) -> None:
        """Connect and pump events until stopped or retries run out."""
        self._stopping = False
        while not self._stopping:
            try:
                connection = await self._connect_with_retry()
            except TransportError as e:
                log.error("channel_unreachable", url=self._url, attempts=self._retry.max_attempts, error=str(e))
                await self._set_state(ConnectionState.DISCONNECTED)
                return

            if self._stopping:
                await connection.close()
                break

            self._connection = connection
            try:
                await self._pump(connection)
            except TransportError as e:
                log.warning("channel_lost", url=self._url, error=str(e))
            finally:
                self._connection = None
                await connection.close()
                self._fail_pending("Connection to daemon lost before the patch was acknowledged")
                await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._stopping = True
        if self._connection is not None:
            await self._connection.close()

    async def send_apply_patch(self, file: str, patch: str) -> PatchResultPayload:
        """Ask the daemon to write ``patch`` to ``file`` and wait for the ack.

        Raises:
            ChannelDisconnected: If not connected, if the connection drops
                before the acknowledgement, or if none arrives in time
        """
        connection = self._connection
        if self._state is not ConnectionState.CONNECTED or connection is None:
            raise ChannelDisconnected(f"Daemon is not connected; patch for {file} was not sent")

        future: asyncio.Future[PatchResultPayload] = asyncio.get_running_loop().create_future()
        waiters = self._pending.setdefault(file, [])
        waiters.append(future)
        try:
            try:
                await connection.send(encode(apply_patch_message(file, patch)))
            except TransportError as e:
                raise ChannelDisconnected(f"Could not send patch for {file}: {e}") from e

            log.info("apply_patch_sent", file=file, bytes=len(patch))
            try:
                return await with_timeout(future, self._apply_timeout)
            except AckTimeoutError as e:
                raise ChannelDisconnected(
                    f"No acknowledgement for {file} within {self._apply_timeout}s"
                ) from e
        finally:
            if future in waiters:
                waiters.remove(future)
            if not waiters and self._pending.get(file) is waiters:
                self._pending.pop(file, None)

    async def _connect_with_retry(self) -> Connection:
        @create_retry(
            max_attempts=self._retry.max_attempts,
            min_wait=self._retry.initial_delay,
            max_wait=self._retry.max_delay,
        )
        async def attempt() -> Connection:
            await self._set_state(ConnectionState.CONNECTING)
            return await self._transport.connect(self._url)

        return await attempt()

    async def _pump(self, connection: Connection) -> None:
        while True:
            text = await connection.recv()
            try:
                message = decode_server_message(text)
            except ChannelProtocolError as e:
                log.warning("invalid_server_event", error=str(e))
                continue

            if isinstance(message, StatusMessage):
                log.info("channel_handshake", message=message.data.message)
                await self._set_state(ConnectionState.CONNECTED)
            if isinstance(message, PatchResultMessage):
                self._resolve_pending(message.data)
                continue

            if self._on_event is None:
                continue
            try:
                await self._on_event(message)
            except Exception:
                log.exception("event_handler_failed", event=message.event)

    def _resolve_pending(self, result: PatchResultPayload) -> None:
        waiters = self._pending.get(result.file)
        if not waiters:
            log.debug("unexpected_patch_result", file=result.file)
            return
        future = waiters.pop(0)
        if not future.done():
            future.set_result(result)

    def _fail_pending(self, reason: str) -> None:
        for file, waiters in self._pending.items():
            for future in waiters:
                if not future.done():
                    future.set_exception(ChannelDisconnected(f"{reason}: {file}"))
        self._pending.clear()

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        log.info("connection_state_changed", previous=previous.value, current=state.value)
        if self._on_state_change is not None:
            await self._on_state_change(state)
