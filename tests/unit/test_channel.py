"""Tests for the daemon <-> dashboard event channel."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from fixpilot.config.schema import RetryConfig
from fixpilot.core.channel import ChannelClient, ChannelHub
from fixpilot.models.events import (
    ApplyPatchMessage,
    ConnectionState,
    LogMessage,
    encode,
    log_message,
    patch_result_message,
    status_message,
)
from fixpilot.models.log import LogLevel, LogSource
from fixpilot.utils.async_helpers import ChannelDisconnected

from ..fakes import FIXED_JS, FakeConnection, FakeTransport

FAST_RETRY = RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


class TestChannelHub:
    async def test_greets_with_status_first(self) -> None:
        hub = ChannelHub(greeting="Watching /tmp/project")
        connection = FakeConnection()
        task = asyncio.create_task(hub.serve(connection))

        await eventually(lambda: bool(connection.sent))
        assert json.loads(connection.sent[0]) == {
            "event": "status",
            "data": {"status": "CONNECTED", "message": "Watching /tmp/project"},
        }
        assert hub.connection_count == 1

        connection.drop()
        await task
        assert hub.connection_count == 0

    async def test_invalid_frames_never_reach_handler(self) -> None:
        handler = AsyncMock(return_value=None)
        hub = ChannelHub(handler)
        connection = FakeConnection()
        task = asyncio.create_task(hub.serve(connection))

        for frame in ("not json", '{"event": "apply_patch"}', '{"event": "rm_rf", "data": {}}'):
            connection.push(frame)
        await eventually(lambda: len(connection.sent) == 4)

        handler.assert_not_awaited()
        for frame in connection.sent[1:]:
            assert json.loads(frame)["data"]["message"] == "Rejected invalid event from dashboard"

        connection.drop()
        await task

    async def test_reply_goes_to_requester_only(self) -> None:
        handler = AsyncMock(return_value=patch_result_message("src/app.js", True))
        hub = ChannelHub(handler)
        requester, bystander = FakeConnection(), FakeConnection()
        tasks = [asyncio.create_task(hub.serve(c)) for c in (requester, bystander)]
        await eventually(lambda: bool(requester.sent) and bool(bystander.sent))

        requester.push(encode(ApplyPatchMessage.model_validate(
            {"event": "apply_patch", "data": {"file": "src/app.js", "patch": FIXED_JS}}
        )))
        await eventually(lambda: len(requester.sent) == 2)

        message = handler.await_args.args[0]
        assert message.data.file == "src/app.js"
        assert message.data.patch == FIXED_JS
        assert json.loads(requester.sent[1])["event"] == "patch_result"
        assert len(bystander.sent) == 1

        requester.drop()
        bystander.drop()
        await asyncio.gather(*tasks)

    async def test_broadcast_drops_failed_connections(self) -> None:
        hub = ChannelHub()
        healthy, broken = FakeConnection(), FakeConnection()
        tasks = [asyncio.create_task(hub.serve(c)) for c in (healthy, broken)]
        await eventually(lambda: hub.connection_count == 2 and bool(broken.sent))
        broken.fail_send = True

        delivered = await hub.broadcast(log_message(LogLevel.INFO, "File detected: app.js", LogSource.WATCHER))

        assert delivered == 1
        assert hub.connection_count == 1
        assert json.loads(healthy.sent[-1])["data"]["message"] == "File detected: app.js"

        await hub.close()
        await asyncio.gather(*tasks)

    async def test_broadcast_without_clients(self) -> None:
        assert await ChannelHub().broadcast(status_message("hi")) == 0


class TestChannelClient:
    async def test_connects_on_status_handshake(self) -> None:
        connection = FakeConnection()
        states: list[ConnectionState] = []

        async def on_state(state: ConnectionState) -> None:
            states.append(state)

        client = ChannelClient(
            "ws://daemon/ws", FakeTransport([connection]), on_state_change=on_state, retry=FAST_RETRY
        )
        task = asyncio.create_task(client.run())
        await eventually(lambda: client.state is ConnectionState.CONNECTING)
        connection.push(encode(status_message("Daemon active and watching")))
        await eventually(lambda: client.state is ConnectionState.CONNECTED)

        await client.stop()
        await task

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]

    async def test_forwards_valid_events_only(self) -> None:
        connection = FakeConnection()
        on_event = AsyncMock()
        client = ChannelClient("ws://daemon/ws", FakeTransport([connection]), on_event=on_event, retry=FAST_RETRY)
        task = asyncio.create_task(client.run())

        connection.push("garbage")
        connection.push('{"event": "log", "data": {"level": "LOUD"}}')
        connection.push(encode(log_message(LogLevel.INFO, "Syntax OK: app.js", LogSource.WATCHER)))
        await eventually(lambda: on_event.await_count == 1)

        message = on_event.await_args.args[0]
        assert isinstance(message, LogMessage)
        assert message.data.message == "Syntax OK: app.js"

        await client.stop()
        await task

    async def test_handler_errors_do_not_break_the_pump(self) -> None:
        connection = FakeConnection()
        on_event = AsyncMock(side_effect=[RuntimeError("ui bug"), None])
        client = ChannelClient("ws://daemon/ws", FakeTransport([connection]), on_event=on_event, retry=FAST_RETRY)
        task = asyncio.create_task(client.run())

        connection.push(encode(log_message(LogLevel.INFO, "one", LogSource.DAEMON)))
        connection.push(encode(log_message(LogLevel.INFO, "two", LogSource.DAEMON)))
        await eventually(lambda: on_event.await_count == 2)

        await client.stop()
        await task

    async def test_apply_patch_round_trip(self) -> None:
        connection = FakeConnection()
        client = ChannelClient("ws://daemon/ws", FakeTransport([connection]), retry=FAST_RETRY)
        task = asyncio.create_task(client.run())
        connection.push(encode(status_message("hi")))
        await eventually(lambda: client.state is ConnectionState.CONNECTED)

        send = asyncio.create_task(client.send_apply_patch("src/app.js", FIXED_JS))
        await eventually(lambda: len(connection.sent) == 1)
        assert json.loads(connection.sent[0]) == {
            "event": "apply_patch",
            "data": {"file": "src/app.js", "patch": FIXED_JS},
        }
        connection.push(encode(patch_result_message("src/app.js", True)))

        result = await send
        assert result.ok
        assert result.file == "src/app.js"

        await client.stop()
        await task

    async def test_apply_while_disconnected(self) -> None:
        client = ChannelClient("ws://daemon/ws", FakeTransport(), retry=FAST_RETRY)
        with pytest.raises(ChannelDisconnected):
            await client.send_apply_patch("src/app.js", FIXED_JS)

    async def test_drop_before_ack_raises_disconnected(self) -> None:
        connection = FakeConnection()
        client = ChannelClient("ws://daemon/ws", FakeTransport([connection]), retry=FAST_RETRY)
        task = asyncio.create_task(client.run())
        connection.push(encode(status_message("hi")))
        await eventually(lambda: client.state is ConnectionState.CONNECTED)

        send = asyncio.create_task(client.send_apply_patch("src/app.js", FIXED_JS))
        await eventually(lambda: len(connection.sent) == 1)
        connection.drop()

        with pytest.raises(ChannelDisconnected):
            await send
        await task
        assert client.state is ConnectionState.DISCONNECTED

    async def test_missing_ack_times_out(self) -> None:
        connection = FakeConnection()
        client = ChannelClient(
            "ws://daemon/ws", FakeTransport([connection]), retry=FAST_RETRY, apply_timeout=0.01
        )
        task = asyncio.create_task(client.run())
        connection.push(encode(status_message("hi")))
        await eventually(lambda: client.state is ConnectionState.CONNECTED)

        with pytest.raises(ChannelDisconnected, match="No acknowledgement"):
            await client.send_apply_patch("src/app.js", FIXED_JS)

        await client.stop()
        await task

    async def test_reconnects_after_drop(self) -> None:
        first, second = FakeConnection(), FakeConnection()
        transport = FakeTransport([first, second])
        client = ChannelClient("ws://daemon/ws", transport, retry=FAST_RETRY)
        task = asyncio.create_task(client.run())

        first.push(encode(status_message("hi")))
        await eventually(lambda: client.state is ConnectionState.CONNECTED)
        first.drop()
        await eventually(lambda: transport.attempts == 2)
        second.push(encode(status_message("hi again")))
        await eventually(lambda: client.state is ConnectionState.CONNECTED)

        await client.stop()
        await task

    async def test_gives_up_after_max_attempts(self) -> None:
        transport = FakeTransport()
        client = ChannelClient("ws://daemon/ws", transport, retry=FAST_RETRY)

        await asyncio.wait_for(client.run(), timeout=1.0)

        assert transport.attempts == 3
        assert client.state is ConnectionState.DISCONNECTED
