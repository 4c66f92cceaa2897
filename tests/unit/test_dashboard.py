"""Tests for the dashboard backend, including a full daemon round trip."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from fixpilot.adapters.patch import RemotePatchWriter
from fixpilot.config.schema import RetryConfig
from fixpilot.core.channel import ChannelClient, ChannelHub
from fixpilot.core.daemon import Daemon
from fixpilot.core.dashboard import ALERT_CHANNEL, MANUAL_FILE, Dashboard
from fixpilot.core.gateway import AssistanceGateway
from fixpilot.core.lifecycle import ErrorLifecycleManager
from fixpilot.core.patch_applier import PatchApplier
from fixpilot.core.simulator import SyntheticErrorSource
from fixpilot.models.error import (
    DetectionInput,
    Environment,
    ErrorRecord,
    ErrorSeverity,
    ErrorStatus,
)
from fixpilot.models.events import (
    ConnectionState,
    error_detected_message,
    log_message,
    status_message,
)
from fixpilot.models.log import LogLevel, LogSource
from fixpilot.utils.async_helpers import PatchTargetNotFoundError

from ..fakes import BROKEN_JS, FIXED_JS, FakeConnection, FakeTransport, make_clock

FAST_RETRY = RetryConfig(max_attempts=2, initial_delay=0.0, max_delay=0.0)


class PairedConnection(FakeConnection):
    """One end of an in-memory duplex pipe."""

    peer: PairedConnection

    async def send(self, text: str) -> None:
        await super().send(text)
        self.peer.push(text)

    async def close(self) -> None:
        if not self.closed:
            await super().close()
            self.peer.drop()


def pipe() -> tuple[PairedConnection, PairedConnection]:
    server, client = PairedConnection(), PairedConnection()
    server.peer, client.peer = client, server
    return server, client


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def messages(manager: ErrorLifecycleManager) -> list[str]:
    return [entry.message for entry in manager.logs]


@pytest.fixture
def provider() -> MagicMock:
    provider = MagicMock()
    provider.model_name = "test-model"
    provider.explain = AsyncMock(return_value="The object literal is never closed.")
    provider.generate_patch = AsyncMock(return_value=FIXED_JS)
    provider.simulate_error = AsyncMock(
        return_value=DetectionInput(
            message="ConnectionTimeoutError: Database pool connection limit reached",
            file="src/infrastructure/db.ts",
        )
    )
    return provider


@pytest.fixture
def lifecycle() -> ErrorLifecycleManager:
    return ErrorLifecycleManager(clock=make_clock())


@pytest.fixture
def dashboard(lifecycle: ErrorLifecycleManager, provider: MagicMock) -> Dashboard:
    return Dashboard(lifecycle, AssistanceGateway(lifecycle, provider))


def broken_record(environment: Environment = Environment.LOCAL) -> ErrorRecord:
    return ErrorRecord(
        id="err-daemon-1",
        timestamp=make_clock()(),
        message="SyntaxError: Unexpected end of input",
        severity=ErrorSeverity.HIGH,
        status=ErrorStatus.DETECTED,
        environment=environment,
        file="src/app.js",
        language="javascript",
        source_snippet=BROKEN_JS,
    )


class TestChannelEvents:
    async def test_status_logs_connection(self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager) -> None:
        await dashboard.handle_event(status_message("Daemon active and watching"))
        assert messages(lifecycle) == ["Connected to Local Daemon"]

    async def test_log_is_forwarded(self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager) -> None:
        await dashboard.handle_event(log_message(LogLevel.INFO, "Syntax OK: app.js", LogSource.WATCHER))
        entry = lifecycle.logs[0]
        assert entry.message == "Syntax OK: app.js"
        assert entry.source is LogSource.WATCHER

    async def test_error_detected_creates_local_record(
        self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager
    ) -> None:
        await dashboard.handle_event(error_detected_message(broken_record()))

        [record] = lifecycle.errors
        assert record.id != "err-daemon-1"
        assert record.file == "src/app.js"
        assert record.source_snippet == BROKEN_JS
        assert not any(ALERT_CHANNEL in m for m in messages(lifecycle))

    async def test_production_detection_alerts(
        self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager
    ) -> None:
        await dashboard.handle_event(error_detected_message(broken_record(Environment.PRODUCTION)))
        assert messages(lifecycle)[0].startswith(f"Alert sent to {ALERT_CHANNEL}: Runtime Error")

    async def test_state_changes_drive_synthetic_source(
        self, lifecycle: ErrorLifecycleManager, provider: MagicMock
    ) -> None:
        source = SyntheticErrorSource(provider)
        dashboard = Dashboard(lifecycle, AssistanceGateway(lifecycle, provider), source=source)

        await dashboard.handle_state_change(ConnectionState.CONNECTED)
        assert source.paused

        await dashboard.handle_state_change(ConnectionState.DISCONNECTED)
        assert not source.paused
        assert messages(lifecycle) == ["Lost connection to Daemon"]

    async def test_no_lost_connection_before_first_connect(
        self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager
    ) -> None:
        await dashboard.handle_state_change(ConnectionState.DISCONNECTED)
        assert lifecycle.logs == []


class TestCommands:
    async def test_simulate_local(
        self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager, provider: MagicMock
    ) -> None:
        record = await dashboard.simulate()

        assert record.environment is Environment.LOCAL
        provider.simulate_error.assert_awaited_once_with(Environment.LOCAL)
        assert "Simulating LOCAL crash event..." in messages(lifecycle)

    async def test_simulate_production_alerts(
        self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager
    ) -> None:
        dashboard.set_environment(Environment.PRODUCTION)

        record = await dashboard.simulate()

        assert record.severity is ErrorSeverity.CRITICAL
        assert lifecycle.stats.health_score == 80
        assert messages(lifecycle)[0].startswith(f"Alert sent to {ALERT_CHANNEL}: CRITICAL:")

    async def test_manual_report(self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager) -> None:
        record = await dashboard.report_manual("TypeError: x is undefined", "x.map(f)")

        assert record.file == MANUAL_FILE
        assert record.severity is ErrorSeverity.MEDIUM
        assert record.source_snippet == "x.map(f)"
        assert messages(lifecycle)[0] == "Manual error reported: TypeError: x is undefined"

    @pytest.mark.parametrize("message,code", [("", "x"), ("boom", "  ")])
    async def test_manual_report_requires_input(
        self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager, message: str, code: str
    ) -> None:
        with pytest.raises(ValueError):
            await dashboard.report_manual(message, code)
        assert lifecycle.errors == []

    async def test_report(self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager) -> None:
        record = await dashboard.report_manual("boom", "x")

        await dashboard.report(record.id)

        assert messages(lifecycle)[:2] == [
            f"Alert sent to {ALERT_CHANNEL}: Report filed for {MANUAL_FILE}",
            f"Issue #{record.id} reported to engineering team with full diagnostic context.",
        ]

    async def test_reset(self, dashboard: Dashboard, lifecycle: ErrorLifecycleManager) -> None:
        await dashboard.simulate()
        await dashboard.reset()
        assert lifecycle.errors == []

    def test_connection_state_without_client(self, dashboard: Dashboard) -> None:
        assert dashboard.connection_state is ConnectionState.DISCONNECTED


class TestDaemonRoundTrip:
    """Dashboard and daemon wired through an in-memory channel."""

    @pytest.fixture
    async def wired(
        self, project: Path, provider: MagicMock
    ) -> AsyncIterator[tuple[Dashboard, ChannelHub, PairedConnection]]:
        hub = ChannelHub()
        Daemon(hub, MagicMock(), PatchApplier(project))
        server_end, client_end = pipe()
        serve = asyncio.create_task(hub.serve(server_end))

        client = ChannelClient("ws://daemon/ws", FakeTransport([client_end]), retry=FAST_RETRY)
        lifecycle = ErrorLifecycleManager(writer=RemotePatchWriter(client), clock=make_clock())
        dashboard = Dashboard(lifecycle, AssistanceGateway(lifecycle, provider), client=client)
        await dashboard.start()
        await eventually(lambda: dashboard.connection_state is ConnectionState.CONNECTED)

        yield dashboard, hub, server_end

        await dashboard.stop()
        await serve

    async def test_detect_analyze_patch_apply(
        self, wired: tuple[Dashboard, ChannelHub, PairedConnection], project: Path
    ) -> None:
        dashboard, hub, _ = wired
        lifecycle = dashboard.manager
        assert "Connected to Local Daemon" in messages(lifecycle)

        await hub.broadcast(error_detected_message(broken_record()))
        await eventually(lambda: len(lifecycle.errors) == 1)
        record_id = lifecycle.errors[0].id

        await dashboard.analyze(record_id)
        await dashboard.generate_patch(record_id)
        record = await dashboard.apply(record_id)

        assert record.status is ErrorStatus.FIXED
        assert (project / "src" / "app.js").read_text() == FIXED_JS
        await eventually(lambda: "File updated: src/app.js" in messages(lifecycle))

        record = await dashboard.rollback(record_id)
        assert record.status is ErrorStatus.PATCH_PROPOSED
        assert lifecycle.logs[0].message.endswith("File content unchanged.")

    async def test_daemon_rejection_keeps_patch_proposed(
        self, wired: tuple[Dashboard, ChannelHub, PairedConnection]
    ) -> None:
        dashboard, hub, _ = wired
        lifecycle = dashboard.manager
        record = await lifecycle.detect(DetectionInput("boom", "src/missing.js"))
        await lifecycle.begin_analysis(record.id)
        await lifecycle.complete_analysis(record.id, "explained")
        await lifecycle.propose_patch(record.id, FIXED_JS)

        with pytest.raises(PatchTargetNotFoundError):
            await dashboard.apply(record.id)

        assert lifecycle.get(record.id).status is ErrorStatus.PATCH_PROPOSED
        assert any(m.startswith("[FAILED]") for m in messages(lifecycle))

    async def test_daemon_going_away(
        self, wired: tuple[Dashboard, ChannelHub, PairedConnection]
    ) -> None:
        dashboard, _, server_end = wired
        lifecycle = dashboard.manager

        await server_end.close()

        await eventually(lambda: "Lost connection to Daemon" in messages(lifecycle))
        await eventually(lambda: any("is unreachable" in m for m in messages(lifecycle)))
        assert dashboard.connection_state is ConnectionState.DISCONNECTED
