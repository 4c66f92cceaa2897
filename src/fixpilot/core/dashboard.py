"""Dashboard backend: wires the lifecycle manager to its inputs.

The dashboard owns no state of its own. It translates channel events and
synthetic errors into lifecycle operations and exposes the user commands
(simulate, report, analyze, patch, apply, rollback, reset) that a UI calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

import structlog

from fixpilot.models.error import DetectionInput, Environment, ErrorRecord, ErrorSeverity
from fixpilot.models.events import (
    ConnectionState,
    ErrorDetectedMessage,
    LogMessage,
    ServerMessage,
    StatusMessage,
)
from fixpilot.models.log import LogLevel, LogSource

if TYPE_CHECKING:
    from fixpilot.core.channel import ChannelClient
    from fixpilot.core.gateway import AssistanceGateway
    from fixpilot.core.lifecycle import ErrorLifecycleManager
    from fixpilot.core.simulator import SyntheticErrorSource

log = structlog.get_logger()

ALERT_CHANNEL = "#engineering-alerts"
MANUAL_FILE = "manual-input.ts"


class Dashboard:
    """Commands and event routing for one dashboard session.

    Example:
        dashboard = Dashboard(manager, gateway, client=client)
        await dashboard.start()
        record = await dashboard.simulate()
        await dashboard.analyze(record.id)
    """

    DEFAULT_SHUTDOWN_TIMEOUT = 5.0

    def __init__(
        self,
        manager: ErrorLifecycleManager,
        gateway: AssistanceGateway,
        client: ChannelClient | None = None,
        source: SyntheticErrorSource | None = None,
        environment: Environment = Environment.LOCAL,
        monitoring: bool = False,
    ) -> None:
        """Initialize the dashboard.

        Args:
            manager: The authoritative lifecycle manager
            gateway: AI assistance gateway bound to the same manager
            client: Channel client to the daemon; handlers are attached here
            source: Synthetic error source, used only while disconnected
            environment: Environment tag for simulated and manual errors
            monitoring: Start the synthetic source with the dashboard
        """
        self._manager = manager
        self._gateway = gateway
        self._client = client
        self._source = source
        self._environment = environment
        self._monitoring = monitoring
        self._was_connected = False
        self._stopping = False
        self._tasks: set[asyncio.Task[None]] = set()

        if client is not None:
            client.set_handlers(self.handle_event, self.handle_state_change)
        if source is not None:
            source.environment = environment

    @property
    def manager(self) -> ErrorLifecycleManager:
        return self._manager

    @property
    def connection_state(self) -> ConnectionState:
        if self._client is None:
            return ConnectionState.DISCONNECTED
        return self._client.state

    @property
    def environment(self) -> Environment:
        return self._environment

    def set_environment(self, environment: Environment) -> None:
        self._environment = environment
        if self._source is not None:
            self._source.environment = environment

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the channel client and, if enabled, the synthetic source."""
        self._stopping = False
        if self._client is not None:
            self._spawn(self._run_client())
        if self._source is not None and self._monitoring:
            self._spawn(self._run_source())
        log.info(
            "dashboard_started",
            environment=self._environment.value,
            monitoring=self._monitoring,
            daemon=self._client.url if self._client else None,
        )

    async def stop(self) -> None:
        """Stop background tasks and close the channel."""
        self._stopping = True
        if self._source is not None:
            self._source.stop()
        if self._client is not None:
            await self._client.stop()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.wait(self._tasks, timeout=self.DEFAULT_SHUTDOWN_TIMEOUT)
        self._tasks.clear()
        log.info("dashboard_stopped")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_client(self) -> None:
        assert self._client is not None
        await self._client.run()
        if self._stopping:
            return
        await self._manager.log(
            f"Daemon at {self._client.url} is unreachable; live detection is off",
            LogLevel.WARN,
            LogSource.DAEMON,
        )

    async def _run_source(self) -> None:
        assert self._source is not None
        async for event in self._source.events():
            if self.connection_state is ConnectionState.CONNECTED:
                continue
            await self.handle_event(event)

    # =========================================================================
    # Channel events
    # =========================================================================

    async def handle_event(self, message: ServerMessage) -> None:
        """Translate one validated channel event into lifecycle calls."""
        if isinstance(message, StatusMessage):
            await self._manager.log("Connected to Local Daemon", LogLevel.INFO, LogSource.DAEMON)
        elif isinstance(message, LogMessage):
            await self._manager.log(message.data.message, message.data.level, message.data.source)
        elif isinstance(message, ErrorDetectedMessage):
            record = await self._manager.detect(message.data.to_detection())
            await self._alert_if_production(record, f"Runtime Error: {record.message}")

    async def handle_state_change(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._was_connected = True
            if self._source is not None:
                self._source.pause()
        elif state is ConnectionState.DISCONNECTED:
            if self._source is not None:
                self._source.resume()
            if self._was_connected:
                self._was_connected = False
                await self._manager.log("Lost connection to Daemon", LogLevel.ERROR, LogSource.DAEMON)

    # =========================================================================
    # Commands
    # =========================================================================

    async def simulate(self) -> ErrorRecord:
        """Create a demo error in the current environment."""
        await self._manager.log(
            f"Simulating {self._environment.value} crash event...", LogLevel.WARN, LogSource.DAEMON
        )
        record = await self._gateway.simulate(self._environment)
        await self._alert_if_production(
            record, f"CRITICAL: {record.message[:40]}... in {record.file}"
        )
        return record

    async def report_manual(
        self,
        message: str,
        source_code: str,
        language: str | None = None,
        file: str = MANUAL_FILE,
    ) -> ErrorRecord:
        """Record an error the user pasted in by hand.

        Raises:
            ValueError: If the message or the code is empty
        """
        if not message.strip() or not source_code.strip():
            raise ValueError("A manual report needs a message and the failing code")

        record = await self._manager.detect(
            DetectionInput(
                message=message,
                file=file,
                severity=ErrorSeverity.MEDIUM,
                environment=self._environment,
                language=language,
                source_snippet=source_code,
            )
        )
        await self._manager.log(
            f"Manual error reported: {message}", LogLevel.WARN, LogSource.DAEMON
        )
        await self._alert_if_production(record, f"Manual report: {record.message}")
        return record

    async def analyze(self, record_id: str) -> ErrorRecord:
        return await self._gateway.analyze(record_id)

    async def generate_patch(self, record_id: str) -> ErrorRecord:
        return await self._gateway.generate_patch(record_id)

    async def apply(self, record_id: str) -> ErrorRecord:
        return await self._manager.apply_fix(record_id)

    async def rollback(self, record_id: str) -> ErrorRecord:
        return await self._manager.rollback(record_id)

    async def fail(self, record_id: str, reason: str) -> ErrorRecord:
        return await self._manager.fail(record_id, reason)

    async def report(self, record_id: str) -> ErrorRecord:
        """File the error with the engineering team."""
        record = self._manager.get(record_id)
        await self._manager.log(
            f"Issue #{record.id} reported to engineering team with full diagnostic context.",
            LogLevel.INFO,
            LogSource.DAEMON,
        )
        await self.alert(f"Report filed for {record.file}")
        return record

    async def reset(self) -> None:
        await self._manager.reset()

    async def alert(self, message: str) -> None:
        """Send a team alert (recorded as a warning in the audit log)."""
        log.info("team_alert", channel=ALERT_CHANNEL, message=message)
        await self._manager.log(
            f"Alert sent to {ALERT_CHANNEL}: {message}", LogLevel.WARN, LogSource.DAEMON
        )

    async def _alert_if_production(self, record: ErrorRecord, message: str) -> None:
        if record.environment is Environment.PRODUCTION:
            await self.alert(message)
