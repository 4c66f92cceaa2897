"""Daemon orchestrator: watcher in, channel out, patches applied.

The daemon streams every event from its error source to all connected
dashboards and applies ``apply_patch`` commands with the Patch Applier,
answering each one with a ``patch_result``.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from fixpilot.models.events import (
    ClientMessage,
    PatchResultMessage,
    ServerMessage,
    log_message,
    patch_result_message,
)
from fixpilot.models.log import LogLevel, LogSource
from fixpilot.utils.async_helpers import (
    PatchError,
    PatchTargetNotFoundError,
    PathEscapeError,
)

if TYPE_CHECKING:
    from fixpilot.core.channel import ChannelHub
    from fixpilot.core.patch_applier import PatchApplier
    from fixpilot.interfaces.source import ErrorSource

log = structlog.get_logger()


class Daemon:
    """Background agent that watches files and brokers channel events.

    Example:
        daemon = Daemon(hub, watcher, PatchApplier(root))
        await daemon.start()
        ...
        await daemon.stop()
    """

    DEFAULT_SHUTDOWN_TIMEOUT = 10

    def __init__(
        self,
        hub: ChannelHub,
        source: ErrorSource,
        applier: PatchApplier,
    ) -> None:
        """Initialize the Daemon.

        Args:
            hub: Channel hub dashboards connect to
            source: Producer of log and error events (usually the watcher)
            applier: Patch Applier bound to the watched root
        """
        self._hub = hub
        self._source = source
        self._applier = applier
        hub.set_handler(self.handle_client_event)

        self._running = False
        self._pump_task: asyncio.Task[None] | None = None

        # Statistics
        self._events_broadcast = 0
        self._patches_applied = 0
        self._patches_rejected = 0

    @property
    def hub(self) -> ChannelHub:
        return self._hub

    @property
    def is_running(self) -> bool:
        """Return True if the daemon is currently running."""
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        """Return processing statistics."""
        return {
            "events_broadcast": self._events_broadcast,
            "patches_applied": self._patches_applied,
            "patches_rejected": self._patches_rejected,
            "clients": self._hub.connection_count,
        }

    async def start(self) -> None:
        """Start pumping source events to the hub."""
        if self._running:
            log.warning("daemon_already_running")
            return

        log.info("daemon_starting", root=str(self._applier.root))
        self._pump_task = asyncio.create_task(self._pump(), name="daemon_pump")
        self._running = True
        log.info("daemon_started")

    async def stop(self) -> None:
        """Stop the source, wait for the pump and close all connections."""
        if not self._running:
            log.warning("daemon_not_running")
            return

        log.info("daemon_stopping", clients=self._hub.connection_count)
        self._source.stop()

        if self._pump_task is not None and not self._pump_task.done():
            try:
                await asyncio.wait_for(self._pump_task, timeout=self.DEFAULT_SHUTDOWN_TIMEOUT)
            except TimeoutError:
                log.warning("daemon_pump_cancelled")
                self._pump_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._pump_task

        await self._hub.close()
        self._running = False
        log.info("daemon_stopped", **self.stats)

    async def handle_client_event(self, message: ClientMessage) -> PatchResultMessage:
        """Apply one ``apply_patch`` command and acknowledge it."""
        file = message.data.file
        await self._broadcast(log_message(LogLevel.INFO, f"Writing fix to: {file}", LogSource.DAEMON))

        try:
            await asyncio.to_thread(self._applier.apply, file, message.data.patch)
        except PatchError as e:
            self._patches_rejected += 1
            log.warning("patch_rejected", file=file, code=e.code, error=str(e))
            if isinstance(e, PathEscapeError):
                text = f"Rejected patch outside watched root: {file}"
            elif isinstance(e, PatchTargetNotFoundError):
                text = f"File not found: {file}"
            else:
                text = f"Write failed: {e}"
            await self._broadcast(log_message(LogLevel.ERROR, text, LogSource.DAEMON))
            return patch_result_message(file, ok=False, error=e.code, message=str(e))

        self._patches_applied += 1
        await self._broadcast(log_message(LogLevel.INFO, f"File updated: {file}", LogSource.DAEMON))
        return patch_result_message(file, ok=True)

    async def _pump(self) -> None:
        try:
            async for event in self._source.events():
                await self._broadcast(event)
        except asyncio.CancelledError:
            log.info("daemon_pump_cancelled")
            raise
        except Exception:
            log.exception("daemon_pump_failed")
            raise

    async def _broadcast(self, message: ServerMessage) -> None:
        self._events_broadcast += 1
        await self._hub.broadcast(message)
