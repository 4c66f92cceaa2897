"""Synthetic error source for demos and for dashboards without a daemon."""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from fixpilot.models.error import (
    Environment,
    ErrorRecord,
    ErrorStatus,
    default_severity,
    language_for_path,
)
from fixpilot.models.events import (
    ErrorDetectedMessage,
    LogMessage,
    error_detected_message,
    log_message,
    utc_now,
)
from fixpilot.models.log import LogLevel, LogSource
from fixpilot.utils.async_helpers import GatewayFailure

if TYPE_CHECKING:
    from fixpilot.interfaces.llm import AssistantProvider

log = structlog.get_logger()

ERROR_CHANCE = {
    Environment.LOCAL: 0.08,
    Environment.PRODUCTION: 0.02,
}
CHATTER_CHANCE = 0.25

CHATTER = {
    Environment.LOCAL: (
        "Scanning src/components...",
        "Checking dependencies...",
        "File watcher active.",
        "Validating types...",
    ),
    Environment.PRODUCTION: (
        "Monitoring latency (45ms)",
        "Checking API health...",
        "Database pool: 45/100",
        "Traffic: 250 req/s",
    ),
}


class SyntheticErrorSource:
    """ErrorSource that invents errors and monitoring chatter.

    Every tick rolls the injected ``random.Random`` once: below the
    environment's error chance an error is simulated through the provider,
    below ``CHATTER_CHANCE`` a monitoring log line is emitted, otherwise the
    tick is quiet. While paused, ticks emit nothing.
    """

    def __init__(
        self,
        provider: AssistantProvider,
        environment: Environment = Environment.LOCAL,
        rng: random.Random | None = None,
        interval: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self.environment = environment
        self._rng = rng or random.Random()
        self._interval = interval
        self._sleep = sleep
        self._paused = False
        self._stopped = False

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def stop(self) -> None:
        self._stopped = True

    async def events(self) -> AsyncIterator[LogMessage | ErrorDetectedMessage]:
        """Emit events every ``interval`` seconds until stopped."""
        self._stopped = False
        while not self._stopped:
            await self._sleep(self._interval)
            if self._stopped:
                break
            event = await self.tick()
            if event is not None:
                yield event

    async def tick(self) -> LogMessage | ErrorDetectedMessage | None:
        """Run one roll of the generator."""
        if self._paused:
            return None

        roll = self._rng.random()
        if roll < ERROR_CHANCE[self.environment]:
            return await self._simulate()
        if roll < CHATTER_CHANCE:
            message = self._rng.choice(CHATTER[self.environment])
            return log_message(LogLevel.INFO, message, LogSource.WATCHER)
        return None

    async def _simulate(self) -> ErrorDetectedMessage | None:
        environment = self.environment
        try:
            detection = await self._provider.simulate_error(environment)
        except GatewayFailure as e:
            log.warning("synthetic_error_failed", error=str(e))
            return None

        now = utc_now()
        record = ErrorRecord(
            id=f"sim-{int(now.timestamp() * 1000)}",
            timestamp=now,
            message=detection.message or "Unknown Error",
            severity=default_severity(environment),
            status=ErrorStatus.DETECTED,
            environment=environment,
            file=detection.file or "unknown.js",
            language=detection.language or language_for_path(detection.file or "unknown.js"),
            stack_trace=detection.stack_trace,
            source_snippet=detection.source_snippet,
        )
        log.debug("synthetic_error", file=record.file, environment=environment.value)
        return error_detected_message(record)
