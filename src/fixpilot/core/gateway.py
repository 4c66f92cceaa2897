"""AI Assistance Gateway: turns provider calls into lifecycle transitions.

The gateway owns the timeouts around every provider call and converts their
outcome into lifecycle operations. Provider failures never corrupt lifecycle
state: a failed analysis leaves the record ANALYZING without an explanation,
and a failed patch generation leaves the status unchanged. Both surface as
``GatewayFailure`` so the caller can offer a retry.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from fixpilot.models.error import Environment, ErrorRecord, ErrorStatus
from fixpilot.models.log import LogLevel, LogSource
from fixpilot.utils.async_helpers import (
    GatewayFailure,
    InvalidTransitionError,
    PathEscapeError,
    TimeoutError,
    with_timeout,
)
from fixpilot.utils.logging import bind_context, unbind_context
from fixpilot.utils.security import SecurityError, resolve_within_root

if TYPE_CHECKING:
    from fixpilot.core.lifecycle import ErrorLifecycleManager
    from fixpilot.interfaces.llm import AssistantProvider

log = structlog.get_logger()

SOURCE_PLACEHOLDER = "// Source code for {file} is not available."


class AssistanceGateway:
    """Analysis, patch generation and error simulation for the dashboard.

    Example:
        gateway = AssistanceGateway(manager, AnthropicAssistant(config))
        await gateway.analyze(record.id)
        await gateway.generate_patch(record.id)
    """

    def __init__(
        self,
        manager: ErrorLifecycleManager,
        provider: AssistantProvider,
        root: Path | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the gateway.

        Args:
            manager: Lifecycle manager receiving the results
            provider: AI assistance provider
            root: Project root used to read source when a record carries no
                snippet; None disables file reads
            timeout: Seconds allowed for each provider call
        """
        self._manager = manager
        self._provider = provider
        self._root = root
        self._timeout = timeout

    @property
    def provider(self) -> AssistantProvider:
        return self._provider

    async def analyze(self, record_id: str) -> ErrorRecord:
        """Move the record to ANALYZING and attach an explanation.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If analysis cannot start from the
                record's state
            GatewayFailure: If the provider failed or timed out
        """
        record = await self._manager.begin_analysis(record_id)
        bind_context(record_id=record_id)
        try:
            await self._manager.log(
                f"Sending error context to {self._provider.model_name}...",
                LogLevel.INFO,
                LogSource.LLM,
            )
            try:
                explanation = await with_timeout(
                    self._provider.explain(record),
                    self._timeout,
                    f"Analysis of {record_id} timed out after {self._timeout}s",
                )
            except (TimeoutError, GatewayFailure, SecurityError) as e:
                await self._report_failure("analysis", record_id, e)
                raise GatewayFailure(f"Analysis failed for {record_id}: {e}") from e

            if not explanation.strip():
                await self._report_failure("analysis", record_id, "empty explanation")
                raise GatewayFailure(f"Analysis failed for {record_id}: empty explanation")

            try:
                record = await self._manager.complete_analysis(record_id, explanation)
            except InvalidTransitionError:
                log.debug("stale_analysis_discarded")
                return self._manager.get(record_id)

            await self._manager.log(
                f"Analysis received for {record_id}", LogLevel.INFO, LogSource.LLM
            )
            return record
        finally:
            unbind_context("record_id")

    async def generate_patch(self, record_id: str) -> ErrorRecord:
        """Generate a full-file patch and propose it.

        Regeneration from PATCH_PROPOSED replaces the earlier patch; the
        last response to land wins.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If the record has no explanation yet or
                is past the patching stage
            GatewayFailure: If the provider failed, timed out or returned
                an empty patch
        """
        record = self._manager.get(record_id)
        ready = record.status is ErrorStatus.PATCH_PROPOSED or (
            record.status is ErrorStatus.ANALYZING and record.ai_explanation
        )
        if not ready:
            raise InvalidTransitionError(record_id, "generate a patch", record.status.value)

        bind_context(record_id=record_id)
        try:
            await self._manager.log("Requesting patch generation...", LogLevel.INFO, LogSource.LLM)
            source_text = await self._source_text(record)
            try:
                patch = await with_timeout(
                    self._provider.generate_patch(record, source_text),
                    self._timeout,
                    f"Patch generation for {record_id} timed out after {self._timeout}s",
                )
            except (TimeoutError, GatewayFailure, SecurityError) as e:
                await self._report_failure("patch generation", record_id, e)
                raise GatewayFailure(f"Patch generation failed for {record_id}: {e}") from e

            if not patch.strip():
                await self._report_failure("patch generation", record_id, "empty patch")
                raise GatewayFailure(f"Patch generation failed for {record_id}: empty patch")

            try:
                record = await self._manager.propose_patch(record_id, patch)
            except InvalidTransitionError:
                log.debug("stale_patch_discarded")
                return self._manager.get(record_id)

            await self._manager.log(
                f"Patch generated for {record.file}", LogLevel.INFO, LogSource.LLM
            )
            return record
        finally:
            unbind_context("record_id")

    async def simulate(self, environment: Environment) -> ErrorRecord:
        """Create a demo error from the provider and feed it to ``detect``.

        Raises:
            GatewayFailure: If the provider call timed out
        """
        try:
            detection = await with_timeout(
                self._provider.simulate_error(environment),
                self._timeout,
                f"Error simulation timed out after {self._timeout}s",
            )
        except (TimeoutError, GatewayFailure) as e:
            log.warning("simulation_failed", environment=environment.value, error=str(e))
            raise GatewayFailure(f"Could not simulate an error: {e}") from e

        return await self._manager.detect(replace(detection, environment=environment))

    async def _source_text(self, record: ErrorRecord) -> str:
        if record.source_snippet:
            return record.source_snippet
        if self._root is not None:
            try:
                path = resolve_within_root(self._root, record.file)
                return await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (PathEscapeError, OSError, UnicodeDecodeError) as e:
                log.warning("source_read_failed", file=record.file, error=str(e))
        return SOURCE_PLACEHOLDER.format(file=record.file)

    async def _report_failure(self, stage: str, record_id: str, error: object) -> None:
        log.warning("gateway_call_failed", stage=stage, error=str(error))
        await self._manager.log(
            f"AI {stage} failed for {record_id}: {error}. Retry when ready.",
            LogLevel.WARN,
            LogSource.LLM,
        )
