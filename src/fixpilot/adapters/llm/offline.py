"""Assistant provider used when no AI service is configured."""

from __future__ import annotations

import structlog

from ...models.error import DetectionInput, Environment, ErrorRecord
from ...utils.async_helpers import GatewayFailure
from .fallback import fallback_error

log = structlog.get_logger()

OFFLINE_EXPLANATION = (
    "AI assistance is offline. Set llm.provider to 'anthropic' and provide an "
    "API key to get explanations and generated patches."
)


class OfflineAssistant:
    """Provider that never leaves the machine.

    Explanations fail open with a fixed hint, patch generation always fails,
    and simulated errors come from the canned fallback set.
    """

    @property
    def model_name(self) -> str:
        return "offline"

    async def explain(self, record: ErrorRecord) -> str:
        log.debug("offline_explain", record_id=record.id)
        return OFFLINE_EXPLANATION

    async def generate_patch(self, record: ErrorRecord, source_text: str) -> str:
        raise GatewayFailure(f"AI assistance is offline; no patch for {record.file}")

    async def simulate_error(self, environment: Environment) -> DetectionInput:
        return fallback_error(environment)
