"""AI assistance providers."""

from __future__ import annotations

from ...config.schema import LLMConfig
from ...interfaces.llm import AssistantProvider
from .anthropic import AnthropicAssistant
from .fallback import fallback_error, strip_code_fences
from .offline import OfflineAssistant


def create_assistant(config: LLMConfig) -> AssistantProvider:
    """Build the provider selected by ``config.provider``."""
    if config.provider == "anthropic" and config.anthropic is not None:
        return AnthropicAssistant(config.anthropic)
    return OfflineAssistant()


__all__ = [
    "AnthropicAssistant",
    "OfflineAssistant",
    "create_assistant",
    "fallback_error",
    "strip_code_fences",
]
