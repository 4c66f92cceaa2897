"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    AnthropicConfig,
    DaemonConfig,
    DashboardConfig,
    FixPilotConfig,
    LifecycleConfig,
    LLMConfig,
    LoggingConfig,
    RetryConfig,
    StateConfig,
    VerifierConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "FixPilotConfig",
    # Process configs
    "DaemonConfig",
    "DashboardConfig",
    # Component configs
    "VerifierConfig",
    "LLMConfig",
    "LifecycleConfig",
    "StateConfig",
    "LoggingConfig",
    "RetryConfig",
    # Provider-specific configs
    "AnthropicConfig",
]
