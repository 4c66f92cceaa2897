"""Utility functions and helpers.

This module provides various utilities for FixPilot:
- security: Secret redaction, path containment
- safe_subprocess: Safe execution of external syntax checkers
- async_helpers: Exception hierarchy, async retry and timeouts
- logging: Structured logging with secret sanitization
"""

from fixpilot.utils.async_helpers import (
    ChannelDisconnected,
    FixPilotError,
    GatewayFailure,
    InvalidTransitionError,
    NotFoundError,
    PatchError,
    PatchTargetNotFoundError,
    PatchWriteError,
    PathEscapeError,
)
from fixpilot.utils.logging import (
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from fixpilot.utils.security import (
    RedactionError,
    SecretRedactor,
    SecurityError,
    resolve_within_root,
)

__all__ = [
    # Errors
    "ChannelDisconnected",
    "FixPilotError",
    "GatewayFailure",
    "InvalidTransitionError",
    "NotFoundError",
    "PatchError",
    "PatchTargetNotFoundError",
    "PatchWriteError",
    "PathEscapeError",
    # Logging
    "LogFormat",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Security
    "RedactionError",
    "SecretRedactor",
    "SecurityError",
    "resolve_within_root",
]
