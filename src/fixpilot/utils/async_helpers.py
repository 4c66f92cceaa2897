"""Async utilities and the FixPilot exception hierarchy.

This module provides:
- Custom exceptions for the error lifecycle, patching, gateway and channel
- A retry decorator factory with exponential backoff
- A timeout wrapper for async operations
"""

from __future__ import annotations

import asyncio
import builtins
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


# =============================================================================
# Custom Exceptions
# =============================================================================


class FixPilotError(Exception):
    """Base exception for all FixPilot errors."""


class NotFoundError(FixPilotError):
    """No error record exists with the given id."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Unknown error record: {record_id}")
        self.record_id = record_id


class InvalidTransitionError(FixPilotError):
    """A lifecycle operation was called from a state that does not allow it."""

    def __init__(self, record_id: str, operation: str, status: str) -> None:
        super().__init__(f"Cannot {operation} error {record_id} while it is {status}")
        self.record_id = record_id
        self.operation = operation
        self.status = status


class PatchError(FixPilotError):
    """Base exception for patch application failures."""

    #: Short tag carried on the wire in ``patch_result`` events.
    code = "WriteError"

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class PathEscapeError(PatchError):
    """The target path resolves outside the watched root."""

    code = "PathEscape"


class PatchTargetNotFoundError(PatchError):
    """The target file does not exist; the applier never creates files."""

    code = "NotFound"


class PatchWriteError(PatchError):
    """The write itself failed; the original content is untouched."""

    code = "WriteError"


class GatewayFailure(FixPilotError):
    """The AI assistance call failed or timed out. Always retryable."""


class ChannelDisconnected(FixPilotError):
    """The event channel is down; the command was dropped, not queued."""


class TransportError(FixPilotError):
    """The underlying transport could not connect, send or receive."""


class ChannelProtocolError(FixPilotError):
    """A frame on the event channel did not match any known event."""


class TimeoutError(FixPilotError):
    """Operation timed out."""


PATCH_ERRORS_BY_CODE: dict[str, type[PatchError]] = {
    PathEscapeError.code: PathEscapeError,
    PatchTargetNotFoundError.code: PatchTargetNotFoundError,
    PatchWriteError.code: PatchWriteError,
}


# =============================================================================
# Retry Decorator
# =============================================================================


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging."""
    if retry_state.outcome is None:
        return

    exception = retry_state.outcome.exception()
    if exception:
        log.warning(
            "retrying_operation",
            attempt=retry_state.attempt_number,
            exception_type=type(exception).__name__,
            exception_message=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[Exception], ...] = (TransportError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Create a customized retry decorator.

    Args:
        max_attempts: Maximum number of attempts.
        min_wait: Minimum wait time between retries (seconds).
        max_wait: Maximum wait time between retries (seconds).
        retry_on: Tuple of exception types to retry on.

    Returns:
        A retry decorator configured with the given parameters.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


# =============================================================================
# Timeout Utilities
# =============================================================================


async def with_timeout(
    coro: Awaitable[T],
    timeout: float,
    error_message: str | None = None,
) -> T:
    """Execute an awaitable with a timeout.

    Args:
        coro: The coroutine to execute.
        timeout: Timeout in seconds.
        error_message: Custom error message for timeout.

    Returns:
        The result of the coroutine.

    Raises:
        TimeoutError: If the operation times out.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except builtins.TimeoutError as e:
        msg = error_message or f"Operation timed out after {timeout}s"
        log.warning("operation_timeout", timeout=timeout)
        raise TimeoutError(msg) from e

