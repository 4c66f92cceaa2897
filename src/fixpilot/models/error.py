"""Data models for detected errors and their lifecycle."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath


class ErrorSeverity(Enum):
    """How bad a detected error is."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"  # Reserved for production detections


class ErrorStatus(Enum):
    """Lifecycle state of an error record."""

    DETECTED = "DETECTED"
    ANALYZING = "ANALYZING"
    PATCH_PROPOSED = "PATCH_PROPOSED"
    FIXED = "FIXED"
    FAILED = "FAILED"


class Environment(Enum):
    """Where an error was observed."""

    LOCAL = "LOCAL"
    PRODUCTION = "PRODUCTION"


# Extension -> language tag (informational only)
LANGUAGE_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
    ".json": "json",
}


def language_for_path(file_path: str) -> str:
    """Guess the language tag for a file from its extension."""
    suffix = PurePosixPath(file_path.replace("\\", "/")).suffix.lower()
    return LANGUAGE_BY_EXTENSION.get(suffix, "text")


def default_severity(environment: Environment) -> ErrorSeverity:
    """Severity assigned when a detection does not carry one."""
    if environment is Environment.PRODUCTION:
        return ErrorSeverity.CRITICAL
    return ErrorSeverity.HIGH


@dataclass(frozen=True)
class StackFrame:
    """A single frame of a reported stack trace."""

    file: str
    line: int
    column: int = 0
    function_name: str = "<module>"


@dataclass(frozen=True)
class DetectionInput:
    """A partial error report handed to the lifecycle manager.

    Only ``message`` and ``file`` are required; the lifecycle manager fills
    every other field with a default when it creates the record.
    """

    message: str
    file: str
    severity: ErrorSeverity | None = None
    environment: Environment = Environment.LOCAL
    language: str | None = None
    stack_trace: tuple[StackFrame, ...] = ()
    source_snippet: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class ErrorRecord:
    """One detected error and its current lifecycle state.

    Records are immutable values. The lifecycle manager is the only writer and
    replaces a record wholesale on every transition.
    """

    id: str
    timestamp: datetime
    message: str
    severity: ErrorSeverity
    status: ErrorStatus
    environment: Environment
    file: str
    language: str
    stack_trace: tuple[StackFrame, ...] = ()
    source_snippet: str | None = None
    ai_explanation: str | None = None
    proposed_patch: str | None = None

    @property
    def location(self) -> str:
        """``file:line`` of the innermost frame, or just the file."""
        if self.stack_trace:
            frame = self.stack_trace[-1]
            return f"{frame.file}:{frame.line}"
        return self.file
