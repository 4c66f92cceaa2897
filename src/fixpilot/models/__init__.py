"""Data models and transfer objects."""

from .error import (
    DetectionInput,
    Environment,
    ErrorRecord,
    ErrorSeverity,
    ErrorStatus,
    StackFrame,
)
from .events import ConnectionState, ErrorRecordPayload, LogEntryPayload, StatsPayload
from .log import LogEntry, LogLevel, LogSource
from .stats import ProjectStats, StatsEvent, StatsEventKind
from .verification import VerificationResult

__all__ = [
    # Error models
    "DetectionInput",
    "Environment",
    "ErrorRecord",
    "ErrorSeverity",
    "ErrorStatus",
    "StackFrame",
    # Wire models
    "ConnectionState",
    "ErrorRecordPayload",
    "LogEntryPayload",
    "StatsPayload",
    # Log models
    "LogEntry",
    "LogLevel",
    "LogSource",
    # Stats models
    "ProjectStats",
    "StatsEvent",
    "StatsEventKind",
    # Verification models
    "VerificationResult",
]
