"""Data models for the dashboard audit trail."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class LogLevel(Enum):
    """Severity of a log entry shown on the dashboard."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"


class LogSource(Enum):
    """Component that produced a log entry."""

    DAEMON = "DAEMON"
    WATCHER = "WATCHER"
    LLM = "LLM"
    RULE_ENGINE = "RULE_ENGINE"


@dataclass(frozen=True)
class LogEntry:
    """A single audit trail entry."""

    id: str
    timestamp: datetime
    level: LogLevel
    message: str
    source: LogSource
