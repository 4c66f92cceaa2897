"""Wire models for the daemon <-> dashboard event channel.

Every frame on the channel is one JSON object ``{"event": name, "data": payload}``.
The payload shapes are the public contract between the daemon and any
dashboard, so they are validated here with pydantic before anything reaches
the lifecycle manager.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from ..utils.async_helpers import ChannelProtocolError
from .error import (
    DetectionInput,
    Environment,
    ErrorRecord,
    ErrorSeverity,
    ErrorStatus,
    StackFrame,
    language_for_path,
)
from .log import LogEntry, LogLevel, LogSource
from .stats import ProjectStats


class ConnectionState(Enum):
    """Connection state of one dashboard session."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class WireModel(BaseModel):
    """Base for payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Payloads
# =============================================================================


class StackFramePayload(WireModel):
    """Wire form of a stack frame."""

    file: str
    line: int = Field(ge=0)
    column: int = Field(0, ge=0)
    function_name: str = "<anonymous>"


class ErrorRecordPayload(WireModel):
    """Wire form of a full error record."""

    id: str = Field(min_length=1)
    timestamp: datetime
    message: str = Field(min_length=1)
    severity: ErrorSeverity = ErrorSeverity.HIGH
    status: ErrorStatus = ErrorStatus.DETECTED
    environment: Environment = Environment.LOCAL
    file: str = Field(min_length=1)
    language: str | None = None
    stack_trace: list[StackFramePayload] = Field(default_factory=list)
    source_snippet: str | None = Field(
        None,
        validation_alias=AliasChoices("sourceSnippet", "source_snippet", "rawCode"),
    )
    ai_explanation: str | None = None
    proposed_patch: str | None = None

    @classmethod
    def from_record(cls, record: ErrorRecord) -> ErrorRecordPayload:
        """Build the wire form of a record."""
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            message=record.message,
            severity=record.severity,
            status=record.status,
            environment=record.environment,
            file=record.file,
            language=record.language,
            stack_trace=[
                StackFramePayload(
                    file=frame.file,
                    line=frame.line,
                    column=frame.column,
                    function_name=frame.function_name,
                )
                for frame in record.stack_trace
            ],
            source_snippet=record.source_snippet,
            ai_explanation=record.ai_explanation,
            proposed_patch=record.proposed_patch,
        )

    def _frames(self) -> tuple[StackFrame, ...]:
        return tuple(
            StackFrame(
                file=frame.file,
                line=frame.line,
                column=frame.column,
                function_name=frame.function_name,
            )
            for frame in self.stack_trace
        )

    def to_record(self) -> ErrorRecord:
        """Rebuild the full record, e.g. from a persisted snapshot."""
        return ErrorRecord(
            id=self.id,
            timestamp=self.timestamp,
            message=self.message,
            severity=self.severity,
            status=self.status,
            environment=self.environment,
            file=self.file,
            language=self.language or language_for_path(self.file),
            stack_trace=self._frames(),
            source_snippet=self.source_snippet or None,
            ai_explanation=self.ai_explanation or None,
            proposed_patch=self.proposed_patch or None,
        )

    def to_detection(self) -> DetectionInput:
        """Reduce a daemon detection to the input accepted by ``detect``.

        Id and status are reassigned by the receiving lifecycle manager.
        """
        return DetectionInput(
            message=self.message,
            file=self.file,
            severity=self.severity,
            environment=self.environment,
            language=self.language,
            stack_trace=self._frames(),
            source_snippet=self.source_snippet or None,
            timestamp=self.timestamp,
        )


class LogEntryPayload(WireModel):
    """Wire and snapshot form of a dashboard log entry."""

    id: str = Field(min_length=1)
    timestamp: datetime
    level: LogLevel
    message: str
    source: LogSource

    @classmethod
    def from_entry(cls, entry: LogEntry) -> LogEntryPayload:
        return cls(
            id=entry.id,
            timestamp=entry.timestamp,
            level=entry.level,
            message=entry.message,
            source=entry.source,
        )

    def to_entry(self) -> LogEntry:
        return LogEntry(
            id=self.id,
            timestamp=self.timestamp,
            level=self.level,
            message=self.message,
            source=self.source,
        )


class StatsPayload(WireModel):
    """Wire and snapshot form of the project statistics."""

    health_score: int = Field(100, ge=0, le=100)
    total_errors: int = Field(0, ge=0)
    fixed_errors: int = Field(0, ge=0)
    active_patches: int = Field(0, ge=0)

    @classmethod
    def from_stats(cls, stats: ProjectStats) -> StatsPayload:
        return cls(
            health_score=stats.health_score,
            total_errors=stats.total_errors,
            fixed_errors=stats.fixed_errors,
            active_patches=stats.active_patches,
        )

    def to_stats(self) -> ProjectStats:
        return ProjectStats(
            health_score=self.health_score,
            total_errors=self.total_errors,
            fixed_errors=self.fixed_errors,
            active_patches=self.active_patches,
        )


class StatusPayload(WireModel):
    """Handshake sent by the daemon on every (re)connect."""

    status: Literal["CONNECTED"] = "CONNECTED"
    message: str = ""


class LogPayload(WireModel):
    """A log line streamed from the daemon."""

    level: LogLevel
    message: str
    source: LogSource


class ApplyPatchPayload(WireModel):
    """Request from a dashboard to overwrite a file."""

    file: str = Field(min_length=1)
    patch: str


class PatchResultPayload(WireModel):
    """Daemon acknowledgement of an ``apply_patch`` request."""

    file: str
    ok: bool
    error: Literal["PathEscape", "NotFound", "WriteError"] | None = None
    message: str | None = None


# =============================================================================
# Envelopes
# =============================================================================


class StatusMessage(BaseModel):
    event: Literal["status"] = "status"
    data: StatusPayload


class LogMessage(BaseModel):
    event: Literal["log"] = "log"
    data: LogPayload


class ErrorDetectedMessage(BaseModel):
    event: Literal["error_detected"] = "error_detected"
    data: ErrorRecordPayload


class PatchResultMessage(BaseModel):
    event: Literal["patch_result"] = "patch_result"
    data: PatchResultPayload


class ApplyPatchMessage(BaseModel):
    event: Literal["apply_patch"] = "apply_patch"
    data: ApplyPatchPayload


ServerMessage = Annotated[
    StatusMessage | LogMessage | ErrorDetectedMessage | PatchResultMessage,
    Field(discriminator="event"),
]
ClientMessage = ApplyPatchMessage

_server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)
_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def encode(message: BaseModel) -> str:
    """Serialize an envelope to a JSON text frame."""
    return message.model_dump_json(by_alias=True, exclude_none=True)


def decode_server_message(text: str | bytes) -> ServerMessage:
    """Validate a frame sent by the daemon.

    Raises:
        ChannelProtocolError: If the frame is not a known server event.
    """
    try:
        return _server_adapter.validate_json(text)
    except ValidationError as e:
        raise ChannelProtocolError(f"Invalid server event: {e}") from e


def decode_client_message(text: str | bytes) -> ClientMessage:
    """Validate a frame sent by a dashboard.

    Raises:
        ChannelProtocolError: If the frame is not a known client event.
    """
    try:
        return _client_adapter.validate_json(text)
    except ValidationError as e:
        raise ChannelProtocolError(f"Invalid client event: {e}") from e


def status_message(message: str) -> StatusMessage:
    return StatusMessage(data=StatusPayload(status="CONNECTED", message=message))


def log_message(level: LogLevel, message: str, source: LogSource) -> LogMessage:
    return LogMessage(data=LogPayload(level=level, message=message, source=source))


def error_detected_message(record: ErrorRecord) -> ErrorDetectedMessage:
    return ErrorDetectedMessage(data=ErrorRecordPayload.from_record(record))


def apply_patch_message(file: str, patch: str) -> ApplyPatchMessage:
    return ApplyPatchMessage(data=ApplyPatchPayload(file=file, patch=patch))


def patch_result_message(
    file: str,
    ok: bool,
    error: str | None = None,
    message: str | None = None,
) -> PatchResultMessage:
    return PatchResultMessage(
        data=PatchResultPayload(file=file, ok=ok, error=error, message=message)  # type: ignore[arg-type]
    )


def utc_now() -> datetime:
    """Timezone-aware current time used for all timestamps."""
    return datetime.now(UTC)
