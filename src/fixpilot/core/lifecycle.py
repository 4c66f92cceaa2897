"""Error Lifecycle Manager: the single owner of error records and stats.

Every error moves through::

    DETECTED -> ANALYZING -> PATCH_PROPOSED -> FIXED
        \\           \\             \\
         `-----------`-------------`--> FAILED  (retry via begin_analysis)

and ``rollback`` takes a FIXED record back to PATCH_PROPOSED (or ANALYZING
when it has no patch). All state lives here; the dashboard, the gateway and
the channel only call these operations and observe the results through
:meth:`ErrorLifecycleManager.subscribe`.

Concurrency: one ``asyncio.Lock`` serialises every state mutation, and a
per-record lock makes all operations on the same id mutually exclusive. The
patch write in :meth:`ErrorLifecycleManager.apply_fix` runs while only the
per-record lock is held, so a slow or remote write never blocks detections
or logs for other records.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from fixpilot.config.schema import LifecycleConfig
from fixpilot.core.stats import apply_event, detect_penalty, granted_recovery
from fixpilot.models.error import (
    DetectionInput,
    Environment,
    ErrorRecord,
    ErrorSeverity,
    ErrorStatus,
    default_severity,
    language_for_path,
)
from fixpilot.models.events import (
    ErrorRecordPayload,
    LogEntryPayload,
    StatsPayload,
    utc_now,
)
from fixpilot.models.log import LogEntry, LogLevel, LogSource
from fixpilot.models.stats import ProjectStats, StatsEvent, StatsEventKind
from fixpilot.utils.async_helpers import (
    ChannelDisconnected,
    InvalidTransitionError,
    NotFoundError,
    PatchError,
    PatchWriteError,
)

if TYPE_CHECKING:
    from fixpilot.interfaces.patch import PatchWriter
    from fixpilot.interfaces.storage import StateStore

log = structlog.get_logger()


class ChangeKind(Enum):
    """What a :class:`LifecycleChange` carries."""

    RECORD = "record"
    LOG = "log"
    STATS = "stats"
    RESET = "reset"


@dataclass(frozen=True)
class LifecycleChange:
    """Notification delivered to subscribers after every mutation."""

    kind: ChangeKind
    record: ErrorRecord | None = None
    log: LogEntry | None = None
    stats: ProjectStats | None = None


Listener = Callable[[LifecycleChange], None]


class ErrorLifecycleManager:
    """Owns the canonical error records, the audit log and the stats.

    Example:
        manager = ErrorLifecycleManager(writer=LocalPatchWriter(applier))
        record = await manager.detect(DetectionInput("Unexpected token", "src/a.js"))
        await manager.begin_analysis(record.id)
        await manager.complete_analysis(record.id, "A bracket is missing")
        await manager.propose_patch(record.id, fixed_source)
        await manager.apply_fix(record.id)
    """

    def __init__(
        self,
        config: LifecycleConfig | None = None,
        writer: PatchWriter | None = None,
        store: StateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the manager and load the persisted snapshot, if any.

        Args:
            config: Health constants and log retention
            writer: Where ``apply_fix`` writes patches; without one every
                apply fails with ``PatchWriteError``
            store: Snapshot persistence; None keeps state in memory only
            clock: Source of timestamps (injectable for tests)
        """
        self._config = config or LifecycleConfig()
        self._writer = writer
        self._store = store
        self._clock = clock

        self._records: dict[str, ErrorRecord] = {}
        self._logs: deque[LogEntry] = deque(maxlen=self._config.log_retention)
        self._stats = ProjectStats()
        self._journal: list[StatsEvent] = []
        # Recovery granted by the outstanding APPLY of each FIXED record
        self._recoveries: dict[str, int] = {}

        self._lock = asyncio.Lock()
        self._record_locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[Listener] = []

        self._last_id_ms = 0
        self._id_seq = 0
        self._log_seq = itertools.count(1)

        self._load()

    # =========================================================================
    # Read accessors
    # =========================================================================

    @property
    def errors(self) -> list[ErrorRecord]:
        """All records, newest first."""
        return list(reversed(self._records.values()))

    @property
    def logs(self) -> list[LogEntry]:
        """Retained log entries, newest first."""
        return list(self._logs)

    @property
    def stats(self) -> ProjectStats:
        return self._stats

    @property
    def transitions(self) -> tuple[StatsEvent, ...]:
        """Stats journal since load or the last reset."""
        return tuple(self._journal)

    def get(self, record_id: str) -> ErrorRecord:
        """Return the record with ``record_id``.

        Raises:
            NotFoundError: If no such record exists
        """
        return self._require(record_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # Transitions
    # =========================================================================

    async def detect(self, detection: DetectionInput) -> ErrorRecord:
        """Create a new DETECTED record.

        Every call creates exactly one record; nothing is deduplicated.

        Raises:
            ValueError: If message or file is empty
        """
        message = detection.message.strip()
        file = detection.file.strip()
        if not message or not file:
            raise ValueError("A detection needs a non-empty message and file")

        severity = detection.severity or default_severity(detection.environment)
        if severity is ErrorSeverity.CRITICAL and detection.environment is not Environment.PRODUCTION:
            severity = ErrorSeverity.HIGH

        async with self._lock:
            record = ErrorRecord(
                id=self._next_record_id(),
                timestamp=detection.timestamp or self._clock(),
                message=message,
                severity=severity,
                status=ErrorStatus.DETECTED,
                environment=detection.environment,
                file=file,
                language=detection.language or language_for_path(file),
                stack_trace=detection.stack_trace,
                source_snippet=detection.source_snippet,
            )
            self._records[record.id] = record

            penalty = detect_penalty(record.environment, self._config)
            self._record_event(StatsEvent(StatsEventKind.DETECT, record.id, -penalty))
            entry = self._append_log(
                f"Error detected in {record.file}", LogLevel.ERROR, LogSource.WATCHER
            )
            await self._persist()

        log.info(
            "error_detected",
            record_id=record.id,
            location=record.location,
            environment=record.environment.value,
            severity=record.severity.value,
        )
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        self._notify(LifecycleChange(ChangeKind.LOG, log=entry))
        self._notify(LifecycleChange(ChangeKind.STATS, stats=self._stats))
        return record

    async def begin_analysis(self, record_id: str) -> ErrorRecord:
        """Move a DETECTED or FAILED record to ANALYZING.

        Calling it while already ANALYZING is a no-op.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: From PATCH_PROPOSED or FIXED
        """
        async with self._record_lock(record_id), self._lock:
            record = self._require(record_id)
            if record.status is ErrorStatus.ANALYZING:
                return record
            if record.status not in (ErrorStatus.DETECTED, ErrorStatus.FAILED):
                raise InvalidTransitionError(record_id, "begin analysis", record.status.value)

            record = self._store_record(replace(record, status=ErrorStatus.ANALYZING))
            await self._persist()

        log.info("analysis_started", record_id=record_id)
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        return record

    async def complete_analysis(self, record_id: str, explanation: str) -> ErrorRecord:
        """Attach the explanation; the record stays ANALYZING.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If the record is not ANALYZING
            ValueError: If the explanation is empty
        """
        if not explanation.strip():
            raise ValueError("Explanation must not be empty")

        async with self._record_lock(record_id), self._lock:
            record = self._require(record_id)
            if record.status is not ErrorStatus.ANALYZING:
                raise InvalidTransitionError(record_id, "complete analysis", record.status.value)

            record = self._store_record(replace(record, ai_explanation=explanation))
            await self._persist()

        log.info("analysis_completed", record_id=record_id)
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        return record

    async def propose_patch(self, record_id: str, patch: str) -> ErrorRecord:
        """Store a patch and move the record to PATCH_PROPOSED.

        Valid from ANALYZING once an explanation exists, or from
        PATCH_PROPOSED to replace the earlier patch.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: From any other state, or without an
                explanation
            ValueError: If the patch is empty
        """
        if not patch.strip():
            raise ValueError("Patch must not be empty")

        async with self._record_lock(record_id), self._lock:
            record = self._require(record_id)
            allowed = record.status is ErrorStatus.PATCH_PROPOSED or (
                record.status is ErrorStatus.ANALYZING and record.ai_explanation
            )
            if not allowed:
                raise InvalidTransitionError(record_id, "propose a patch", record.status.value)

            record = self._store_record(
                replace(record, proposed_patch=patch, status=ErrorStatus.PATCH_PROPOSED)
            )
            await self._persist()

        log.info("patch_proposed", record_id=record_id, bytes=len(patch))
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        return record

    async def apply_fix(self, record_id: str) -> ErrorRecord:
        """Write the proposed patch and move the record to FIXED.

        On a write failure the record stays PATCH_PROPOSED, a tagged error
        log naming the record and file is added, and the error propagates.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If the record is not PATCH_PROPOSED
            PatchError: If the writer rejected or failed the write
            ChannelDisconnected: If the daemon could not be reached
        """
        async with self._record_lock(record_id):
            async with self._lock:
                record = self._require(record_id)
                if record.status is not ErrorStatus.PATCH_PROPOSED or record.proposed_patch is None:
                    raise InvalidTransitionError(record_id, "apply a fix", record.status.value)
                file, patch = record.file, record.proposed_patch

            try:
                await self._write(record_id, file, patch)
            except ChannelDisconnected as e:
                log.warning("apply_dropped", record_id=record_id, file=file, error=str(e))
                await self.log(
                    f"[ChannelDisconnected] Patch for {record_id} ({file}) was not delivered: {e}",
                    LogLevel.ERROR,
                    LogSource.DAEMON,
                )
                raise
            except PatchError as e:
                log.warning("apply_failed", record_id=record_id, file=file, error=str(e))
                await self.log(
                    f"[FAILED] Could not apply patch for {record_id} to {file}: {e}",
                    LogLevel.ERROR,
                    LogSource.DAEMON,
                )
                raise

            async with self._lock:
                record = self._require(record_id)
                record = self._store_record(replace(record, status=ErrorStatus.FIXED))

                recovery = granted_recovery(self._stats, self._config.fix_recovery)
                self._recoveries[record_id] = recovery
                self._record_event(StatsEvent(StatsEventKind.APPLY, record_id, recovery))
                entry = self._append_log(
                    f"Patch applied successfully to {file}", LogLevel.INFO, LogSource.DAEMON
                )
                await self._persist()

        log.info("fix_applied", record_id=record_id, file=file, recovery=recovery)
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        self._notify(LifecycleChange(ChangeKind.LOG, log=entry))
        self._notify(LifecycleChange(ChangeKind.STATS, stats=self._stats))
        return record

    async def rollback(self, record_id: str) -> ErrorRecord:
        """Undo ``apply_fix``: revert status and stats, restore the file.

        The file content is put back when the writer kept a snapshot for
        this record and no later patch to the same file has replaced it.
        If restoring fails the status and stats are still reverted and a
        warning is logged.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If the record is not FIXED
        """
        async with self._record_lock(record_id):
            async with self._lock:
                file = self._require_status(record_id, ErrorStatus.FIXED, "roll back").file

            restored = await self._restore(record_id, file)

            async with self._lock:
                record = self._require(record_id)
                target = ErrorStatus.PATCH_PROPOSED if record.proposed_patch else ErrorStatus.ANALYZING
                record = self._store_record(replace(record, status=target))

                recovery = self._recoveries.pop(record_id, self._config.fix_recovery)
                self._record_event(StatsEvent(StatsEventKind.ROLLBACK, record_id, -recovery))
                suffix = "File content restored." if restored else "File content unchanged."
                entry = self._append_log(
                    f"Rollback for {file}. Status reverted to {target.value}. {suffix}",
                    LogLevel.WARN,
                    LogSource.DAEMON,
                )
                await self._persist()

        log.info("fix_rolled_back", record_id=record_id, file=file, restored=restored)
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        self._notify(LifecycleChange(ChangeKind.LOG, log=entry))
        self._notify(LifecycleChange(ChangeKind.STATS, stats=self._stats))
        return record

    async def fail(self, record_id: str, reason: str) -> ErrorRecord:
        """Mark a record FAILED. Retry with :meth:`begin_analysis`.

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If the record is FIXED
        """
        async with self._record_lock(record_id), self._lock:
            record = self._require(record_id)
            if record.status is ErrorStatus.FIXED:
                raise InvalidTransitionError(record_id, "fail", record.status.value)
            if record.status is ErrorStatus.FAILED:
                return record

            record = self._store_record(replace(record, status=ErrorStatus.FAILED))
            entry = self._append_log(
                f"Error {record_id} in {record.file} marked FAILED: {reason}",
                LogLevel.ERROR,
                LogSource.RULE_ENGINE,
            )
            await self._persist()

        log.warning("error_failed", record_id=record_id, reason=reason)
        self._notify(LifecycleChange(ChangeKind.RECORD, record=record))
        self._notify(LifecycleChange(ChangeKind.LOG, log=entry))
        return record

    # =========================================================================
    # Audit log and maintenance
    # =========================================================================

    async def log(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        source: LogSource = LogSource.DAEMON,
    ) -> LogEntry:
        """Append an entry to the bounded audit log (oldest entries drop)."""
        async with self._lock:
            entry = self._append_log(message, level, source)
            await self._persist()

        self._notify(LifecycleChange(ChangeKind.LOG, log=entry))
        return entry

    async def reset(self) -> None:
        """Forget all records, logs and stats, including the snapshot.

        The writer's file snapshots go too: no forgotten record can be
        rolled back.
        """
        async with self._lock:
            if self._writer is not None:
                await self._writer.clear()
            self._records.clear()
            self._logs.clear()
            self._journal.clear()
            self._recoveries.clear()
            self._record_locks.clear()
            self._stats = ProjectStats()
            if self._store is not None:
                try:
                    await asyncio.to_thread(self._store.clear)
                except OSError as e:
                    log.warning("state_clear_failed", error=str(e))

        log.info("state_reset")
        self._notify(LifecycleChange(ChangeKind.RESET, stats=self._stats))

    # =========================================================================
    # Internals
    # =========================================================================

    def _require(self, record_id: str) -> ErrorRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(record_id)
        return record

    def _require_status(self, record_id: str, status: ErrorStatus, operation: str) -> ErrorRecord:
        record = self._require(record_id)
        if record.status is not status:
            raise InvalidTransitionError(record_id, operation, record.status.value)
        return record

    def _record_lock(self, record_id: str) -> asyncio.Lock:
        lock = self._record_locks.get(record_id)
        if lock is None:
            lock = self._record_locks[record_id] = asyncio.Lock()
        return lock

    def _store_record(self, record: ErrorRecord) -> ErrorRecord:
        self._records[record.id] = record
        return record

    def _record_event(self, event: StatsEvent) -> None:
        self._journal.append(event)
        self._stats = apply_event(self._stats, event)

    def _next_record_id(self) -> str:
        now_ms = int(self._clock().timestamp() * 1000)
        if now_ms == self._last_id_ms:
            self._id_seq += 1
        else:
            self._last_id_ms = now_ms
            self._id_seq = 0

        record_id = f"err-{now_ms}" if self._id_seq == 0 else f"err-{now_ms}-{self._id_seq}"
        while record_id in self._records:
            self._id_seq += 1
            record_id = f"err-{now_ms}-{self._id_seq}"
        return record_id

    def _append_log(self, message: str, level: LogLevel, source: LogSource) -> LogEntry:
        now = self._clock()
        entry = LogEntry(
            id=f"log-{int(now.timestamp() * 1000)}-{next(self._log_seq)}",
            timestamp=now,
            level=level,
            message=message,
            source=source,
        )
        self._logs.appendleft(entry)
        return entry

    async def _write(self, record_id: str, file: str, patch: str) -> None:
        if self._writer is None:
            raise PatchWriteError("No patch writer is configured", path=file)
        await self._writer.apply(record_id, file, patch)

    async def _restore(self, record_id: str, file: str) -> bool:
        if self._writer is None:
            return False
        try:
            return await self._writer.restore(record_id, file)
        except (PatchError, ChannelDisconnected) as e:
            log.warning("restore_failed", record_id=record_id, file=file, error=str(e))
            await self.log(
                f"Could not restore {file} for {record_id}: {e}",
                LogLevel.WARN,
                LogSource.DAEMON,
            )
            return False

    def _notify(self, change: LifecycleChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                log.exception("listener_failed", kind=change.kind.value)

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Return the JSON-compatible state written to the store."""
        return {
            "errors": [
                ErrorRecordPayload.from_record(r).model_dump(mode="json", by_alias=True)
                for r in self._records.values()
            ],
            "logs": [
                LogEntryPayload.from_entry(e).model_dump(mode="json", by_alias=True)
                for e in self._logs
            ],
            "stats": StatsPayload.from_stats(self._stats).model_dump(mode="json", by_alias=True),
            "recoveries": dict(self._recoveries),
        }

    async def _persist(self) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(self._store.save, self.snapshot())
        except OSError as e:
            log.warning("state_persist_failed", error=str(e))

    def _load(self) -> None:
        if self._store is None:
            return
        state = self._store.load()
        if not state:
            return

        for raw in state.get("errors", []):
            try:
                record = ErrorRecordPayload.model_validate(raw).to_record()
            except ValidationError as e:
                log.warning("snapshot_record_skipped", error=str(e))
                continue
            self._records[record.id] = record

        entries = []
        for raw in state.get("logs", []):
            try:
                entries.append(LogEntryPayload.model_validate(raw).to_entry())
            except ValidationError as e:
                log.warning("snapshot_log_skipped", error=str(e))
        # Snapshot is newest first; the deque keeps that order
        self._logs.extend(entries[: self._config.log_retention])

        try:
            self._stats = StatsPayload.model_validate(state.get("stats", {})).to_stats()
        except ValidationError as e:
            log.warning("snapshot_stats_invalid", error=str(e))

        recoveries = state.get("recoveries", {})
        if isinstance(recoveries, dict):
            self._recoveries = {
                record_id: int(value)
                for record_id, value in recoveries.items()
                if isinstance(value, int) and record_id in self._records
            }

        log.info(
            "state_loaded",
            errors=len(self._records),
            logs=len(self._logs),
            health=self._stats.health_score,
        )
