"""File watcher: turns file changes into channel events.

Each change below the root produces a ``File detected`` log, then either an
``error_detected`` event (the verifier rejected the file) or a ``Syntax OK``
log. Reading and verifying happen in worker threads so a slow check never
stalls the event loop.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from pathlib import Path

import structlog
from watchfiles import Change, awatch

from fixpilot.config.schema import DEFAULT_IGNORED_PATTERNS
from fixpilot.core.verifier import Verifier
from fixpilot.models.error import (
    Environment,
    ErrorRecord,
    ErrorSeverity,
    ErrorStatus,
    StackFrame,
    language_for_path,
)
from fixpilot.models.events import (
    ErrorDetectedMessage,
    LogMessage,
    error_detected_message,
    log_message,
    utc_now,
)
from fixpilot.models.log import LogLevel, LogSource

log = structlog.get_logger()

ChangeBatch = set[tuple[Change, str]]

WATCHED_CHANGES = (Change.added, Change.modified)


class FileWatcher:
    """ErrorSource backed by ``watchfiles``.

    Example:
        watcher = FileWatcher(Path("."), Verifier.from_config(config.verifier))
        async for event in watcher.events():
            await hub.broadcast(event)
    """

    def __init__(
        self,
        root: Path,
        verifier: Verifier,
        ignored: Iterable[str] = DEFAULT_IGNORED_PATTERNS,
        changes: AsyncIterable[ChangeBatch] | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            root: Directory to watch
            verifier: Syntax verifier applied to changed files
            ignored: Regexes matched against paths relative to the root
            changes: Change feed to use instead of ``watchfiles.awatch``
        """
        self._root = Path(root).resolve()
        self._verifier = verifier
        self._ignored = [re.compile(pattern) for pattern in ignored]
        self._changes = changes
        self._stop_event = asyncio.Event()

    @property
    def root(self) -> Path:
        return self._root

    def stop(self) -> None:
        self._stop_event.set()

    def is_ignored(self, relative_path: str) -> bool:
        return any(pattern.search(relative_path) for pattern in self._ignored)

    async def events(self) -> AsyncIterator[LogMessage | ErrorDetectedMessage]:
        """Stream events for every accepted change until stopped."""
        log.info("watcher_started", root=str(self._root))
        async for batch in self._feed():
            for change, path in sorted(batch, key=lambda item: item[1]):
                relative = self._relative(path)
                if change not in WATCHED_CHANGES or relative is None or self.is_ignored(relative):
                    continue
                async for event in self._check(Path(path), relative):
                    yield event
            if self._stop_event.is_set():
                break
        log.info("watcher_stopped", root=str(self._root))

    def _feed(self) -> AsyncIterable[ChangeBatch]:
        if self._changes is not None:
            return self._changes
        return awatch(self._root, watch_filter=self._accept, stop_event=self._stop_event)

    def _accept(self, change: Change, path: str) -> bool:
        relative = self._relative(path)
        return change in WATCHED_CHANGES and relative is not None and not self.is_ignored(relative)

    def _relative(self, path: str) -> str | None:
        try:
            return Path(path).resolve().relative_to(self._root).as_posix()
        except ValueError:
            return None

    async def _check(
        self, path: Path, relative: str
    ) -> AsyncIterator[LogMessage | ErrorDetectedMessage]:
        name = path.name
        log.debug("file_changed", path=relative)
        yield log_message(LogLevel.INFO, f"File detected: {name}", LogSource.WATCHER)

        if self._verifier.checker_for(relative) is None:
            language = language_for_path(relative)
            if language != "text":
                yield log_message(
                    LogLevel.INFO,
                    f"{name} changed ({language} syntax check skipped)",
                    LogSource.WATCHER,
                )
            return

        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.warning("file_read_failed", path=relative, error=str(e))
            yield log_message(LogLevel.WARN, f"Could not read {name}: {e}", LogSource.WATCHER)
            return

        result = await asyncio.to_thread(self._verifier.verify, relative, content)
        if result.ok:
            yield log_message(LogLevel.INFO, f"Syntax OK: {name}", LogSource.DAEMON)
            return

        now = utc_now()
        record = ErrorRecord(
            id=f"err-{int(now.timestamp() * 1000)}",
            timestamp=now,
            message=result.message or "Syntax Error Detected",
            severity=ErrorSeverity.HIGH,
            status=ErrorStatus.DETECTED,
            environment=Environment.LOCAL,
            file=relative,
            language=language_for_path(relative),
            stack_trace=(StackFrame(relative, result.line),) if result.line else (),
            source_snippet=content,
        )
        log.info("syntax_error_detected", path=relative, line=result.line, message=record.message)
        yield error_detected_message(record)
