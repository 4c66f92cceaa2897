"""Tests for the file watcher."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from watchfiles import Change

from fixpilot.core.verifier import JsonChecker, PythonChecker, Verifier
from fixpilot.core.watcher import ChangeBatch, FileWatcher
from fixpilot.models.error import Environment, ErrorSeverity, ErrorStatus
from fixpilot.models.events import ErrorDetectedMessage, LogMessage


def feed(*batches: ChangeBatch) -> AsyncIterator[ChangeBatch]:
    async def generate() -> AsyncIterator[ChangeBatch]:
        for batch in batches:
            yield batch

    return generate()


def watcher_for(root: Path, *batches: ChangeBatch) -> FileWatcher:
    return FileWatcher(root, Verifier([PythonChecker(), JsonChecker()]), changes=feed(*batches))


async def collect(watcher: FileWatcher) -> list[LogMessage | ErrorDetectedMessage]:
    return [event async for event in watcher.events()]


def messages(events: list[LogMessage | ErrorDetectedMessage]) -> list[str]:
    return [e.data.message for e in events if isinstance(e, LogMessage)]


@pytest.fixture
def root(tmp_path: Path) -> Path:
    (tmp_path / "pkg").mkdir()
    return tmp_path


class TestFileWatcher:
    async def test_valid_file(self, root: Path) -> None:
        path = root / "pkg" / "ok.py"
        path.write_text("x = 1\n")

        events = await collect(watcher_for(root, {(Change.modified, str(path))}))

        assert messages(events) == ["File detected: ok.py", "Syntax OK: ok.py"]

    async def test_broken_file_emits_error(self, root: Path) -> None:
        path = root / "pkg" / "broken.py"
        source = "def f(:\n    pass\n"
        path.write_text(source)

        events = await collect(watcher_for(root, {(Change.added, str(path))}))

        assert messages(events) == ["File detected: broken.py"]
        detected = events[-1]
        assert isinstance(detected, ErrorDetectedMessage)
        record = detected.data.to_record()
        assert record.file == "pkg/broken.py"
        assert record.status is ErrorStatus.DETECTED
        assert record.environment is Environment.LOCAL
        assert record.severity is ErrorSeverity.HIGH
        assert record.language == "python"
        assert record.source_snippet == source
        assert record.location == "pkg/broken.py:1"
        assert record.message.startswith("SyntaxError")

    async def test_deletions_are_ignored(self, root: Path) -> None:
        events = await collect(watcher_for(root, {(Change.deleted, str(root / "pkg" / "gone.py"))}))
        assert events == []

    @pytest.mark.parametrize(
        "relative",
        ["node_modules/lib/index.js", ".git/HEAD", "pkg/__pycache__/a.py", "dist/app.js"],
    )
    async def test_ignored_paths(self, root: Path, relative: str) -> None:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("def (")

        events = await collect(watcher_for(root, {(Change.modified, str(path))}))

        assert events == []

    async def test_paths_outside_root(self, root: Path, tmp_path_factory: pytest.TempPathFactory) -> None:
        outside = tmp_path_factory.mktemp("elsewhere") / "a.py"
        outside.write_text("def (")

        events = await collect(watcher_for(root, {(Change.modified, str(outside))}))

        assert events == []

    async def test_unsupported_language_is_skipped(self, root: Path) -> None:
        path = root / "pkg" / "types.ts"
        path.write_text("let x: = 1")

        events = await collect(watcher_for(root, {(Change.modified, str(path))}))

        assert messages(events) == [
            "File detected: types.ts",
            "types.ts changed (typescript syntax check skipped)",
        ]

    async def test_plain_text_only_logs_detection(self, root: Path) -> None:
        path = root / "README.md"
        path.write_text("# hi")

        events = await collect(watcher_for(root, {(Change.modified, str(path))}))

        assert messages(events) == ["File detected: README.md"]

    async def test_unreadable_file_warns(self, root: Path) -> None:
        path = root / "pkg" / "binary.py"
        path.write_bytes(b"\xff\xfe\x00bad")

        events = await collect(watcher_for(root, {(Change.modified, str(path))}))

        assert messages(events)[1].startswith("Could not read binary.py")

    async def test_batches_in_path_order(self, root: Path) -> None:
        first, second = root / "pkg" / "a.py", root / "pkg" / "b.json"
        first.write_text("x = 1\n")
        second.write_text("{}")

        events = await collect(
            watcher_for(root, {(Change.modified, str(second)), (Change.modified, str(first))})
        )

        assert messages(events) == [
            "File detected: a.py",
            "Syntax OK: a.py",
            "File detected: b.json",
            "Syntax OK: b.json",
        ]

    async def test_stop_ends_stream(self, root: Path) -> None:
        path = root / "pkg" / "ok.py"
        path.write_text("x = 1\n")
        batch = {(Change.modified, str(path))}
        watcher = watcher_for(root, batch, batch, batch)

        seen = []
        async for event in watcher.events():
            seen.append(event)
            watcher.stop()

        assert len(seen) == 2

    def test_is_ignored(self, root: Path) -> None:
        watcher = FileWatcher(root, Verifier(), ignored=[r"\.log$"])
        assert watcher.is_ignored("logs/app.log")
        assert not watcher.is_ignored("src/app.py")
