"""Safe, atomic overwrite of files inside the watched root.

The applier only ever overwrites files that already exist below its root.
Every target is resolved (symlinks included) and proven to stay inside the
root before any byte is written, and every write goes to a temporary file in
the same directory that then replaces the target in a single rename.

When an apply is made on behalf of an error record, the prior content is kept
so :meth:`PatchApplier.restore` can undo exactly that record's patch.
"""

from __future__ import annotations

import os
import stat
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import structlog

from fixpilot.utils.async_helpers import PatchTargetNotFoundError, PatchWriteError
from fixpilot.utils.security import resolve_within_root

log = structlog.get_logger()

# Oldest snapshots beyond this depth per file are dropped
MAX_SNAPSHOTS_PER_FILE = 20


@dataclass(frozen=True)
class Snapshot:
    """Content a file had before ``record_id``'s patch was written."""

    record_id: str
    content: bytes


def _snapshot_key(relative_path: str) -> str:
    return str(PurePosixPath(relative_path.replace("\\", "/")))


def atomic_write(target: Path, data: bytes, mode: int | None = None) -> None:
    """Replace ``target`` with ``data`` in one rename.

    Raises:
        OSError: If the temporary file cannot be written or renamed. The
            target is untouched in that case.
    """
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=target.parent,
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        temp_path.replace(target)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class PatchApplier:
    """Apply full-content patches to files below a root directory.

    Blocking; callers on the event loop use ``asyncio.to_thread``.

    Snapshots form a stack per file, one entry per record whose patch is on
    disk. Only the record on top of the stack (the latest write to that file)
    can have its content restored; rolling back a record that a later patch
    has superseded leaves the file alone and hands its pre-patch content to
    the entry above, so undoing the later patch too returns the file to the
    state before either.

    Example:
        applier = PatchApplier(Path("/srv/app"))
        applier.apply("src/index.js", fixed_source, record_id="err-1")
        applier.restore("src/index.js", "err-1")
    """

    def __init__(self, root: Path, max_snapshots: int = MAX_SNAPSHOTS_PER_FILE) -> None:
        self._root = Path(root)
        self._max_snapshots = max_snapshots
        self._snapshots: dict[str, list[Snapshot]] = {}
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def apply(self, relative_path: str, content: str, record_id: str | None = None) -> Path:
        """Overwrite ``relative_path`` with ``content``.

        Args:
            relative_path: Path relative to the root.
            content: Complete new file content.
            record_id: Record the patch belongs to. Without one no snapshot
                is kept and the write cannot be restored.

        Returns:
            The resolved path that was written.

        Raises:
            PathEscapeError: If the path is absolute, traverses upwards or
                resolves (through symlinks) outside the root.
            PatchTargetNotFoundError: If the target is missing or is not a
                regular file.
            PatchWriteError: If the write failed.
        """
        target = self._resolve_existing(relative_path)

        try:
            original = target.read_bytes()
            mode = stat.S_IMODE(target.stat().st_mode)
        except OSError as e:
            log.error("patch_read_failed", path=relative_path, error=str(e))
            raise PatchWriteError(f"Could not read {relative_path}: {e}", path=relative_path) from e

        with self._lock:
            try:
                atomic_write(target, content.encode("utf-8"), mode)
            except OSError as e:
                log.error("patch_write_failed", path=relative_path, error=str(e))
                raise PatchWriteError(
                    f"Could not write {relative_path}: {e}", path=relative_path
                ) from e
            if record_id is not None:
                self._push(_snapshot_key(relative_path), Snapshot(record_id, original))

        log.info("patch_applied", path=relative_path, bytes=len(content), record_id=record_id)
        return target

    def restore(self, relative_path: str, record_id: str) -> bool:
        """Write back the content the file had before ``record_id``'s patch.

        Returns:
            True if content was restored. False if there is no snapshot for
            the record, or if a later patch to the same file superseded it;
            that snapshot is discarded and the file is left as it is.

        Raises:
            PathEscapeError: If the path leaves the root.
            PatchTargetNotFoundError: If the file was deleted since.
            PatchWriteError: If the write failed; the snapshot is kept.
        """
        key = _snapshot_key(relative_path)
        with self._lock:
            stack = self._snapshots.get(key, [])
            index = next(
                (i for i in range(len(stack) - 1, -1, -1) if stack[i].record_id == record_id),
                None,
            )
            if index is None:
                return False

            if index < len(stack) - 1:
                above = stack[index + 1]
                stack[index + 1] = Snapshot(above.record_id, stack[index].content)
                del stack[index]
                log.info(
                    "patch_restore_superseded",
                    path=relative_path,
                    record_id=record_id,
                    superseded_by=above.record_id,
                )
                return False

            target = self._resolve_existing(relative_path)
            try:
                mode = stat.S_IMODE(target.stat().st_mode)
                atomic_write(target, stack[index].content, mode)
            except OSError as e:
                log.error("patch_restore_failed", path=relative_path, error=str(e))
                raise PatchWriteError(
                    f"Could not restore {relative_path}: {e}", path=relative_path
                ) from e
            stack.pop()
            if not stack:
                del self._snapshots[key]

        log.info("patch_restored", path=relative_path, record_id=record_id)
        return True

    def clear(self) -> None:
        """Forget every snapshot; nothing written so far can be restored."""
        with self._lock:
            self._snapshots.clear()

    def _push(self, key: str, snapshot: Snapshot) -> None:
        stack = self._snapshots.setdefault(key, [])
        stack.append(snapshot)
        if len(stack) > self._max_snapshots:
            dropped = stack.pop(0)
            log.debug("patch_snapshot_evicted", path=key, record_id=dropped.record_id)

    def _resolve_existing(self, relative_path: str) -> Path:
        target = resolve_within_root(self._root, relative_path)
        if not target.is_file():
            log.warning("patch_target_missing", path=relative_path)
            raise PatchTargetNotFoundError(
                f"Patch target does not exist: {relative_path}", path=relative_path
            )
        return target
