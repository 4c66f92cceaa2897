"""Abstract interface for writing proposed patches to disk."""

from typing import Protocol


class PatchWriter(Protocol):
    """Writes a patch for the lifecycle manager.

    Either a local Patch Applier (running in a worker thread) or the remote
    daemon reached over the event channel.
    """

    async def apply(self, record_id: str, file: str, content: str) -> None:
        """
        Overwrite ``file`` (relative to the watched root) with ``content``.

        Raises:
            PathEscapeError: If the path leaves the watched root
            PatchTargetNotFoundError: If the file does not exist
            PatchWriteError: If the write failed; the file is untouched
            ChannelDisconnected: If the daemon could not be reached
        """
        ...

    async def restore(self, record_id: str, file: str) -> bool:
        """
        Put back the content ``file`` had before ``record_id``'s patch.

        Returns:
            True if content was restored, False if the writer kept no
            snapshot for the record, a later patch superseded it, or the
            writer cannot restore

        Raises:
            PatchError: If a snapshot exists but could not be written back
        """
        ...

    async def clear(self) -> None:
        """Drop every kept snapshot."""
        ...
