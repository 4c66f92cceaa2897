"""Patch writer that sends patches to the daemon over the event channel."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from fixpilot.utils.async_helpers import PATCH_ERRORS_BY_CODE, PatchWriteError

if TYPE_CHECKING:
    from fixpilot.core.channel import ChannelClient

log = structlog.get_logger()


class RemotePatchWriter:
    """Deliver ``apply_patch`` commands through a :class:`ChannelClient`.

    The daemon's ``patch_result`` acknowledgement is turned back into the
    matching ``PatchError`` subclass, so callers see the same errors as with
    a local applier. Restoring earlier content is not part of the channel
    protocol; rollback through this writer only reverts dashboard state.
    """

    def __init__(self, client: ChannelClient) -> None:
        self._client = client

    async def apply(self, record_id: str, file: str, content: str) -> None:
        result = await self._client.send_apply_patch(file, content)
        if result.ok:
            return

        error_cls = PATCH_ERRORS_BY_CODE.get(result.error or "", PatchWriteError)
        message = result.message or f"Daemon rejected patch for {file}"
        log.warning("remote_patch_rejected", record_id=record_id, file=file, error=result.error, message=message)
        raise error_cls(message, path=file)

    async def restore(self, record_id: str, file: str) -> bool:
        log.info("remote_restore_unsupported", record_id=record_id, file=file)
        return False

    async def clear(self) -> None:
        """Nothing is kept on this side of the channel."""
