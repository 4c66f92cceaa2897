"""Patch writer that applies patches in-process."""

from __future__ import annotations

import asyncio

from fixpilot.core.patch_applier import PatchApplier


class LocalPatchWriter:
    """Run a :class:`PatchApplier` in a worker thread.

    Used when the dashboard backend runs on the same machine as the project
    (``dashboard.patch_mode: local``).
    """

    def __init__(self, applier: PatchApplier) -> None:
        self._applier = applier

    async def apply(self, record_id: str, file: str, content: str) -> None:
        await asyncio.to_thread(self._applier.apply, file, content, record_id)

    async def restore(self, record_id: str, file: str) -> bool:
        return await asyncio.to_thread(self._applier.restore, file, record_id)

    async def clear(self) -> None:
        await asyncio.to_thread(self._applier.clear)
