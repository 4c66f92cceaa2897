"""FastAPI application for the daemon process."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, WebSocket

from fixpilot._version import __version__
from fixpilot.adapters.transport import ASGIConnection
from fixpilot.config.schema import FixPilotConfig
from fixpilot.core.channel import ChannelHub
from fixpilot.core.daemon import Daemon
from fixpilot.core.patch_applier import PatchApplier
from fixpilot.core.verifier import Verifier
from fixpilot.core.watcher import ChangeBatch, FileWatcher

log = structlog.get_logger()

# RFC 6455 policy violation
WS_POLICY_VIOLATION = 1008


def build_daemon(
    config: FixPilotConfig,
    changes: AsyncIterable[ChangeBatch] | None = None,
) -> Daemon:
    """Wire watcher, verifier, applier and hub for ``config.daemon.root``."""
    root = config.daemon.root.resolve()
    watcher = FileWatcher(
        root,
        Verifier.from_config(config.verifier),
        ignored=config.daemon.ignored,
        changes=changes,
    )
    return Daemon(ChannelHub(), watcher, PatchApplier(root))


def create_daemon_app(config: FixPilotConfig, daemon: Daemon | None = None) -> FastAPI:
    """Create the daemon app: ``/ws`` channel endpoint and ``/health``."""
    daemon = daemon or build_daemon(config)
    allowed_origins = set(config.daemon.allowed_origins)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await daemon.start()
        try:
            yield
        finally:
            await daemon.stop()

    app = FastAPI(title="FixPilot Daemon", version=__version__, lifespan=lifespan)
    app.state.daemon = daemon

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok" if daemon.is_running else "stopped",
            "version": __version__,
            "root": str(config.daemon.root.resolve()),
            **daemon.stats,
        }

    @app.websocket("/ws")
    async def channel(websocket: WebSocket) -> None:
        origin = websocket.headers.get("origin")
        if origin is not None and origin not in allowed_origins:
            log.warning("origin_rejected", origin=origin)
            await websocket.close(code=WS_POLICY_VIOLATION)
            return

        await websocket.accept()
        await daemon.hub.serve(ASGIConnection(websocket))

    return app
