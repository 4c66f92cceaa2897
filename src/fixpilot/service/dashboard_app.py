"""FastAPI application for the dashboard backend.

REST commands map one-to-one onto :class:`~fixpilot.core.dashboard.Dashboard`
methods; ``/ws/dashboard`` streams every lifecycle change to the UI.
"""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import Field

from fixpilot._version import __version__
from fixpilot.adapters.llm import create_assistant
from fixpilot.adapters.patch import LocalPatchWriter, RemotePatchWriter
from fixpilot.adapters.storage import JsonStateStore, MemoryStateStore
from fixpilot.adapters.transport import ASGIConnection, WebSocketTransport
from fixpilot.config.schema import FixPilotConfig
from fixpilot.core.channel import ChannelClient
from fixpilot.core.dashboard import MANUAL_FILE, Dashboard
from fixpilot.core.gateway import AssistanceGateway
from fixpilot.core.lifecycle import ChangeKind, ErrorLifecycleManager, LifecycleChange
from fixpilot.core.patch_applier import PatchApplier
from fixpilot.core.simulator import SyntheticErrorSource
from fixpilot.interfaces.llm import AssistantProvider
from fixpilot.interfaces.storage import StateStore
from fixpilot.interfaces.transport import Transport
from fixpilot.models.error import Environment
from fixpilot.models.events import (
    ErrorRecordPayload,
    LogEntryPayload,
    StatsPayload,
    WireModel,
)
from fixpilot.utils.async_helpers import (
    ChannelDisconnected,
    FixPilotError,
    GatewayFailure,
    InvalidTransitionError,
    NotFoundError,
    PatchTargetNotFoundError,
    PatchWriteError,
    PathEscapeError,
    TransportError,
)

log = structlog.get_logger()

STREAM_QUEUE_SIZE = 1000

# Most specific first; the first isinstance match wins
ERROR_STATUS: tuple[tuple[type[FixPilotError], int], ...] = (
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (PathEscapeError, 400),
    (PatchTargetNotFoundError, 404),
    (PatchWriteError, 502),
    (GatewayFailure, 502),
    (ChannelDisconnected, 503),
)


class ManualReportRequest(WireModel):
    message: str = Field(min_length=1)
    code: str = Field(min_length=1)
    language: str | None = None
    file: str = MANUAL_FILE


class FailRequest(WireModel):
    reason: str = "Marked as failed from the dashboard"


class EnvironmentRequest(WireModel):
    environment: Environment


def build_dashboard(
    config: FixPilotConfig,
    transport: Transport | None = None,
    store: StateStore | None = None,
    provider: AssistantProvider | None = None,
    rng: random.Random | None = None,
    persist: bool = True,
) -> Dashboard:
    """Wire manager, gateway, channel client and synthetic source."""
    if store is None:
        if persist and config.state.enabled:
            store = JsonStateStore(config.state.path, config.state.namespace)
        else:
            store = MemoryStateStore()
    provider = provider or create_assistant(config.llm)
    settings = config.dashboard

    client = ChannelClient(
        settings.daemon_url,
        transport or WebSocketTransport(),
        retry=config.retry,
        apply_timeout=settings.apply_timeout,
    )
    if settings.patch_mode == "local" and settings.project_root is not None:
        writer: LocalPatchWriter | RemotePatchWriter = LocalPatchWriter(
            PatchApplier(settings.project_root)
        )
    else:
        writer = RemotePatchWriter(client)

    manager = ErrorLifecycleManager(config.lifecycle, writer=writer, store=store)
    gateway = AssistanceGateway(
        manager, provider, root=settings.project_root, timeout=config.llm.timeout
    )
    environment = Environment(settings.environment)
    source = SyntheticErrorSource(
        provider, environment, rng=rng, interval=settings.monitor_interval
    )
    return Dashboard(
        manager,
        gateway,
        client=client,
        source=source,
        environment=environment,
        monitoring=settings.monitoring,
    )


def serialize_change(change: LifecycleChange) -> dict[str, Any]:
    """JSON form of a lifecycle change for the UI stream."""
    data: Any = None
    if change.kind is ChangeKind.RECORD and change.record is not None:
        data = ErrorRecordPayload.from_record(change.record).model_dump(mode="json", by_alias=True)
    elif change.kind is ChangeKind.LOG and change.log is not None:
        data = LogEntryPayload.from_entry(change.log).model_dump(mode="json", by_alias=True)
    elif change.stats is not None:
        data = StatsPayload.from_stats(change.stats).model_dump(mode="json", by_alias=True)
    return {"kind": change.kind.value, "data": data}


def create_dashboard_app(config: FixPilotConfig, dashboard: Dashboard | None = None) -> FastAPI:
    """Create the dashboard backend app."""
    dashboard = dashboard or build_dashboard(config)
    manager = dashboard.manager

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await dashboard.start()
        try:
            yield
        finally:
            await dashboard.stop()

    app = FastAPI(title="FixPilot Dashboard", version=__version__, lifespan=lifespan)
    app.state.dashboard = dashboard

    @app.exception_handler(FixPilotError)
    async def fixpilot_error_handler(request: Request, exc: FixPilotError) -> JSONResponse:
        status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
        log.info("request_failed", path=request.url.path, status=status, error=str(exc))
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    # ----- Queries ---------------------------------------------------------

    @app.get("/api/errors", response_model=list[ErrorRecordPayload])
    async def list_errors() -> list[ErrorRecordPayload]:
        return [ErrorRecordPayload.from_record(r) for r in manager.errors]

    @app.get("/api/errors/{record_id}", response_model=ErrorRecordPayload)
    async def get_error(record_id: str) -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(manager.get(record_id))

    @app.get("/api/logs", response_model=list[LogEntryPayload])
    async def list_logs() -> list[LogEntryPayload]:
        return [LogEntryPayload.from_entry(e) for e in manager.logs]

    @app.get("/api/stats", response_model=StatsPayload)
    async def get_stats() -> StatsPayload:
        return StatsPayload.from_stats(manager.stats)

    @app.get("/api/connection")
    async def get_connection() -> dict[str, str]:
        return {
            "state": dashboard.connection_state.value,
            "environment": dashboard.environment.value,
        }

    # ----- Commands --------------------------------------------------------

    @app.put("/api/environment")
    async def set_environment(body: EnvironmentRequest) -> dict[str, str]:
        dashboard.set_environment(body.environment)
        return {"environment": dashboard.environment.value}

    @app.post("/api/errors/simulate", response_model=ErrorRecordPayload, status_code=201)
    async def simulate() -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(await dashboard.simulate())

    @app.post("/api/errors/manual", response_model=ErrorRecordPayload, status_code=201)
    async def report_manual(body: ManualReportRequest) -> ErrorRecordPayload:
        try:
            record = await dashboard.report_manual(body.message, body.code, body.language, body.file)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return ErrorRecordPayload.from_record(record)

    @app.post("/api/errors/{record_id}/analyze", response_model=ErrorRecordPayload)
    async def analyze(record_id: str) -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(await dashboard.analyze(record_id))

    @app.post("/api/errors/{record_id}/patch", response_model=ErrorRecordPayload)
    async def generate_patch(record_id: str) -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(await dashboard.generate_patch(record_id))

    @app.post("/api/errors/{record_id}/apply", response_model=ErrorRecordPayload)
    async def apply(record_id: str) -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(await dashboard.apply(record_id))

    @app.post("/api/errors/{record_id}/rollback", response_model=ErrorRecordPayload)
    async def rollback(record_id: str) -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(await dashboard.rollback(record_id))

    @app.post("/api/errors/{record_id}/report", response_model=ErrorRecordPayload)
    async def report(record_id: str) -> ErrorRecordPayload:
        return ErrorRecordPayload.from_record(await dashboard.report(record_id))

    @app.post("/api/errors/{record_id}/fail", response_model=ErrorRecordPayload)
    async def fail(record_id: str, body: FailRequest | None = None) -> ErrorRecordPayload:
        reason = (body or FailRequest()).reason
        return ErrorRecordPayload.from_record(await dashboard.fail(record_id, reason))

    @app.post("/api/reset", status_code=204)
    async def reset() -> None:
        await dashboard.reset()

    # ----- Change stream ---------------------------------------------------

    @app.websocket("/ws/dashboard")
    async def change_stream(websocket: WebSocket) -> None:
        await websocket.accept()
        connection = ASGIConnection(websocket)
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)

        def enqueue(change: LifecycleChange) -> None:
            try:
                queue.put_nowait(serialize_change(change))
            except asyncio.QueueFull:
                log.warning("change_stream_overflow", kind=change.kind.value)

        unsubscribe = manager.subscribe(enqueue)
        receiver = asyncio.create_task(_drain(connection))
        try:
            snapshot = manager.snapshot()
            snapshot.pop("recoveries", None)
            await websocket.send_json({"kind": "snapshot", "data": snapshot})
            while not receiver.done():
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    break
                await connection.send(json.dumps(getter.result()))
        except TransportError as e:
            log.debug("change_stream_closed", error=str(e))
        finally:
            unsubscribe()
            receiver.cancel()
            await connection.close()

    return app


async def _drain(connection: ASGIConnection) -> None:
    """Read and discard frames until the UI disconnects."""
    try:
        while True:
            await connection.recv()
    except TransportError:
        return
