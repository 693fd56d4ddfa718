from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sandbox_agent.agent.tool_registry import build_registry
from sandbox_agent.agent.turn_guard import SessionTurnGuards
from sandbox_agent.api import diagnostics, ops, pending_commands, tool_invocations, turns
from sandbox_agent.config import Settings, load_settings
from sandbox_agent.db.connection import open_connection
from sandbox_agent.db.migrations import apply_migrations
from sandbox_agent.db.repositories import Repository
from sandbox_agent.deps import set_dependencies
from sandbox_agent.errors import SandboxApiError, error_from_exception
from sandbox_agent.observability.logging import get_runtime_logger, get_security_logger
from sandbox_agent.observability.metrics import get_runtime_metrics
from sandbox_agent.services.approval_service import ApprovalService, PendingCommandStore, build_notifier
from sandbox_agent.services.audit_service import AuditService
from sandbox_agent.services.executor import CommandExecutor
from sandbox_agent.services.task_store import SessionTaskStore
from sandbox_agent.trace import (
    TRACE_HEADER,
    get_current_trace_id,
    normalize_trace_id,
    reset_current_trace_id,
    set_current_trace_id,
)

settings = load_settings()
logger = get_runtime_logger()
get_security_logger()


async def _sweep_loop(approval_service: ApprovalService, task_store: SessionTaskStore, settings: Settings) -> None:
    while True:
        await asyncio.sleep(settings.sweep_interval_seconds)
        expired = approval_service.sweep(settings.pending_ttl_seconds)
        stale = task_store.sweep(settings.pending_ttl_seconds)
        if expired or stale:
            logger.info("sweep_completed", extra={"outcome": {"pending": expired, "task_sessions": stale}})


@asynccontextmanager
async def lifespan(app: FastAPI):
    await apply_migrations(settings.db_path)
    conn = await open_connection(settings.db_path)
    repo = Repository(conn)
    metrics = get_runtime_metrics()
    audit_service = AuditService(repo, metrics)
    executor = CommandExecutor(
        timeout_seconds=settings.command_timeout_seconds,
        max_output_bytes=settings.max_output_bytes,
        max_output_chars=settings.max_output_chars,
        background_check_seconds=settings.background_check_seconds,
        metrics=metrics,
    )
    approval_service = ApprovalService(
        PendingCommandStore(),
        executor,
        notifier=build_notifier(settings.approval_webhook_url),
        audit_service=audit_service,
        metrics=metrics,
    )
    task_store = SessionTaskStore()
    registry = build_registry(
        executor=executor,
        approval_service=approval_service,
        task_store=task_store,
        audit_service=audit_service,
        metrics=metrics,
    )
    turn_guards = SessionTurnGuards(settings.max_blocked_commands)
    set_dependencies(settings, repo, registry, approval_service, task_store, turn_guards)
    sweeper = asyncio.create_task(_sweep_loop(approval_service, task_store, settings))

    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await conn.close()


app = FastAPI(title="Sandbox Agent Runtime", version=ops.RUNTIME_VERSION, lifespan=lifespan)


@app.middleware("http")
async def trace_middleware(request: Request, call_next):
    trace_id = normalize_trace_id(request.headers.get(TRACE_HEADER))
    request.state.trace_id = trace_id
    token = set_current_trace_id(trace_id)
    started = datetime.now(tz=timezone.utc)
    try:
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            status_code, payload = error_from_exception(exc, trace_id)
            response = JSONResponse(status_code=status_code, content=payload)
        duration_ms = int((datetime.now(tz=timezone.utc) - started).total_seconds() * 1000)
        logger.info(
            "http_request",
            extra={
                "trace_id": trace_id,
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "outcome": "ok" if response.status_code < 400 else "error",
            },
        )
        response.headers[TRACE_HEADER] = trace_id
        return response
    finally:
        reset_current_trace_id(token)


@app.exception_handler(Exception)
async def exception_handler(request: Request, exc: Exception):
    trace_id = str(getattr(request.state, "trace_id", get_current_trace_id()))
    status_code, payload = error_from_exception(exc, trace_id)
    if status_code >= 500:
        logger.error("unhandled_error", exc_info=exc, extra={"trace_id": trace_id, "path": request.url.path})
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers[TRACE_HEADER] = trace_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return await exception_handler(request, exc)


@app.exception_handler(SandboxApiError)
async def sandbox_error_handler(request: Request, exc: SandboxApiError):
    return await exception_handler(request, exc)


app.include_router(ops.router)
app.include_router(tool_invocations.router)
app.include_router(pending_commands.router)
app.include_router(turns.router)
app.include_router(diagnostics.router)


def main() -> None:
    uvicorn.run(app, host=settings.runtime_host, port=settings.runtime_port, log_config=None)


if __name__ == "__main__":
    main()
