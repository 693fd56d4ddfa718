from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError

from sandbox_agent.security.path_guard import PathGuardError
from sandbox_agent.security.patterns import BLOCKED_MARKER

DEFAULT_INTERNAL_MESSAGE = "Internal server error"
BLOCKED_PREFIX = f"🚫 {BLOCKED_MARKER} "
APPROVAL_PREFIX = "⏳ APPROVAL REQUIRED: "


@dataclass(slots=True)
class ToolResult:
    """Uniform shape for every tool outcome, success or failure."""

    success: bool
    output: str | None = None
    error: str | None = None
    pending_id: str | None = None

    @property
    def is_blocked(self) -> bool:
        return not self.success and BLOCKED_MARKER in (self.error or "")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["output"] = self.output if self.output is not None else ""
        else:
            payload["error"] = self.error or "unknown error"
        if self.pending_id is not None:
            payload["pending_id"] = self.pending_id
        return payload


def ok(output: str) -> ToolResult:
    return ToolResult(success=True, output=output)


def failure(error: str) -> ToolResult:
    return ToolResult(success=False, error=error)


def blocked(reason: str) -> ToolResult:
    return ToolResult(success=False, error=f"{BLOCKED_PREFIX}{reason}")


def approval_required(pending_id: str, reason: str) -> ToolResult:
    return ToolResult(
        success=False,
        error=f"{APPROVAL_PREFIX}{reason}. Waiting for the user to approve or deny (id {pending_id}).",
        pending_id=pending_id,
    )


@dataclass(slots=True)
class SandboxApiError(Exception):
    code: str
    message: str
    retryable: bool
    status_code: int
    details: dict[str, Any] | None = None
    cause: str | None = None


def build_error(
    *,
    code: str,
    message: str,
    trace_id: str,
    retryable: bool,
    details: dict[str, Any] | None = None,
    cause: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "code": code,
        "message": message,
        "trace_id": trace_id,
        "retryable": retryable,
        "ts": datetime.now(tz=timezone.utc).isoformat(),
    }
    if details:
        payload["details"] = details
    if cause:
        payload["cause"] = cause
    return payload


def error_response(**kwargs: Any) -> dict[str, Any]:
    return {"error": build_error(**kwargs)}


# (exception types, status, code, message, retryable, cause); first match wins.
_EXCEPTION_ENVELOPES: tuple[tuple[tuple[type[BaseException], ...], int, str, str, bool, str | None], ...] = (
    ((PathGuardError,), 400, "E_PATH_ESCAPE", "Path escapes workspace boundary.", False, "path_guard"),
    ((asyncio.TimeoutError,), 504, "E_TOOL_TIMEOUT", "Operation timed out.", True, "timeout"),
    ((KeyError, ValueError, TypeError), 400, "E_SCHEMA_INVALID", "Invalid request or payload shape.", False, None),
)


def error_from_exception(exc: Exception, trace_id: str) -> tuple[int, dict[str, Any]]:
    if isinstance(exc, SandboxApiError):
        return exc.status_code, error_response(
            code=exc.code,
            message=exc.message,
            trace_id=trace_id,
            retryable=exc.retryable,
            details=exc.details,
            cause=exc.cause,
        )

    if isinstance(exc, RequestValidationError):
        return 422, error_response(
            code="E_SCHEMA_INVALID",
            message="Request validation failed.",
            trace_id=trace_id,
            retryable=False,
            details={"errors": exc.errors()},
            cause="request_validation_error",
        )

    if isinstance(exc, HTTPException):
        code = "E_INTERNAL" if exc.status_code >= 500 else "E_SCHEMA_INVALID"
        if exc.status_code in {401, 403}:
            code = "E_RUNTIME_AUTH"
        return exc.status_code, error_response(
            code=code,
            message=str(exc.detail),
            trace_id=trace_id,
            retryable=exc.status_code >= 500,
            cause="http_exception",
        )

    for types, status_code, code, message, retryable, cause in _EXCEPTION_ENVELOPES:
        if isinstance(exc, types):
            return status_code, error_response(
                code=code,
                message=message,
                trace_id=trace_id,
                retryable=retryable,
                cause=cause or exc.__class__.__name__,
            )

    return 500, error_response(
        code="E_INTERNAL",
        message=DEFAULT_INTERNAL_MESSAGE,
        trace_id=trace_id,
        retryable=False,
        cause=exc.__class__.__name__,
    )
