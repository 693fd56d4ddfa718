from __future__ import annotations

from fastapi import APIRouter, Depends

from sandbox_agent.agent.turn_guard import STOPPED_MESSAGE, render_tool_message
from sandbox_agent.api.tool_invocations import build_context
from sandbox_agent.config import Settings
from sandbox_agent.deps import get_registry, get_settings, get_turn_guards
from sandbox_agent.errors import SandboxApiError
from sandbox_agent.security.auth_token import require_runtime_token

router = APIRouter(prefix="/v1", tags=["turns"], dependencies=[Depends(require_runtime_token)])


def _invalid_calls(message: str) -> SandboxApiError:
    return SandboxApiError(
        code="E_SCHEMA_INVALID",
        message=message,
        retryable=False,
        status_code=400,
        cause="tool_calls",
    )


@router.post("/turns")
async def run_turn(
    payload: dict,
    settings: Settings = Depends(get_settings),
    registry=Depends(get_registry),
    turn_guards=Depends(get_turn_guards),
):
    """Run every tool call of one model turn and apply the blocked-attempt stop.

    `new_message: true` marks the first turn after a fresh user message and
    clears the session's blocked count.
    """
    calls = payload.get("tool_calls")
    if not isinstance(calls, list) or not calls:
        raise _invalid_calls("tool_calls must be a non-empty list.")

    ctx = build_context(payload.get("context") or {}, settings)
    if payload.get("new_message"):
        turn_guards.reset(ctx.session_id)
    tracker = turn_guards.for_session(ctx.session_id)

    results = []
    for call in calls:
        if not isinstance(call, dict) or not isinstance(call.get("args") or {}, dict):
            raise _invalid_calls("Each tool call needs a tool name and an args object.")
        result = await registry.execute(str(call["tool"]), call.get("args") or {}, ctx)
        results.append(result)

    stop = tracker.record_turn(results)
    response = {
        "results": [
            {"tool": str(call["tool"]), "result": result.to_dict(), "message": render_tool_message(result)}
            for call, result in zip(calls, results)
        ],
        "blocked_count": tracker.blocked_count,
        "stop": stop,
    }
    if stop:
        response["stop_message"] = STOPPED_MESSAGE
        turn_guards.reset(ctx.session_id)
    return response
