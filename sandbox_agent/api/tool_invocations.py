from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from sandbox_agent.config import Settings
from sandbox_agent.context import ToolContext
from sandbox_agent.deps import get_registry, get_settings
from sandbox_agent.errors import SandboxApiError
from sandbox_agent.security.auth_token import require_runtime_token

CHAT_TYPES = ("private", "group", "supergroup", "channel")

router = APIRouter(prefix="/v1", tags=["tool-invocations"], dependencies=[Depends(require_runtime_token)])


def build_context(raw: dict[str, Any], settings: Settings) -> ToolContext:
    user_id = str(raw["user_id"])
    chat_type = str(raw.get("chat_type") or "private")
    if chat_type not in CHAT_TYPES:
        raise SandboxApiError(
            code="E_SCHEMA_INVALID",
            message=f"Unsupported chat type: {chat_type}",
            retryable=False,
            status_code=400,
            details={"chat_types": list(CHAT_TYPES)},
            cause="chat_type",
        )

    root = settings.workspace_for(user_id)
    cwd = raw.get("cwd")
    return ToolContext(
        workspace_root=root,
        session_id=str(raw.get("session_id") or user_id),
        chat_id=str(raw.get("chat_id") or ""),
        chat_type=chat_type,
        cwd=(root / str(cwd)) if cwd else None,
        shared_dir=settings.shared_dir_name,
    )


@router.post("/tool-invocations")
async def invoke_tool(
    payload: dict,
    settings: Settings = Depends(get_settings),
    registry=Depends(get_registry),
):
    tool = str(payload["tool"])
    args = payload.get("args") or {}
    if not isinstance(args, dict):
        raise SandboxApiError(
            code="E_SCHEMA_INVALID",
            message="Tool arguments must be an object.",
            retryable=False,
            status_code=400,
            cause="tool_args",
        )

    ctx = build_context(payload.get("context") or {}, settings)
    result = await registry.execute(tool, args, ctx)
    return result.to_dict()
