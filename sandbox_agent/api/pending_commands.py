from __future__ import annotations

from fastapi import APIRouter, Depends

from sandbox_agent.deps import get_approval_service
from sandbox_agent.errors import SandboxApiError
from sandbox_agent.security.auth_token import require_runtime_token
from sandbox_agent.services.approval_service import parse_callback_data

router = APIRouter(prefix="/v1", tags=["pending-commands"], dependencies=[Depends(require_runtime_token)])


def _optional_id(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    return str(value) if value not in (None, "") else None


@router.get("/pending-commands")
async def list_pending_commands(session_id: str = "", approval_service=Depends(get_approval_service)):
    return {"pending_commands": [item.to_dict() for item in approval_service.list(session_id)]}


async def _resolve(approval_service, pending_id: str, approved: bool, payload: dict) -> dict:
    pending, result = await approval_service.resolve(
        pending_id,
        approved,
        session_id=_optional_id(payload, "session_id"),
        chat_id=_optional_id(payload, "chat_id"),
    )
    response = {"resolved": True, "approved": approved, "pending_command": pending.to_dict()}
    if result is not None:
        response["result"] = result.to_dict()
    return response


@router.post("/pending-commands/{pending_id}/resolve")
async def resolve_pending_command(pending_id: str, payload: dict, approval_service=Depends(get_approval_service)):
    return await _resolve(approval_service, pending_id, bool(payload["approved"]), payload)


@router.post("/approval-callbacks")
async def approval_callback(payload: dict, approval_service=Depends(get_approval_service)):
    """Entry point for the chat transport's approve/deny buttons.

    The transport passes the chat the button was pressed in as ``chat_id``
    (or the session as ``session_id``); it must own the pending command.
    """
    parsed = parse_callback_data(str(payload["data"]))
    if parsed is None:
        raise SandboxApiError(
            code="E_SCHEMA_INVALID",
            message="Unrecognized callback data.",
            retryable=False,
            status_code=400,
            cause="callback_data",
        )
    pending_id, approved = parsed
    return await _resolve(approval_service, pending_id, approved, payload)
