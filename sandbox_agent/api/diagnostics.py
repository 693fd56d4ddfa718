from __future__ import annotations

from fastapi import APIRouter, Depends

from sandbox_agent.deps import get_repo, get_task_store
from sandbox_agent.security.auth_token import require_runtime_token

router = APIRouter(prefix="/v1", tags=["diagnostics"], dependencies=[Depends(require_runtime_token)])


@router.get("/audit-logs")
async def audit_logs(session_id: str | None = None, limit: int = 200, repo=Depends(get_repo)):
    bounded_limit = max(1, min(limit, 1000))
    return {"audit_logs": await repo.list_audit_logs(session_id, bounded_limit)}


@router.get("/sessions/{session_id}/tasks")
async def session_tasks(session_id: str, task_store=Depends(get_task_store)):
    return {"session_id": session_id, "tasks": [task.to_dict() for task in task_store.list(session_id)]}
