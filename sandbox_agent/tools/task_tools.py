from __future__ import annotations

from typing import Any

from sandbox_agent.context import ToolContext
from sandbox_agent.errors import ToolResult, failure, ok
from sandbox_agent.services.task_store import SessionTaskStore, format_tasks

TASK_ACTIONS = ("add", "update", "list", "clear")


def manage_tasks(
    ctx: ToolContext,
    action: str,
    tasks: list[dict[str, Any]] | None = None,
    *,
    store: SessionTaskStore,
) -> ToolResult:
    session_id = ctx.session_id

    if action == "list":
        return ok(format_tasks(store.list(session_id)))

    if action == "clear":
        remaining = store.clear_finished(session_id)
        return ok(f"Cleared completed and cancelled tasks. Remaining: {remaining}.")

    if action not in TASK_ACTIONS:
        return failure(f"Unknown action: {action}")
    if not tasks:
        return failure("No tasks given")

    try:
        for item in tasks:
            task_id = str(item.get("id") or "").strip()
            content = item.get("content")
            status = item.get("status")
            if action == "add":
                if task_id == "" or not content:
                    return failure("Each task needs an id and content")
                store.upsert(session_id, task_id, str(content), status)
            elif task_id:
                store.update(session_id, task_id, status=status, content=content)
    except ValueError as exc:
        return failure(str(exc))

    return ok(format_tasks(store.list(session_id)))
