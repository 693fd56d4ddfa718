"""Tool registry: definitions, schema generation, and guarded dispatch."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from sandbox_agent.context import ToolContext
from sandbox_agent.errors import APPROVAL_PREFIX, ToolResult, failure
from sandbox_agent.observability.metrics import RuntimeMetrics, get_runtime_metrics
from sandbox_agent.services.approval_service import ApprovalService
from sandbox_agent.services.audit_service import AuditService
from sandbox_agent.services.executor import CommandExecutor
from sandbox_agent.services.task_store import TASK_STATUSES, SessionTaskStore
from sandbox_agent.tools import command_tools, file_tools, memory_tools, task_tools
from sandbox_agent.trace import get_current_trace_id

logger = logging.getLogger("sandbox_agent.runtime")


@dataclass(slots=True)
class ToolDef:
    name: str
    description: str
    input_schema: dict
    handler: Callable[..., Any]


class ToolRegistry:
    def __init__(
        self,
        *,
        audit_service: AuditService | None = None,
        metrics: RuntimeMetrics | None = None,
    ) -> None:
        self._tools: dict[str, ToolDef] = {}
        self.audit_service = audit_service
        self.metrics = metrics or get_runtime_metrics()

    def register(self, tool: ToolDef) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def to_schemas(self) -> list[dict[str, Any]]:
        return [
            {"name": td.name, "description": td.description, "input_schema": td.input_schema}
            for td in self._tools.values()
        ]

    async def execute(self, name: str, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        td = self._tools.get(name)
        if td is None:
            return failure(f"Unknown tool: {name}")

        self.metrics.increment_tool_call(name)
        started = time.monotonic()
        try:
            if inspect.iscoroutinefunction(td.handler):
                result = await td.handler(ctx, **args)
            else:
                result = await asyncio.to_thread(td.handler, ctx, **args)
        except TypeError as exc:
            result = failure(f"Invalid arguments for {name}: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool_failed", extra={"tool_name": name, "session_id": ctx.session_id})
            result = failure(str(exc))

        outcome = _outcome(result)
        if outcome == "blocked":
            self.metrics.increment("blocked_total")
        logger.info(
            "tool_invocation",
            extra={
                "tool_name": name,
                "session_id": ctx.session_id,
                "chat_type": ctx.chat_type,
                "outcome": outcome,
                "pending_id": result.pending_id,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        if self.audit_service is not None:
            await self.audit_service.record(
                trace_id=get_current_trace_id(),
                session_id=ctx.session_id,
                chat_id=ctx.chat_id,
                action="tool_invocation",
                tool_name=name,
                args=args,
                result=result.to_dict(),
                requires_approval=outcome == "approval_required",
                decision="pending" if outcome == "approval_required" else "n/a",
                outcome=outcome,
            )
        return result


def _outcome(result: ToolResult) -> str:
    if result.success:
        return "ok"
    if result.is_blocked:
        return "blocked"
    if result.pending_id is not None or (result.error or "").startswith(APPROVAL_PREFIX):
        return "approval_required"
    return "failed"


def _path_schema(description: str) -> dict:
    return {"type": "string", "description": description}


def build_builtin_tools(
    *,
    executor: CommandExecutor,
    approval_service: ApprovalService,
    task_store: SessionTaskStore,
    file_sender: file_tools.FileSender | None = None,
) -> list[ToolDef]:
    """Build the default tool set; every handler takes the ToolContext first."""

    async def run_command(ctx: ToolContext, command: str) -> ToolResult:
        return await command_tools.run_command(ctx, command, executor=executor, approval_service=approval_service)

    async def send_file(ctx: ToolContext, path: str, caption: str | None = None) -> ToolResult:
        return await file_tools.send_file(ctx, path, caption, sender=file_sender)

    def manage_tasks(ctx: ToolContext, action: str, tasks: list[dict] | None = None) -> ToolResult:
        return task_tools.manage_tasks(ctx, action, tasks, store=task_store)

    return [
        ToolDef(
            name="run_command",
            description="Run a shell command in your workspace. A trailing & starts it in the background.",
            input_schema={
                "type": "object",
                "properties": {"command": {"type": "string", "description": "Shell command to execute"}},
                "required": ["command"],
            },
            handler=run_command,
        ),
        ToolDef(
            name="read_file",
            description="Read a file. With offset/limit, lines are returned numbered as N|line.",
            input_schema={
                "type": "object",
                "properties": {
                    "path": _path_schema("File path, relative to the working directory or absolute"),
                    "offset": {"type": "integer", "description": "First line to read (1-based)"},
                    "limit": {"type": "integer", "description": "Number of lines to read"},
                },
                "required": ["path"],
            },
            handler=file_tools.read_file,
        ),
        ToolDef(
            name="write_file",
            description="Create or overwrite a file. Parent directories are created as needed.",
            input_schema={
                "type": "object",
                "properties": {
                    "path": _path_schema("File path"),
                    "content": {"type": "string", "description": "Full file content"},
                },
                "required": ["path", "content"],
            },
            handler=file_tools.write_file,
        ),
        ToolDef(
            name="edit_file",
            description="Replace the first occurrence of old_text with new_text in a file.",
            input_schema={
                "type": "object",
                "properties": {
                    "path": _path_schema("File path"),
                    "old_text": {"type": "string", "description": "Exact text to replace"},
                    "new_text": {"type": "string", "description": "Replacement text"},
                },
                "required": ["path", "old_text", "new_text"],
            },
            handler=file_tools.edit_file,
        ),
        ToolDef(
            name="delete_file",
            description="Delete a file inside your workspace.",
            input_schema={
                "type": "object",
                "properties": {"path": _path_schema("File path")},
                "required": ["path"],
            },
            handler=file_tools.delete_file,
        ),
        ToolDef(
            name="list_directory",
            description="List a directory as JSON entries with name, type, size and mtime.",
            input_schema={
                "type": "object",
                "properties": {"path": _path_schema("Directory path (default: working directory)")},
            },
            handler=file_tools.list_directory,
        ),
        ToolDef(
            name="search_files",
            description="Find files by glob pattern, e.g. **/*.py.",
            input_schema={
                "type": "object",
                "properties": {"pattern": {"type": "string", "description": "Glob pattern"}},
                "required": ["pattern"],
            },
            handler=file_tools.search_files,
        ),
        ToolDef(
            name="search_text",
            description="Search file contents with ripgrep (grep when ripgrep is missing).",
            input_schema={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Text or regex"},
                    "path": _path_schema("File or directory to search (default: working directory)"),
                    "context_before": {"type": "integer", "description": "Lines before each match (max 10)"},
                    "context_after": {"type": "integer", "description": "Lines after each match (max 10)"},
                    "files_only": {"type": "boolean", "description": "Only return matching file paths"},
                    "ignore_case": {"type": "boolean", "description": "Case-insensitive search"},
                },
                "required": ["pattern"],
            },
            handler=file_tools.search_text,
        ),
        ToolDef(
            name="send_file",
            description="Send a file from your workspace to the chat. Maximum size 50MB.",
            input_schema={
                "type": "object",
                "properties": {
                    "path": _path_schema("File path"),
                    "caption": {"type": "string", "description": "Optional caption"},
                },
                "required": ["path"],
            },
            handler=send_file,
        ),
        ToolDef(
            name="manage_tasks",
            description="Keep a task list for multi-step work: add, update, list, or clear finished tasks.",
            input_schema={
                "type": "object",
                "properties": {
                    "action": {"type": "string", "enum": ["add", "update", "list", "clear"]},
                    "tasks": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "id": {"type": "string"},
                                "content": {"type": "string"},
                                "status": {"type": "string", "enum": list(TASK_STATUSES)},
                            },
                        },
                    },
                },
                "required": ["action"],
            },
            handler=manage_tasks,
        ),
        ToolDef(
            name="memory",
            description="Long-term memory kept in MEMORY.md: read notes, append an entry (timestamped), or clear it.",
            input_schema={
                "type": "object",
                "properties": {
                    "action": {"type": "string", "enum": list(memory_tools.MEMORY_ACTIONS)},
                    "content": {"type": "string", "description": "Text to append (append only)"},
                },
                "required": ["action"],
            },
            handler=memory_tools.manage_memory,
        ),
    ]


def build_registry(
    *,
    executor: CommandExecutor,
    approval_service: ApprovalService,
    task_store: SessionTaskStore,
    file_sender: file_tools.FileSender | None = None,
    audit_service: AuditService | None = None,
    metrics: RuntimeMetrics | None = None,
) -> ToolRegistry:
    registry = ToolRegistry(audit_service=audit_service, metrics=metrics)
    for tool in build_builtin_tools(
        executor=executor,
        approval_service=approval_service,
        task_store=task_store,
        file_sender=file_sender,
    ):
        registry.register(tool)
    return registry
